"""Session-scoped wiring of filters, location, querying and pagination."""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Any, List, Optional

from refill_search.core.config import Settings
from refill_search.core.errors import SearchFailed
from refill_search.core.location_store import LocationStore
from refill_search.models import (
    EMPTY_RESULT,
    STAGE_LOCATION_DROPPED,
    STAGE_UNFILTERED,
    Coordinate,
    FilterState,
    PageState,
    QueryOutcome,
    ResolvedLocation,
)
from refill_search.search.executor import QueryExecutor
from refill_search.search.fallback import FallbackPolicy, effective_filters
from refill_search.search.filters import FilterStore
from refill_search.search.geolocation import LocationResolver, PositionProvider
from refill_search.search.pagination import PaginationAccumulator
from refill_search.vendors.ip_geolocation import IpGeolocationProvider

logger = logging.getLogger(__name__)

NOTICE_EMPTY = "No stores are registered in this area."
NOTICE_LOCATION_DROPPED = "Nothing could be loaded near the selected location; showing matches from every area."
NOTICE_UNFILTERED = "Filtered results are unavailable right now; showing all stores."


@dataclass
class SessionSnapshot:
    filters: FilterState
    url: str
    page: PageState
    location: Optional[ResolvedLocation]
    loading: bool = False
    error: Optional[str] = None
    notices: List[str] = field(default_factory=list)
    fallback_stage: Optional[str] = None

    def to_dict(self) -> dict:
        location = None
        if self.location is not None:
            location = {
                "lat": self.location.coordinate.lat,
                "lng": self.location.coordinate.lng,
                "source": self.location.source,
                "origin": self.location.origin,
            }
        return {
            "url": self.url,
            "filters": {
                "categories": sorted(self.filters.categories),
                "max_distance_km": self.filters.max_distance_km,
                "min_rating": self.filters.min_rating,
                "latitude": self.filters.latitude,
                "longitude": self.filters.longitude,
                "query": self.filters.query,
                "page": self.filters.page,
                "sort": self.filters.sort,
            },
            "page": self.page.current_page,
            "has_more": self.page.has_more,
            "stores": [store_to_dict(store) for store in self.page.accumulated],
            "location": location,
            "loading": self.loading,
            "error": self.error,
            "notices": list(self.notices),
            "fallback_stage": self.fallback_stage,
        }


def store_to_dict(store: Any) -> dict:
    return {
        "id": store.id,
        "name": store.name,
        "address": store.address,
        "categories": list(store.categories),
        "rating": {"naver": store.naver_rating, "kakao": store.kakao_rating},
        "distance_km": store.distance_km,
        "thumbnail_url": store.thumbnail_url,
        "position": {"lat": store.latitude, "lng": store.longitude},
    }


class SearchSession:
    """One browser-tab equivalent: a single FilterState/PageState pair.

    Every accepted filter change opens a new search intent. Only the newest
    intent may write its result; older ones finish and are discarded.
    """

    def __init__(
        self,
        settings: Settings,
        url: str = "/",
        location_store: Optional[LocationStore] = None,
        position_provider: Optional[PositionProvider] = None,
        executor: Optional[QueryExecutor] = None,
    ) -> None:
        self.settings = settings
        self.filters = FilterStore(url)
        self.executor = executor or QueryExecutor(settings)
        self.policy = FallbackPolicy(self.executor)
        self.pages = PaginationAccumulator()
        store = location_store or LocationStore(settings.location_store_path, settings.location_ttl_minutes)
        if position_provider is None:
            position_provider = IpGeolocationProvider(settings.geolocation_url, settings.geolocation_timeout_seconds)
        self.resolver = LocationResolver(
            store,
            Coordinate(settings.default_latitude, settings.default_longitude),
            provider=position_provider,
            timeout=settings.geolocation_timeout_seconds,
        )

        self._lock = threading.Lock()
        self._intents = itertools.count(1)
        self._current_intent = 0
        self._loading = False
        self._error: Optional[str] = None
        self._notices: List[str] = []
        self._last_outcome: Optional[QueryOutcome] = None
        self._paging_filters: Optional[FilterState] = None
        self._location: Optional[ResolvedLocation] = None
        self.filters.subscribe(self._on_filters_changed)

    # ---------- Events ----------

    def initialize(self, url: Optional[str] = None) -> SessionSnapshot:
        """Load the session from a URL: anchor from URL, stored location or default, then search."""
        url = self.filters.url if url is None else url
        self._location = self.resolver.resolve_initial_location(url)
        if not self.filters.navigate(url, fallback_anchor=self._location.coordinate):
            self.run_search()
        return self.snapshot()

    def navigate(self, url: str) -> SessionSnapshot:
        """External URL change (back/forward or a shared link)."""
        if not self.filters.navigate(url):
            logger.debug("Navigation to %s did not change the filters", url)
        return self.snapshot()

    def search(self, query: Optional[str]) -> SessionSnapshot:
        self.filters.set_filters(query=query)
        return self.snapshot()

    def apply_filters(self, **partial: Any) -> SessionSnapshot:
        self.filters.set_filters(**partial)
        return self.snapshot()

    def reset(self) -> SessionSnapshot:
        self.filters.reset_filters()
        return self.snapshot()

    def use_current_location(self, timeout: Optional[float] = None) -> SessionSnapshot:
        """Re-anchor on the live position; on failure keep the last or default anchor."""
        resolved, error = self.resolver.locate_or_fallback(timeout)
        self._location = resolved
        coordinate = resolved.coordinate
        self.filters.annotate_url(source="gps" if error is None else None)
        self.filters.set_filters(latitude=coordinate.lat, longitude=coordinate.lng)
        if error is not None:
            self._add_notice(f"Could not determine the current location ({type(error).__name__}).")
        return self.snapshot()

    def set_manual_location(self, lat: float, lng: float, radius_km: Optional[float] = None) -> SessionSnapshot:
        coordinate = Coordinate(float(lat), float(lng))
        partial = {"latitude": coordinate.lat, "longitude": coordinate.lng}
        if radius_km is not None:
            partial["max_distance_km"] = radius_km
        self.filters.set_filters(**partial)
        self.filters.annotate_url(source=None)
        self.resolver.persist(coordinate, "manual")
        self._location = ResolvedLocation(coordinate=coordinate, source="manual", origin="manual")
        return self.snapshot()

    def retry(self) -> SessionSnapshot:
        self.run_search()
        return self.snapshot()

    def load_more(self) -> SessionSnapshot:
        with self._lock:
            paging_filters = self._paging_filters
        if paging_filters is None:
            logger.debug("Load more ignored; no first page has been loaded")
            return self.snapshot()

        def fetch(page: int) -> QueryOutcome:
            return self.executor.execute(replace(paging_filters, page=page), page)

        outcome = self.pages.load_more(fetch)
        if outcome is not None and not outcome.ok:
            self._add_notice("More stores could not be loaded. Try again.")
        return self.snapshot()

    # ---------- Intents ----------

    def _on_filters_changed(self, state: FilterState) -> None:
        self.run_search(state)

    def run_search(self, filters: Optional[FilterState] = None) -> Optional[QueryOutcome]:
        """Open a new search intent and apply its result unless a newer one started meanwhile."""
        filters = filters or self.filters.state
        with self._lock:
            intent = next(self._intents)
            self._current_intent = intent
            self._loading = True
            self._error = None
            self._notices = []
            self._paging_filters = None
            self.pages.start_new_search()

        try:
            outcome = self.policy.run(filters)
        except SearchFailed as exc:
            with self._lock:
                if intent != self._current_intent:
                    logger.info("Discarding failure of superseded search intent %s", intent)
                    return None
                self._loading = False
                self._last_outcome = exc.outcome
                self._paging_filters = None
                self._error = f"Stores could not be loaded ({exc.outcome.failure_reason}). Retry to try again."
            return exc.outcome
        except Exception:
            with self._lock:
                if intent == self._current_intent:
                    self._loading = False
            logger.exception("Search intent %s failed unexpectedly", intent)
            raise

        with self._lock:
            if intent != self._current_intent:
                logger.info("Discarding result of superseded search intent %s", intent)
                return None
            self._loading = False
            self._last_outcome = outcome
            self._paging_filters = effective_filters(outcome)
            self.pages.apply_first_page(outcome)
            if outcome.failure_reason == EMPTY_RESULT:
                self._notices.append(NOTICE_EMPTY)
            if outcome.fallback_stage == STAGE_LOCATION_DROPPED:
                self._notices.append(NOTICE_LOCATION_DROPPED)
            elif outcome.fallback_stage == STAGE_UNFILTERED:
                self._notices.append(NOTICE_UNFILTERED)
        return outcome

    # ---------- State ----------

    def _add_notice(self, message: str) -> None:
        with self._lock:
            self._notices.append(message)
        logger.info("Session notice: %s", message)

    @property
    def location(self) -> Optional[ResolvedLocation]:
        return self._location

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                filters=self.filters.state,
                url=self.filters.url,
                page=self.pages.snapshot(),
                location=self._location,
                loading=self._loading,
                error=self._error,
                notices=list(self._notices),
                fallback_stage=self._last_outcome.fallback_stage if self._last_outcome else None,
            )
