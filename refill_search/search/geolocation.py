"""Anchor coordinate resolution: URL, then stored location, then the default."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Optional, Tuple

from refill_search.core.errors import GeolocationError, GeolocationTimeout, GeolocationUnavailable, InvalidFilterState
from refill_search.core.location_store import LocationStore, is_location_valid
from refill_search.models import Coordinate, ResolvedLocation, is_valid_coordinate
from refill_search.search.filters import url_params

logger = logging.getLogger(__name__)

PositionProvider = Callable[[], Tuple[float, float]]

_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="geolocation")


class LocationResolver:
    def __init__(
        self,
        store: LocationStore,
        default: Coordinate,
        provider: Optional[PositionProvider] = None,
        timeout: float = 10.0,
    ) -> None:
        self.store = store
        self.default = default
        self.provider = provider
        self.timeout = timeout
        self.last_resolved: Optional[ResolvedLocation] = None

    def resolve_initial_location(self, url: Optional[str] = None) -> ResolvedLocation:
        """Pick an anchor without ever waiting on a live position request."""
        resolved = self._from_url(url) or self._from_storage() or self._default()
        self.last_resolved = resolved
        logger.info(
            "Resolved initial location (%s, %s) source=%s origin=%s",
            resolved.coordinate.lat,
            resolved.coordinate.lng,
            resolved.source,
            resolved.origin,
        )
        return resolved

    def request_live_location(self, timeout: Optional[float] = None) -> Coordinate:
        """Ask the position provider for a fix, bounded by `timeout` seconds.

        On success the coordinate is persisted as `gps`. Failures raise a
        GeolocationError subclass and leave stored state untouched.
        """
        if self.provider is None:
            raise GeolocationUnavailable("no position provider configured")

        timeout = self.timeout if timeout is None else timeout
        future = _executor.submit(self.provider)
        try:
            lat, lng = future.result(timeout=timeout)
        except FutureTimeoutError as exc:
            future.cancel()
            raise GeolocationTimeout(f"no position within {timeout}s") from exc
        except GeolocationError:
            raise
        except (TypeError, ValueError) as exc:
            raise GeolocationUnavailable(f"position provider returned an unusable value: {exc}") from exc
        except Exception as exc:
            raise GeolocationUnavailable(f"position provider failed: {type(exc).__name__}: {exc}") from exc

        if not is_valid_coordinate(lat, lng):
            raise GeolocationUnavailable(f"position out of range: ({lat}, {lng})")

        coordinate = Coordinate(lat, lng)
        self.persist(coordinate, "gps")
        self.last_resolved = ResolvedLocation(coordinate=coordinate, source="gps", origin="live")
        return coordinate

    def locate_or_fallback(
        self, timeout: Optional[float] = None
    ) -> Tuple[ResolvedLocation, Optional[GeolocationError]]:
        """Live location when possible, otherwise the last resolved anchor or the default."""
        try:
            self.request_live_location(timeout)
        except GeolocationError as exc:
            fallback = self.last_resolved or self._default()
            logger.warning(
                "Live location failed (%s: %s); falling back to %s anchor",
                type(exc).__name__,
                exc,
                fallback.source,
            )
            return fallback, exc
        return self.last_resolved, None

    def persist(self, coordinate: Coordinate, source: str) -> None:
        self.store.save_user_location(coordinate.lat, coordinate.lng, source)

    def _from_url(self, url: Optional[str]) -> Optional[ResolvedLocation]:
        if not url:
            return None
        params = url_params(url)
        try:
            lat = float(params["lat"])
            lng = float(params["lng"])
            coordinate = Coordinate(lat, lng)
        except (KeyError, ValueError, InvalidFilterState):
            return None
        source = "gps" if params.get("source") == "gps" else "manual"
        return ResolvedLocation(coordinate=coordinate, source=source, origin="url")

    def _from_storage(self) -> Optional[ResolvedLocation]:
        stored = self.store.get_user_location()
        if not is_location_valid(stored):
            return None
        return ResolvedLocation(coordinate=Coordinate(stored.lat, stored.lng), source=stored.source, origin="storage")

    def _default(self) -> ResolvedLocation:
        return ResolvedLocation(coordinate=self.default, source="default", origin="default")
