"""Filter state store kept in step with a URL query string."""

from __future__ import annotations

import logging
import threading
from dataclasses import fields, replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from refill_search.core.errors import InvalidFilterState
from refill_search.models import DEFAULT_MAX_DISTANCE_KM, Coordinate, FilterState, is_valid_coordinate

logger = logging.getLogger(__name__)

# URL parameter names owned by the filter store, in the order they are written.
URL_PARAMS = ("lat", "lng", "distance", "rating", "categories", "q", "page", "sort")

_FIELD_NAMES = frozenset(f.name for f in fields(FilterState))

FilterListener = Callable[[FilterState], None]


def format_number(value: float) -> str:
    text = repr(float(value))
    return text[:-2] if text.endswith(".0") else text


def _parse_float(params: Mapping[str, str], name: str) -> Optional[float]:
    raw = params.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric URL parameter %s=%r", name, raw)
        return None
    if value != value:
        logger.warning("Ignoring NaN URL parameter %s", name)
        return None
    return value


def _normalize_query(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _normalize_categories(value: Any) -> frozenset:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise InvalidFilterState(f"categories must be a list of labels, got {value!r}")
    return frozenset(str(item).strip() for item in value if item is not None and str(item).strip())


def parse_filter_params(params: Mapping[str, str]) -> FilterState:
    """Build a FilterState from query-string parameters, dropping invalid values."""
    state: Dict[str, Any] = {}

    lat = _parse_float(params, "lat")
    lng = _parse_float(params, "lng")
    if lat is not None and lng is not None and is_valid_coordinate(lat, lng):
        state["latitude"] = lat
        state["longitude"] = lng
    elif lat is not None or lng is not None:
        logger.warning("Ignoring incomplete or out-of-range anchor lat=%r lng=%r", params.get("lat"), params.get("lng"))

    distance = _parse_float(params, "distance")
    if distance is not None:
        if 0 < distance <= 50:
            state["max_distance_km"] = distance
        else:
            logger.warning("Ignoring out-of-range distance=%s", distance)

    rating = _parse_float(params, "rating")
    if rating is not None:
        if 0 <= rating <= 5:
            state["min_rating"] = rating
        else:
            logger.warning("Ignoring out-of-range rating=%s", rating)

    categories = _normalize_categories(params.get("categories"))
    if categories:
        state["categories"] = categories

    query = _normalize_query(params.get("q"))
    if query is not None:
        state["query"] = query[:100]

    page_raw = params.get("page")
    if page_raw:
        try:
            page = int(page_raw)
        except ValueError:
            page = 0
        if page >= 1:
            state["page"] = page
        else:
            logger.warning("Ignoring invalid page=%r", page_raw)

    sort = params.get("sort")
    if sort:
        state["sort"] = sort

    try:
        return FilterState(**state).validate()
    except InvalidFilterState as exc:
        logger.warning("Ignoring invalid URL filter value: %s", exc)
        state.pop("sort", None)
        return FilterState(**state)


def to_filter_params(state: FilterState) -> Dict[str, str]:
    """Serialize the non-default fields of a FilterState into query-string parameters."""
    params: Dict[str, str] = {}
    if state.has_anchor:
        params["lat"] = format_number(state.latitude)
        params["lng"] = format_number(state.longitude)
    if state.max_distance_km != DEFAULT_MAX_DISTANCE_KM:
        params["distance"] = format_number(state.max_distance_km)
    if state.min_rating > 0:
        params["rating"] = format_number(state.min_rating)
    if state.categories:
        params["categories"] = ",".join(sorted(state.categories))
    if state.query:
        params["q"] = state.query
    if state.page != 1:
        params["page"] = str(state.page)
    if state.sort != "default":
        params["sort"] = state.sort
    return params


def split_url(url: str) -> Tuple[str, List[Tuple[str, str]]]:
    parts = urlsplit(url or "")
    base = urlunsplit((parts.scheme, parts.netloc, parts.path, "", parts.fragment))
    return base, parse_qsl(parts.query, keep_blank_values=True)


def url_params(url: str) -> Dict[str, str]:
    """Last value wins for repeated keys, like URLSearchParams.get on the final write."""
    _, pairs = split_url(url)
    return dict(pairs)


def apply_to_url(url: str, state: FilterState) -> str:
    """Rewrite the recognised filter parameters of `url`, leaving every other parameter untouched."""
    parts = urlsplit(url or "")
    pairs = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in URL_PARAMS]
    filter_params = to_filter_params(state)
    pairs.extend((name, filter_params[name]) for name in URL_PARAMS if name in filter_params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(pairs), parts.fragment))


def _coerce_number(name: str, value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidFilterState(f"{name} must be numeric, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidFilterState(f"{name} must be numeric, got {value!r}") from exc


class FilterStore:
    """Single source of truth for the current search criteria.

    Every accepted change is written back to `url` and announced to subscribers.
    Subscribers run after the store lock is released.
    """

    def __init__(self, url: str = "/", initial: Optional[FilterState] = None) -> None:
        self._lock = threading.Lock()
        self._listeners: List[FilterListener] = []
        self._state = (initial or FilterState()).validate()
        self._url = url
        self._last_written_url: Optional[str] = None

    @property
    def state(self) -> FilterState:
        return self._state

    @property
    def url(self) -> str:
        return self._url

    def subscribe(self, listener: FilterListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def set_filters(self, **partial: Any) -> FilterState:
        """Merge `partial` into the current state.

        Raises InvalidFilterState and keeps the previous state when the merge would
        leave a half anchor or an out-of-range value. A merge that does not name
        `page` starts again from page 1.
        """
        unknown = set(partial) - _FIELD_NAMES
        if unknown:
            raise InvalidFilterState(f"unknown filter field(s): {', '.join(sorted(unknown))}")

        updates = dict(partial)
        for name in ("latitude", "longitude", "max_distance_km", "min_rating"):
            if name in updates:
                updates[name] = _coerce_number(name, updates[name])
        if "categories" in updates:
            updates["categories"] = _normalize_categories(updates["categories"])
        if "query" in updates:
            updates["query"] = _normalize_query(updates["query"])
        if updates.get("max_distance_km", 0) is None:
            updates["max_distance_km"] = DEFAULT_MAX_DISTANCE_KM
        if updates.get("min_rating", 0) is None:
            updates["min_rating"] = 0.0
        updates.setdefault("page", 1)

        with self._lock:
            candidate = replace(self._state, **updates).validate()
            listeners = self._commit(candidate)
        self._notify(candidate, listeners)
        return candidate

    def reset_filters(self) -> FilterState:
        candidate = FilterState()
        with self._lock:
            listeners = self._commit(candidate)
        self._notify(candidate, listeners)
        return candidate

    def navigate(self, url: str, fallback_anchor: Optional[Coordinate] = None) -> bool:
        """Apply an externally changed URL once. Returns False when nothing was applied.

        `fallback_anchor` fills in the anchor when the URL carries none.
        """
        with self._lock:
            if url == self._last_written_url:
                logger.debug("Skipping navigation to the URL this store just wrote: %s", url)
                return False
            parsed = parse_filter_params(url_params(url))
            if fallback_anchor is not None and not parsed.has_anchor:
                parsed = replace(parsed, latitude=fallback_anchor.lat, longitude=fallback_anchor.lng)
            self._url = url
            self._last_written_url = None
            if parsed == self._state:
                return False
            self._state = parsed
            listeners = list(self._listeners)
        self._notify(parsed, listeners)
        return True

    def annotate_url(self, **params: Optional[str]) -> str:
        """Set or remove (None) non-filter URL parameters such as the `source` marker, without a search."""
        reserved = set(params) & set(URL_PARAMS)
        if reserved:
            raise InvalidFilterState(f"use set_filters for {', '.join(sorted(reserved))}")
        with self._lock:
            parts = urlsplit(self._url or "")
            pairs = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in params]
            pairs.extend((k, v) for k, v in params.items() if v is not None)
            self._url = urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(pairs), parts.fragment))
            self._last_written_url = self._url
            return self._url

    def _commit(self, candidate: FilterState) -> List[FilterListener]:
        self._state = candidate
        self._url = apply_to_url(self._url, candidate)
        self._last_written_url = self._url
        return list(self._listeners)

    @staticmethod
    def _notify(state: FilterState, listeners: List[FilterListener]) -> None:
        for listener in listeners:
            listener(state)
