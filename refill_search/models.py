"""Core data models shared by the store discovery pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from refill_search.core.errors import InvalidFilterState

DEFAULT_MAX_DISTANCE_KM = 5.0
MAX_DISTANCE_LIMIT_KM = 50.0
MAX_QUERY_LENGTH = 100

SORT_OPTIONS = frozenset({"default", "rating", "distance"})

LOCATION_SOURCES = frozenset({"gps", "manual", "default"})

NETWORK_TIMEOUT = "network_timeout"
SERVER_ERROR = "server_error"
EMPTY_RESULT = "empty_result"

STAGE_FULL = "full"
STAGE_LOCATION_DROPPED = "location_dropped"
STAGE_UNFILTERED = "unfiltered"


def is_valid_coordinate(lat: Any, lng: Any) -> bool:
    if isinstance(lat, bool) or isinstance(lng, bool):
        return False
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return False
    if lat != lat or lng != lng:  # NaN
        return False
    return abs(lat) <= 90 and abs(lng) <= 180


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float

    def __post_init__(self) -> None:
        if not is_valid_coordinate(self.lat, self.lng):
            raise InvalidFilterState(f"coordinate out of range: ({self.lat}, {self.lng})")


@dataclass(frozen=True)
class StoredLocation:
    lat: float
    lng: float
    source: str
    timestamp: float


@dataclass(frozen=True)
class ResolvedLocation:
    """Anchor picked for the session and the priority level that produced it."""

    coordinate: Coordinate
    source: str
    origin: str


@dataclass(frozen=True)
class FilterState:
    """Canonical search criteria for one search session."""

    categories: FrozenSet[str] = frozenset()
    max_distance_km: float = DEFAULT_MAX_DISTANCE_KM
    min_rating: float = 0.0
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    query: Optional[str] = None
    page: int = 1
    sort: str = "default"

    @property
    def has_anchor(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def is_filtered(self) -> bool:
        return self.has_anchor or bool(self.categories) or self.min_rating > 0 or bool(self.query)

    @property
    def anchor(self) -> Optional[Coordinate]:
        if not self.has_anchor:
            return None
        return Coordinate(self.latitude, self.longitude)

    def without_location(self) -> "FilterState":
        return replace(self, latitude=None, longitude=None, max_distance_km=DEFAULT_MAX_DISTANCE_KM)

    def validate(self) -> "FilterState":
        """Raise InvalidFilterState unless every field is usable; returns self."""
        if (self.latitude is None) != (self.longitude is None):
            raise InvalidFilterState("latitude and longitude must be set together")
        if self.has_anchor and not is_valid_coordinate(self.latitude, self.longitude):
            raise InvalidFilterState(f"anchor out of range: ({self.latitude}, {self.longitude})")
        if not 0 < self.max_distance_km <= MAX_DISTANCE_LIMIT_KM:
            raise InvalidFilterState(
                f"max_distance_km must be in (0, {MAX_DISTANCE_LIMIT_KM:g}], got {self.max_distance_km}"
            )
        if not 0 <= self.min_rating <= 5:
            raise InvalidFilterState(f"min_rating must be in [0, 5], got {self.min_rating}")
        if self.query is not None and len(self.query) > MAX_QUERY_LENGTH:
            raise InvalidFilterState(f"query longer than {MAX_QUERY_LENGTH} characters")
        if any("," in category for category in self.categories):
            raise InvalidFilterState("category labels must not contain commas")
        if not isinstance(self.page, int) or self.page < 1:
            raise InvalidFilterState(f"page must be a positive integer, got {self.page!r}")
        if self.sort not in SORT_OPTIONS:
            raise InvalidFilterState(f"sort must be one of {sorted(SORT_OPTIONS)}, got {self.sort!r}")
        return self


@dataclass(frozen=True, slots=True)
class StoreSummary:
    """One row of a store list or search response."""

    id: Any
    name: str
    address: Optional[str] = None
    categories: Tuple[str, ...] = ()
    naver_rating: float = 0.0
    kakao_rating: float = 0.0
    distance_km: Optional[float] = None
    thumbnail_url: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    raw_snapshot: Optional[Dict[str, Any]] = field(default=None, repr=False, compare=False)

    @property
    def average_rating(self) -> float:
        return (self.naver_rating + self.kakao_rating) / 2


@dataclass(frozen=True)
class Pagination:
    page: int = 1
    has_more: bool = False
    total: Optional[int] = None


@dataclass
class QueryOutcome:
    """Normalized result of one query attempt."""

    items: List[StoreSummary] = field(default_factory=list)
    pagination: Pagination = field(default_factory=Pagination)
    failure_reason: Optional[str] = None
    error: Optional[Exception] = field(default=None, repr=False)
    endpoint: str = "list"
    fallback_stage: str = STAGE_FULL
    filters: Optional[FilterState] = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.failure_reason in (None, EMPTY_RESULT)

    @property
    def degraded(self) -> bool:
        return self.fallback_stage != STAGE_FULL


@dataclass
class PageState:
    current_page: int = 1
    has_more: bool = True
    accumulated: List[StoreSummary] = field(default_factory=list)
