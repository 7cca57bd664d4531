"""Turns a FilterState and page number into one store API call."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from refill_search.core.config import Settings
from refill_search.core.errors import NetworkTimeout, ServerError
from refill_search.etl.transform import normalize_response
from refill_search.models import (
    DEFAULT_MAX_DISTANCE_KM,
    EMPTY_RESULT,
    NETWORK_TIMEOUT,
    SERVER_ERROR,
    FilterState,
    Pagination,
    QueryOutcome,
)
from refill_search.search.filters import format_number
from refill_search.vendors import store_api

logger = logging.getLogger(__name__)


def build_search_params(filters: FilterState, page: int, limit: int) -> Dict[str, Any]:
    """Parameters for the filtered search endpoint; defaults are left out."""
    params: Dict[str, Any] = {}
    if filters.has_anchor:
        params["lat"] = format_number(filters.latitude)
        params["lng"] = format_number(filters.longitude)
        if filters.max_distance_km != DEFAULT_MAX_DISTANCE_KM:
            params["radius"] = format_number(filters.max_distance_km)
    if filters.min_rating > 0:
        params["minRating"] = format_number(filters.min_rating)
    if filters.categories:
        params["categories"] = ",".join(sorted(filters.categories))
    if filters.query:
        params["query"] = filters.query
    if filters.sort != "default":
        params["sort"] = filters.sort
    params["page"] = page
    params["limit"] = limit
    return params


class QueryExecutor:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def execute(self, filters: Optional[FilterState], page: int = 1) -> QueryOutcome:
        """Run exactly one request. `filters=None` is the bare unfiltered list call.

        Never raises for timeouts or server failures; those come back as a failed outcome.
        """
        timeout = self.settings.request_timeout_seconds
        if filters is not None and filters.is_filtered:
            endpoint = "search"
            params = build_search_params(filters, page, self.settings.page_size)
        else:
            endpoint = "list"
            params = {"page": page, "limit": self.settings.page_size} if page > 1 else {}

        logger.info("Querying store %s endpoint page=%s params=%s", endpoint, page, params)
        try:
            if endpoint == "search":
                payload = store_api.search_stores(self.settings.search_url, params, timeout)
            else:
                payload = store_api.list_stores(self.settings.list_url, timeout, params)
            items, pagination = normalize_response(payload, requested_page=page)
        except NetworkTimeout as exc:
            return self._failed(NETWORK_TIMEOUT, exc, endpoint, filters, page)
        except ServerError as exc:
            return self._failed(SERVER_ERROR, exc, endpoint, filters, page)

        failure_reason = None
        if not items and page == 1:
            logger.info("Store %s endpoint returned no stores for the first page", endpoint)
            failure_reason = EMPTY_RESULT
        return QueryOutcome(
            items=items,
            pagination=pagination,
            failure_reason=failure_reason,
            endpoint=endpoint,
            filters=filters,
        )

    @staticmethod
    def _failed(reason: str, exc: Exception, endpoint: str, filters: Optional[FilterState], page: int) -> QueryOutcome:
        logger.warning("Store %s query failed (%s): %s", endpoint, reason, exc)
        return QueryOutcome(
            pagination=Pagination(page=page, has_more=False),
            failure_reason=reason,
            error=exc,
            endpoint=endpoint,
            filters=filters,
        )
