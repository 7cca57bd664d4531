"""Append-only result list across "load more" page fetches."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from refill_search.models import PageState, QueryOutcome

logger = logging.getLogger(__name__)

PageFetcher = Callable[[int], QueryOutcome]


class PaginationAccumulator:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = PageState()
        self._in_flight = False
        self._generation = 0

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def snapshot(self) -> PageState:
        with self._lock:
            return PageState(
                current_page=self._state.current_page,
                has_more=self._state.has_more,
                accumulated=list(self._state.accumulated),
            )

    def start_new_search(self) -> None:
        with self._lock:
            self._state = PageState(current_page=1, has_more=True, accumulated=[])
            self._in_flight = False
            self._generation += 1

    def apply_first_page(self, outcome: QueryOutcome) -> None:
        with self._lock:
            self._state = PageState(
                current_page=outcome.pagination.page,
                has_more=outcome.pagination.has_more,
                accumulated=list(outcome.items),
            )

    def apply_next_page(self, outcome: QueryOutcome) -> None:
        with self._lock:
            self._append(outcome)

    def _append(self, outcome: QueryOutcome) -> None:
        self._state.accumulated.extend(outcome.items)
        self._state.current_page = max(outcome.pagination.page, self._state.current_page + 1)
        self._state.has_more = outcome.pagination.has_more

    def load_more(self, fetch_page: PageFetcher) -> Optional[QueryOutcome]:
        """Fetch and append the next page.

        Returns None without fetching when there is nothing more to load or a fetch
        is already running. A failed fetch leaves the accumulated list and page
        untouched. A fetch that finishes after start_new_search() is dropped and
        None is returned, as for a fetch that never started.
        """
        with self._lock:
            if not self._state.has_more or self._in_flight:
                return None
            self._in_flight = True
            generation = self._generation
            next_page = self._state.current_page + 1

        try:
            outcome = fetch_page(next_page)
        except Exception:
            with self._lock:
                if generation == self._generation:
                    self._in_flight = False
            raise

        with self._lock:
            if generation != self._generation:
                logger.info("Discarding page %s fetched for a superseded search", next_page)
                return None
            self._in_flight = False
            if outcome.ok:
                self._append(outcome)
                return outcome
        logger.warning("Load more for page %s failed (%s); keeping loaded stores", next_page, outcome.failure_reason)
        return outcome
