"""Escalation ladder that trades filtering for a usable result."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Optional, Tuple

from refill_search.core.errors import SearchFailed
from refill_search.models import STAGE_FULL, STAGE_LOCATION_DROPPED, STAGE_UNFILTERED, FilterState, QueryOutcome
from refill_search.search.executor import QueryExecutor

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3

Step = Tuple[str, Optional[FilterState]]


def plan_attempts(filters: FilterState) -> List[Step]:
    """Ordered (stage, filters) steps for one search intent; None means the bare list call.

    1. the filters as given
    2. the same filters without the anchor and distance, only when an anchor was set
    3. the unfiltered list, unless step 1 already was exactly that call
    """
    steps: List[Step] = [(STAGE_FULL, filters)]
    if filters.has_anchor:
        steps.append((STAGE_LOCATION_DROPPED, filters.without_location()))
    if filters.is_filtered or filters.page != 1:
        steps.append((STAGE_UNFILTERED, None))
    return steps[:MAX_ATTEMPTS]


class FallbackPolicy:
    def __init__(self, executor: QueryExecutor) -> None:
        self.executor = executor

    def run(self, filters: FilterState) -> QueryOutcome:
        """Run the ladder for `filters.page`; raises SearchFailed once every step failed."""
        steps = plan_attempts(filters)
        outcome: Optional[QueryOutcome] = None
        for attempt, (stage, step_filters) in enumerate(steps, start=1):
            page = step_filters.page if step_filters is not None else 1
            outcome = self.executor.execute(step_filters, page)
            outcome.attempts = attempt
            outcome.fallback_stage = stage
            if outcome.ok:
                if stage != STAGE_FULL:
                    logger.warning("Store search degraded to stage=%s after %s attempt(s)", stage, attempt)
                return outcome
            if attempt < len(steps):
                logger.warning(
                    "Store search attempt %s/%s failed (%s); escalating to stage=%s",
                    attempt,
                    len(steps),
                    outcome.failure_reason,
                    steps[attempt][0],
                )

        logger.error("Store search exhausted %s attempt(s): %s", len(steps), outcome.failure_reason)
        raise SearchFailed(outcome, attempts=len(steps))


def effective_filters(outcome: QueryOutcome) -> FilterState:
    """Filters that later pages of `outcome` must be fetched with."""
    return replace(outcome.filters or FilterState(), page=outcome.pagination.page)
