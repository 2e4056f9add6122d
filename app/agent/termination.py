"""
Progress tracking and early-termination policy for the research loop.
"""

import logging
from dataclasses import dataclass

from app.agent.budget import is_depleted, is_expired, time_fraction_used
from app.agent.executor import ActionExecutor
from app.agent.facets import has_domain_diversity
from app.agent.models import AgentState, SearchAction
from app.agent.tracking import CallTracker
from app.core.config import (
    DEAD_END_PASSAGES,
    FRESHNESS_BOOST_K,
    FRESHNESS_DAYS,
    HARD_TIME_FRACTION,
    MIN_DOMAIN_DIVERSITY,
    SOFT_COVERAGE_RATIO,
    SOFT_TIME_FRACTION,
    STAGNATION_LIMIT,
)
from app.services.web_utils import age_days, current_year, newest_date

logger = logging.getLogger(__name__)

# Exits that leave a passage set worth shrinking before synthesis
CONSOLIDATING_REASONS = frozenset({"budget_depleted", "hard_time_limit", "soft_time_limit"})


@dataclass
class ProgressUpdate:
    progressed: bool
    stop: bool
    iterations_without_progress: int


class ProgressTracker:
    """Counts consecutive iterations in which covered-facet count did not rise."""

    def __init__(self, limit: int = STAGNATION_LIMIT) -> None:
        self.limit = limit
        self.previous = 0
        self.iterations_without_progress = 0

    def reset(self) -> None:
        self.previous = 0
        self.iterations_without_progress = 0

    def update(self, covered_count: int) -> ProgressUpdate:
        progressed = covered_count > self.previous
        if progressed:
            self.iterations_without_progress = 0
        else:
            self.iterations_without_progress += 1
        self.previous = max(self.previous, covered_count)
        return ProgressUpdate(
            progressed=progressed,
            stop=self.iterations_without_progress >= self.limit,
            iterations_without_progress=self.iterations_without_progress,
        )


def stop_reason(state: AgentState, required_covered: bool, coverage_ratio: float) -> str | None:
    """Name of the first termination rule that fires, or None to keep going."""
    budget = state.budget
    if is_depleted(budget):
        return "budget_depleted"
    used = time_fraction_used(budget)
    if used > HARD_TIME_FRACTION:
        return "hard_time_limit"
    if required_covered and has_domain_diversity(state.passages, MIN_DOMAIN_DIVERSITY):
        return "facets_covered"
    if len(state.passages) >= DEAD_END_PASSAGES and state.peak_facet_coverage == 0:
        return "dead_end"
    if used > SOFT_TIME_FRACTION and coverage_ratio >= SOFT_COVERAGE_RATIO:
        return "soft_time_limit"
    return None


def should_stop_loop(state: AgentState, required_covered: bool, coverage_ratio: float) -> bool:
    reason = stop_reason(state, required_covered, coverage_ratio)
    if reason:
        logger.info("[termination:should_stop_loop] stop reason=%s", reason)
    return reason is not None


def needs_freshness_boost(state: AgentState) -> bool:
    if not state.time_sensitive or state.freshness_boosted:
        return False
    if state.budget.searches <= 0 or is_expired(state.budget):
        return False
    newest = newest_date([p.published_date for p in state.passages])
    age = age_days(newest)
    return age is None or age > FRESHNESS_DAYS


def freshness_query(state: AgentState) -> str:
    seed = state.decomposed_queries_for_session[0] if state.decomposed_queries_for_session else state.question
    seed = " ".join(seed.strip().rstrip("?").split())
    year = str(current_year())
    if year not in seed:
        seed = f"{seed} {year}"
    return f"{seed} latest"


def maybe_freshness_boost(
    state: AgentState,
    executor: ActionExecutor,
    tracker: CallTracker | None = None,
) -> bool:
    """One extra week-scoped SEARCH per run when a time-sensitive question lacks recent evidence."""
    if not needs_freshness_boost(state):
        return False
    state.freshness_boosted = True
    action = SearchAction(query=freshness_query(state), k=FRESHNESS_BOOST_K, time_range="w")
    logger.info("[termination:maybe_freshness_boost] forcing recent search query=%r", action.query)
    state.trace.append({"step": "freshness_boost", "query": action.query})
    executor.execute(action, state, tracker)
    return True
