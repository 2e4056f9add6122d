"""
Budget manager: allocate and consume the per-run resource envelope.

Counters never go negative; callers check depletion (or the consume_* return value)
before spending. The time budget is the authoritative deadline for every provider call.
"""

import logging
import time
from typing import Any

from app.agent.models import Budget
from app.core.config import BUDGET_FETCHES, BUDGET_SEARCHES, BUDGET_TIME_MS, BUDGET_TOKENS

logger = logging.getLogger(__name__)

# Below this, a network call would be abandoned before it could answer
MIN_CALL_TIMEOUT = 0.5


def now_ms() -> float:
    return time.time() * 1000.0


def init_budget(overrides: dict[str, Any] | None = None) -> Budget:
    """Defaults (25s / 4 searches / 12 fetches / 24k tokens) overlaid with caller overrides."""
    values = {
        "time_ms": BUDGET_TIME_MS,
        "searches": BUDGET_SEARCHES,
        "fetches": BUDGET_FETCHES,
        "tokens": BUDGET_TOKENS,
    }
    for key, value in (overrides or {}).items():
        if key in values and value is not None:
            values[key] = max(0, int(value))
    budget = Budget(started_ms=now_ms(), **values)
    logger.info(
        "[budget:init] OUT time_ms=%d searches=%d fetches=%d tokens=%d",
        budget.time_ms, budget.searches, budget.fetches, budget.tokens,
    )
    return budget


def elapsed_ms(budget: Budget) -> float:
    return now_ms() - budget.started_ms


def remaining_ms(budget: Budget) -> float:
    return max(0.0, budget.time_ms - elapsed_ms(budget))


def time_fraction_used(budget: Budget) -> float:
    if budget.time_ms <= 0:
        return 1.0
    return elapsed_ms(budget) / budget.time_ms


def is_depleted(budget: Budget) -> bool:
    """Out of time, or out of both searches and fetches."""
    if elapsed_ms(budget) >= budget.time_ms:
        return True
    return budget.searches <= 0 and budget.fetches <= 0


def is_expired(budget: Budget) -> bool:
    return elapsed_ms(budget) >= budget.time_ms


def call_timeout(budget: Budget, default: float) -> float:
    """Network timeout for one call: the provider default, capped by the time left."""
    return max(MIN_CALL_TIMEOUT, min(default, remaining_ms(budget) / 1000.0))


def consume_search(budget: Budget) -> bool:
    if budget.searches <= 0:
        return False
    budget.searches -= 1
    return True


def consume_fetch(budget: Budget) -> bool:
    if budget.fetches <= 0:
        return False
    budget.fetches -= 1
    return True


def consume_tokens(budget: Budget, used: int) -> None:
    budget.tokens = max(0, budget.tokens - max(0, int(used or 0)))


def cap_budget(budget: Budget, max_searches: int, max_fetches: int) -> Budget:
    """Shrink counters in place (used for MINIMAL_SEARCH questions)."""
    budget.searches = min(budget.searches, max_searches)
    budget.fetches = min(budget.fetches, max_fetches)
    return budget


def snapshot(budget: Budget) -> dict[str, Any]:
    return {
        "timeMsLeft": int(remaining_ms(budget)),
        "searches": budget.searches,
        "fetches": budget.fetches,
        "tokens": budget.tokens,
    }
