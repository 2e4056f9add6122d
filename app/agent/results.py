"""
Result builder: citations and the staleness warning for a finished run.
"""

import logging
from datetime import date

from app.agent.models import AgentState, Citation, Passage, ReActResult
from app.core.config import DEBUG_TRACE, FRESHNESS_DAYS, MAX_CITATIONS
from app.services.web_utils import age_days, newest_date

logger = logging.getLogger(__name__)

TIME_WARNING = "No confirmation within the last 30 days; info may be outdated."


def build_citations(passages: list[Passage], limit: int = MAX_CITATIONS) -> list[Citation]:
    """First passage per URL, in passage order, at most `limit`."""
    seen: set[str] = set()
    citations: list[Citation] = []
    for p in passages:
        if not p.url or p.url in seen:
            continue
        seen.add(p.url)
        citations.append(
            Citation(
                url=p.url,
                title=p.title,
                published_date=p.published_date.isoformat() if p.published_date else None,
            )
        )
        if len(citations) >= limit:
            break
    return citations


def time_warning(time_sensitive: bool, passages: list[Passage], today: date | None = None) -> str | None:
    """Warning text when a time-sensitive question has no passage from the last 30 days."""
    if not time_sensitive:
        return None
    age = age_days(newest_date([p.published_date for p in passages]), today)
    if age is None or age > FRESHNESS_DAYS:
        return TIME_WARNING
    return None


def build_result(
    state: AgentState,
    answer_md: str,
    metrics: dict | None = None,
    include_trace: bool = DEBUG_TRACE,
) -> ReActResult:
    result = ReActResult(
        final_answer_md=answer_md,
        citations=build_citations(state.passages),
        trace=None,
        time_warning=time_warning(state.time_sensitive, state.passages),
    )
    if include_trace:
        result.trace = list(state.trace)
        if metrics:
            result.trace.append({"step": "metrics", **metrics})
    logger.info(
        "[results:build_result] OUT citations=%d time_warning=%s answer_len=%d",
        len(result.citations), bool(result.time_warning), len(answer_md),
    )
    return result
