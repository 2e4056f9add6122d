"""
Planner: one reasoning-model call per iteration chooses SEARCH, FETCH, RERANK or STOP.

The model's JSON goes through parse_action (closed union, unknown shapes rejected)
and SEARCH queries through guard_search_query (repairs vague, repeated or
compound queries). Nothing the model returns can raise: every failure becomes the
deterministic fallback action.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from app.agent.budget import call_timeout, consume_tokens, snapshot
from app.agent.decomposition import (
    MAX_QUERY_WORDS,
    clause_count,
    create_focused_query,
    normalize_query,
    token_overlap,
)
from app.agent.facets import all_required_covered, coverage_ratio, required_facets
from app.agent.llm import REASONING_CONFIG, LLMProviderManager, parse_json_object
from app.agent.models import (
    TIME_RANGES,
    Action,
    AgentState,
    FetchAction,
    QuestionType,
    RerankAction,
    SearchAction,
    StopAction,
)
from app.agent.tracking import CallTracker
from app.core.config import (
    DEFAULT_RERANK_TOP_N,
    DEFAULT_SEARCH_K,
    FALLBACK_SEARCH_PASSAGE_THRESHOLD,
    LLM_API_TIMEOUT,
    MAX_QUERY_CLAUSES,
    QUERY_OVERLAP_LIMIT,
    STAGNATION_LIMIT,
)
from app.core.errors import ProviderError
from app.services.web_utils import is_http_url

logger = logging.getLogger(__name__)

MAX_SEARCH_K = 20
MAX_RERANK_TOP_N = 50

PLANNER_SYSTEM_PROMPT = """Reply ONLY with minified JSON. Do not include markdown.

{"thought":"...","action":{"type":"SEARCH|FETCH|RERANK|STOP","query":"...","k":12,"url":"https://...","top_n":6,"timeRange":"d|w|m|y"}}

You are the planning step of a web research agent. Choose exactly one next action.
- SEARCH: a short keyword query (3-8 words) targeting ONE uncovered facet. Never paste the whole question.
- FETCH: read one promising, high-authority URL from the candidates that has not been fetched yet.
- RERANK: reorder evidence and keep the best diverse passages.
- STOP: only when every required facet is covered by at least one independent source and at least two domains agree."""


def parse_action(payload: Any) -> Action | None:
    """Validate a model payload into the closed action union. Returns None for anything malformed."""
    if not isinstance(payload, dict):
        return None
    action = payload.get("action", payload)
    if not isinstance(action, dict):
        return None
    kind = str(action.get("type") or "").strip().upper()
    if kind == "SEARCH":
        query = action.get("query")
        if query is not None and not isinstance(query, str):
            return None
        k = _int_or(action.get("k"), DEFAULT_SEARCH_K)
        time_range = action.get("timeRange", action.get("time_range"))
        return SearchAction(
            query=" ".join((query or "").split()),
            k=min(max(1, k), MAX_SEARCH_K),
            time_range=time_range if time_range in TIME_RANGES else None,
        )
    if kind == "FETCH":
        url = action.get("url")
        if not isinstance(url, str) or not is_http_url(url):
            return None
        return FetchAction(url=url.strip())
    if kind == "RERANK":
        top_n = _int_or(action.get("top_n", action.get("topN")), DEFAULT_RERANK_TOP_N)
        return RerankAction(top_n=min(max(1, top_n), MAX_RERANK_TOP_N))
    if kind == "STOP":
        return StopAction()
    return None


def _int_or(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return default


def fallback_action(state: AgentState) -> Action:
    """Deterministic plan when the model output is unusable."""
    if len(state.passages) < FALLBACK_SEARCH_PASSAGE_THRESHOLD:
        time_range = "w" if state.time_sensitive else None
        return SearchAction(query=f"{state.question} latest", k=DEFAULT_SEARCH_K, time_range=time_range)
    return RerankAction(top_n=DEFAULT_RERANK_TOP_N)


@dataclass
class GuardResult:
    action: SearchAction
    reason: str | None = None


def _tried(query: str, state: AgentState) -> bool:
    norm = normalize_query(query)
    return any(normalize_query(q) == norm for q in state.search_history)


def _next_decomposed(state: AgentState) -> str:
    """Next unused sub-query; once all are used the list starts over."""
    session = state.decomposed_queries_for_session
    used = {normalize_query(q) for q in state.used_decomposed_queries}
    for query in session:
        if normalize_query(query) not in used:
            return query
    state.used_decomposed_queries.clear()
    last = normalize_query(state.search_history[-1]) if state.search_history else ""
    for query in session:
        if normalize_query(query) != last:
            return query
    return session[0]


def repair_reason(query: str, state: AgentState) -> str | None:
    if not query.strip():
        return "empty"
    if normalize_query(query) == normalize_query(state.question):
        return "duplicates_question"
    if token_overlap(query, state.question) > QUERY_OVERLAP_LIMIT:
        return "overlaps_question"
    if clause_count(query) > MAX_QUERY_CLAUSES:
        return "too_many_clauses"
    if _tried(query, state):
        return "already_tried"
    return None


def guard_search_query(action: SearchAction, state: AgentState) -> GuardResult:
    """
    Repair a proposed SEARCH query.

    With decomposed sub-queries (complex questions) the query must be one of them:
    vague, compound, repeated or off-list proposals are replaced by the next unused
    sub-query. Without them only empty or repeated queries are replaced, by a
    focused query for an uncovered facet.
    """
    query = action.query
    session = state.decomposed_queries_for_session
    if session:
        on_list = {normalize_query(q): q for q in session}
        reason = repair_reason(query, state)
        if reason is None and normalize_query(query) not in on_list:
            reason = "not_decomposed"
        if reason is not None:
            query = _next_decomposed(state)
        else:
            query = on_list[normalize_query(query)]
        state.used_decomposed_queries.add(query)
        if reason is not None:
            logger.info("[planner:guard] rewrote query reason=%s -> %r", reason, query)
        return GuardResult(replace(action, query=query), reason)

    reason = None
    if not query.strip():
        reason = "empty"
    elif _tried(query, state):
        reason = "already_tried"
    if reason is None:
        return GuardResult(action)
    candidates = [
        create_focused_query(state.question, f.name)
        for f in required_facets(state.facets)
        if not f.covered
    ]
    candidates.append(state.question)
    replacement = next((c for c in candidates if c and not _tried(c, state)), None)
    if replacement is None:
        replacement = query or state.question
    logger.info("[planner:guard] rewrote query reason=%s -> %r", reason, replacement)
    return GuardResult(replace(action, query=replacement), reason)


def _fetched_urls(state: AgentState) -> set[str]:
    return {p.url for p in state.passages if p.id.startswith("fetch_")}


def build_planner_prompt(state: AgentState, iterations_without_progress: int) -> str:
    budget = snapshot(state.budget)
    required = required_facets(state.facets)
    covered = [f.name for f in required if f.covered]
    uncovered = [f for f in required if not f.covered]
    ratio = coverage_ratio(state.facets)
    top_sources = list(dict.fromkeys(p.url for p in state.passages))[:3]
    fetched = _fetched_urls(state)
    candidates = sorted(
        (p for p in state.passages if p.id.startswith("search_") and p.url not in fetched),
        key=lambda p: -(p.score or 0.0),
    )
    candidate_urls = list(dict.fromkeys(p.url for p in candidates))[:5]
    history = state.search_history
    repeated = sorted({q for i, q in enumerate(history) if q in history[:i]})
    recent = [q.lower() for q in history[-5:]]

    lines = [
        f"Current time: {datetime.now(timezone.utc).isoformat(timespec='seconds')}",
        f"Question: {state.question}",
        f"Question type: {state.question_type.value}",
        "",
        f"Budget left: {{timeMs:{budget['timeMsLeft']}, searches:{budget['searches']}, fetches:{budget['fetches']}}}",
        f"Passages: {len(state.passages)}",
        f"Top sources: {', '.join(top_sources) or 'none'}",
        f"Unfetched candidate URLs: {', '.join(candidate_urls) or 'none'}",
        f"Facet coverage: {len(covered)}/{len(required)} ({round(ratio * 100)}%)",
        f"Covered facets: {', '.join(covered) or 'none'}",
        "Uncovered required facets (with a suggested focused query):",
    ]
    if uncovered:
        for facet in uncovered:
            lines.append(f'- {facet.name} -> "{create_focused_query(state.question, facet.name)}"')
    else:
        lines.append("- none")
    lines.extend(
        [
            f"Repeated searches detected: {', '.join(repeated) or 'none'}",
            f"Search patterns to avoid: {', '.join(recent) or 'none'}",
            f"Iterations without progress: {iterations_without_progress}/{STAGNATION_LIMIT}",
        ]
    )
    if state.decomposed_queries_for_session:
        used = {normalize_query(q) for q in state.used_decomposed_queries}
        lines.append("")
        lines.append("MANDATORY: every SEARCH query must be copied from this list (prefer unused ones):")
        for q in state.decomposed_queries_for_session:
            marker = "used" if normalize_query(q) in used else "unused"
            lines.append(f'- "{q}" ({marker})')
    lines.extend(
        [
            "",
            "Rules:",
            "- If facet coverage < 60%, SEARCH is mandatory (budget permitting).",
            f"- SEARCH queries are 3-{MAX_QUERY_WORDS} keywords, one facet at a time, never the full question.",
            "- If there are promising unfetched URLs, FETCH one high-authority URL.",
            "- RERANK periodically to keep the top 8-10 diverse, recent passages.",
            "- STOP only when all required facets are covered and at least 2 domains contribute evidence.",
            "- Never repeat a search query. With repeated searches or no progress for 2+ iterations prefer RERANK or STOP.",
        ]
    )
    if state.question_type == QuestionType.MINIMAL_SEARCH:
        lines.append("- MINIMAL_SEARCH: one focused SEARCH is usually enough; STOP as soon as the answer is evidenced.")
    lines.append("")
    lines.append("Respond in JSON only.")
    return "\n".join(lines)


def _stop_allowed(state: AgentState) -> bool:
    if all_required_covered(state.facets):
        return True
    return state.budget.searches <= 0 and state.budget.fetches <= 0


def decide_action(
    state: AgentState,
    llm: LLMProviderManager,
    model: str,
    iterations_without_progress: int = 0,
    tracker: CallTracker | None = None,
) -> Action:
    logger.info(
        "[planner:decide_action] IN  passages=%d facets=%d searches_left=%d fetches_left=%d",
        len(state.passages), len(state.facets), state.budget.searches, state.budget.fetches,
    )
    messages = [
        {"role": "system", "content": PLANNER_SYSTEM_PROMPT},
        {"role": "user", "content": build_planner_prompt(state, iterations_without_progress)},
    ]
    config = replace(REASONING_CONFIG, json_mode=True, timeout=call_timeout(state.budget, LLM_API_TIMEOUT))
    action: Action | None = None
    thought = ""
    try:
        response = llm.call(model, messages, config, purpose="planner", tracker=tracker)
        consume_tokens(state.budget, response.usage)
        payload = parse_json_object(response.text)
        action = parse_action(payload)
        thought = str((payload or {}).get("thought") or "")[:300]
        if action is None:
            logger.info("[planner:decide_action] unusable model output raw=%r", response.text[:200])
    except ProviderError as e:
        logger.warning("[planner:decide_action] model call failed: %s", e.message)

    source = "model"
    if action is None:
        action = fallback_action(state)
        source = "fallback"
    elif isinstance(action, StopAction) and not _stop_allowed(state):
        logger.info("[planner:decide_action] STOP rejected: required facets not covered")
        action = fallback_action(state)
        source = "stop_gated"

    repair = None
    if isinstance(action, SearchAction):
        guarded = guard_search_query(action, state)
        action, repair = guarded.action, guarded.reason

    state.trace.append(
        {
            "step": "plan",
            "source": source,
            "thought": thought,
            "action": action.type,
            "query": getattr(action, "query", None),
            "repair": repair,
        }
    )
    logger.info("[planner:decide_action] OUT source=%s action=%s repair=%s", source, action, repair)
    return action
