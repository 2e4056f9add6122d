"""
Action executor: run one planner action and fold its evidence into the AgentState.

SEARCH and FETCH spend one unit of budget each (checked before spending); RERANK
replaces the passage collection. Provider failures are logged and produce no new
evidence: nothing here raises into the loop.
"""

import logging
from dataclasses import dataclass, field

from app.agent.budget import call_timeout, consume_fetch, consume_search, is_expired
from app.agent.facets import passage_domain
from app.agent.models import Action, AgentState, FetchAction, Passage, RerankAction, SearchAction
from app.agent.tracking import CallTracker
from app.core.config import (
    CHUNK_OVERLAP_TOKENS,
    CHUNK_TOKENS,
    FETCH_TIMEOUT,
    MAX_CHUNKS_PER_FETCH,
    PER_DOMAIN_CAP,
    RERANK_API_TIMEOUT,
    SEARCH_API_TIMEOUT,
    SEARCH_HISTORY_LIMIT,
)
from app.core.errors import ProviderError
from app.services.fetch import FetchService, date_from_url
from app.services.rerank import RerankService
from app.services.search import SearchProviderManager, filter_and_score, multi_query_search, retain_diverse
from app.services.text_processing import chunk_by_tokens
from app.services.web_utils import etld_plus_one, stable_hash

logger = logging.getLogger(__name__)


@dataclass
class ActionOutcome:
    action: str
    executed: bool = True
    added: int = 0
    removed: int = 0
    note: str = ""
    details: dict = field(default_factory=dict)


def search_passage_id(url: str) -> str:
    return f"search_{stable_hash(url)}"


def fetch_passage_id(url: str, ordinal: int) -> str:
    return f"fetch_{stable_hash(url)}_{ordinal}"


def apply_domain_cap(passages: list[Passage], cap: int = PER_DOMAIN_CAP, limit: int | None = None) -> list[Passage]:
    """Keep order; drop passages once their domain already has `cap`; stop at `limit`."""
    counts: dict[str, int] = {}
    out: list[Passage] = []
    for p in passages:
        domain = passage_domain(p)
        if counts.get(domain, 0) >= cap:
            continue
        counts[domain] = counts.get(domain, 0) + 1
        out.append(p)
        if limit is not None and len(out) >= limit:
            break
    return out


class ActionExecutor:
    def __init__(
        self,
        search: SearchProviderManager,
        fetcher: FetchService,
        reranker: RerankService,
    ) -> None:
        self.search = search
        self.fetcher = fetcher
        self.reranker = reranker

    def execute(self, action: Action, state: AgentState, tracker: CallTracker | None = None) -> ActionOutcome:
        state.action_counts[action.type] = state.action_counts.get(action.type, 0) + 1
        if isinstance(action, SearchAction):
            outcome = self._search(action, state, tracker)
        elif isinstance(action, FetchAction):
            outcome = self._fetch(action, state, tracker)
        elif isinstance(action, RerankAction):
            outcome = self._rerank(action.top_n, state, tracker)
        else:
            outcome = ActionOutcome(action="STOP", executed=False, note="stop")
        state.trace.append(
            {
                "step": "act",
                "action": outcome.action,
                "executed": outcome.executed,
                "added": outcome.added,
                "removed": outcome.removed,
                "note": outcome.note,
                "passages": len(state.passages),
                **outcome.details,
            }
        )
        return outcome

    def _existing_ids(self, state: AgentState) -> set[str]:
        return {p.id for p in state.passages}

    def _search(self, action: SearchAction, state: AgentState, tracker: CallTracker | None) -> ActionOutcome:
        logger.info("[executor:search] IN  query=%r k=%d time_range=%s", action.query, action.k, action.time_range)
        if is_expired(state.budget):
            return ActionOutcome(action="SEARCH", executed=False, note="time budget exhausted")
        if not consume_search(state.budget):
            return ActionOutcome(action="SEARCH", executed=False, note="no searches left")
        state.metrics.searches += 1
        state.search_history.append(action.query)
        del state.search_history[:-SEARCH_HISTORY_LIMIT]

        fanout = multi_query_search(
            self.search,
            action.query,
            action.k,
            action.time_range,
            state.time_sensitive,
            timeout=call_timeout(state.budget, SEARCH_API_TIMEOUT),
            tracker=tracker,
        )
        if not fanout.results:
            logger.info("[executor:search] OUT no results failed_variants=%d", fanout.failed_variants)
            return ActionOutcome(action="SEARCH", note="no results", details={"query": action.query})

        scored = filter_and_score(fanout.results)
        diverse = retain_diverse(scored, existing_domains=[passage_domain(p) for p in state.passages])
        existing = self._existing_ids(state)
        added = 0
        for result in diverse:
            pid = search_passage_id(result.url)
            if pid in existing:
                continue
            existing.add(pid)
            state.passages.append(
                Passage(
                    id=pid,
                    text=result.snippet,
                    url=result.url,
                    title=result.title or None,
                    published_date=date_from_url(result.url),
                    source_domain=result.domain or etld_plus_one(result.url),
                    score=result.score,
                )
            )
            added += 1
        logger.info(
            "[executor:search] OUT raw=%d scored=%d diverse=%d added=%d",
            len(fanout.results), len(scored), len(diverse), added,
        )
        return ActionOutcome(
            action="SEARCH",
            added=added,
            details={"query": action.query, "raw": len(fanout.results), "kept": len(diverse)},
        )

    def _fetch(self, action: FetchAction, state: AgentState, tracker: CallTracker | None) -> ActionOutcome:
        logger.info("[executor:fetch] IN  url=%s", action.url)
        if is_expired(state.budget):
            return ActionOutcome(action="FETCH", executed=False, note="time budget exhausted")
        if not consume_fetch(state.budget):
            return ActionOutcome(action="FETCH", executed=False, note="no fetches left")
        state.metrics.fetches += 1
        try:
            page = self.fetcher.fetch(action.url, timeout=call_timeout(state.budget, FETCH_TIMEOUT), tracker=tracker)
        except ProviderError as e:
            logger.warning("[executor:fetch] failed url=%s: %s", action.url, e.message)
            return ActionOutcome(action="FETCH", note="fetch failed", details={"url": action.url})
        if not page.ok:
            logger.info("[executor:fetch] OUT unusable status=%d text_len=%d", page.status, len(page.text))
            return ActionOutcome(action="FETCH", note=f"status {page.status}", details={"url": action.url})

        chunks = chunk_by_tokens(page.text, CHUNK_TOKENS, CHUNK_OVERLAP_TOKENS, max_chunks=MAX_CHUNKS_PER_FETCH)
        existing = self._existing_ids(state)
        domain = etld_plus_one(action.url)
        added = 0
        for i, chunk in enumerate(chunks):
            pid = fetch_passage_id(action.url, i)
            if pid in existing:
                continue
            existing.add(pid)
            state.passages.append(
                Passage(
                    id=pid,
                    text=chunk,
                    url=action.url,
                    title=page.title,
                    published_date=page.published_date,
                    source_domain=domain,
                )
            )
            added += 1
        logger.info("[executor:fetch] OUT chunks=%d added=%d published=%s", len(chunks), added, page.published_date)
        return ActionOutcome(action="FETCH", added=added, details={"url": action.url, "chunks": len(chunks)})

    def _rerank(self, top_n: int, state: AgentState, tracker: CallTracker | None) -> ActionOutcome:
        logger.info("[executor:rerank] IN  passages=%d top_n=%d", len(state.passages), top_n)
        state.metrics.reranks += 1
        if not state.passages:
            return ActionOutcome(action="RERANK", executed=False, note="no passages")
        before = len(state.passages)
        # Past the deadline only the local keyword scorer may run
        ranked = self.reranker.rerank(
            state.question,
            state.passages,
            timeout=call_timeout(state.budget, RERANK_API_TIMEOUT),
            tracker=tracker,
            keyword_only=is_expired(state.budget),
        )
        state.passages = apply_domain_cap(ranked, PER_DOMAIN_CAP, limit=top_n)
        removed = before - len(state.passages)
        logger.info("[executor:rerank] OUT kept=%d removed=%d", len(state.passages), removed)
        return ActionOutcome(action="RERANK", removed=removed, details={"top_n": top_n})
