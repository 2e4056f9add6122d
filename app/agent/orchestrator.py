"""
Workflow orchestrator: the single question → ReActResult entry point.

cache lookup → configuration check → state init (analysis, facets, decomposition)
→ route → loop → synthesis → result → answer cache.
"""

import hashlib
import json
import logging
from datetime import date
from typing import Any

from app.agent.budget import init_budget
from app.agent.decomposition import decompose_question
from app.agent.executor import ActionExecutor
from app.agent.facets import extract_facets
from app.agent.graph import ResearchLoop
from app.agent.llm import SYNTHESIS_CONFIG, LLMProviderManager, build_llm_manager, config_from_request
from app.agent.models import AgentState, Budget, QuestionType, ReActResult
from app.agent.results import build_result
from app.agent.router import analyze_question, route
from app.agent.synthesis import synthesize
from app.agent.tracking import CallTracker
from app.core.cache_store import ANSWER_NAMESPACE, CacheStore, build_cache_store
from app.core.config import (
    ANSWER_CACHE_DAILY_TTL,
    ANSWER_CACHE_EVERGREEN_TTL,
    REASONING_MODEL,
    SYNTHESIS_MODEL,
)
from app.core.errors import ConfigurationError
from app.services.fetch import FetchService
from app.services.rerank import RerankService, build_rerank_service
from app.services.search import SearchProviderManager, build_search_manager
from app.services.web_utils import day_bucket, is_time_sensitive, utc_today

logger = logging.getLogger(__name__)

MAX_QUESTION_CHARS = 2000


def build_cache_key(
    question: str,
    reasoning_model: str,
    synthesis_model: str,
    budget: Budget,
    today: date | None = None,
) -> str:
    """Deterministic answer-cache key; time-sensitive questions get a per-day bucket."""
    payload = {
        "q": " ".join(question.split()),
        "day": day_bucket(question, today),
        "reasoning": reasoning_model,
        "synthesis": synthesis_model,
        "searches": budget.searches,
        "fetches": budget.fetches,
    }
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return "answer:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()


class ResearchOrchestrator:
    def __init__(
        self,
        llm: LLMProviderManager,
        search: SearchProviderManager,
        fetcher: FetchService,
        reranker: RerankService,
        cache: CacheStore,
        reasoning_model: str = REASONING_MODEL,
        synthesis_model: str = SYNTHESIS_MODEL,
        budget_overrides: dict[str, Any] | None = None,
    ) -> None:
        self.llm = llm
        self.search = search
        self.cache = cache
        self.reasoning_model = reasoning_model
        self.synthesis_model = synthesis_model
        self.budget_overrides = budget_overrides or {}
        self.executor = ActionExecutor(search, fetcher, reranker)
        self.loop = ResearchLoop(llm, self.executor)

    def _check_configuration(self) -> None:
        if not self.llm.is_configured():
            raise ConfigurationError("No language-model provider is configured (set OPENAI_API_KEY or ANTHROPIC_API_KEY).")
        if not self.search.is_configured():
            raise ConfigurationError("No search provider is configured (set TAVILY_API_KEY, BING_API_KEY or SERPAPI_API_KEY).")

    def _init_state(self, question: str, budget: Budget, reasoning_model: str, tracker: CallTracker, today: date) -> AgentState:
        state = AgentState(question=question, budget=budget, time_sensitive=is_time_sensitive(question, today))
        analysis = analyze_question(question, self.llm, reasoning_model, state=state, tracker=tracker)
        state.question_type = analysis.type
        state.direct_answer = analysis.direct_answer
        state.trace.append({"step": "analysis", "questionType": analysis.type.value, "reasoning": analysis.reasoning})
        if analysis.type is QuestionType.DIRECT_ANSWER:
            return state
        state.facets = analysis.facets or extract_facets(question, self.llm, reasoning_model, budget, tracker)
        state.decomposed_queries_for_session = decompose_question(question, state.facets)
        logger.info(
            "[orchestrator:init_state] OUT type=%s time_sensitive=%s facets=%s decomposed=%s",
            state.question_type.value, state.time_sensitive, [f.name for f in state.facets],
            state.decomposed_queries_for_session,
        )
        return state

    def run(self, question: str, model: str | None = None, model_config: dict[str, Any] | None = None) -> ReActResult:
        """
        Answer one question. `model` overrides both the reasoning and synthesis
        models; `model_config` adjusts the synthesis call only.

        Raises ValueError for an empty question and ConfigurationError when no
        LLM or search provider is configured.
        """
        question = " ".join((question or "").split())
        if not question:
            raise ValueError("question is required")
        if len(question) > MAX_QUESTION_CHARS:
            raise ValueError(f"question must be at most {MAX_QUESTION_CHARS} characters")

        today = utc_today()
        reasoning_model = model or self.reasoning_model
        synthesis_model = model or self.synthesis_model
        budget = init_budget(self.budget_overrides)
        cache_key = build_cache_key(question, reasoning_model, synthesis_model, budget, today)
        logger.info("[orchestrator:run] START question=%r reasoning=%s synthesis=%s", question, reasoning_model, synthesis_model)

        cached = self.cache.get(cache_key, ANSWER_NAMESPACE)
        if isinstance(cached, dict):
            logger.info("[orchestrator:run] cache hit key=%s", cache_key)
            return ReActResult.from_dict(cached)

        self._check_configuration()
        tracker = CallTracker()
        state = self._init_state(question, budget, reasoning_model, tracker, today)

        result = route(state, lambda s: self.loop.run(s, reasoning_model, tracker))
        cacheable = True
        if result is None:
            answer, degraded = synthesize(
                question,
                state.passages,
                self.llm,
                synthesis_model,
                config_from_request(model_config, SYNTHESIS_CONFIG),
                budget=state.budget,
                tracker=tracker,
            )
            metrics = {
                "searches": state.metrics.searches,
                "fetches": state.metrics.fetches,
                "reranks": state.metrics.reranks,
                "calls": tracker.summary()["total_calls"],
            }
            result = build_result(state, answer, metrics)
            cacheable = not degraded and bool(state.passages)

        if cacheable:
            ttl = ANSWER_CACHE_DAILY_TTL if state.time_sensitive else ANSWER_CACHE_EVERGREEN_TTL
            self.cache.set(cache_key, result.to_dict(), ttl, ANSWER_NAMESPACE)
        else:
            logger.info("[orchestrator:run] degraded answer not cached passages=%d", len(state.passages))
        tracker.log_summary()
        logger.info(
            "[orchestrator:run] END type=%s searches=%d fetches=%d citations=%d",
            state.question_type.value, state.metrics.searches, state.metrics.fetches, len(result.citations),
        )
        return result


def build_orchestrator() -> ResearchOrchestrator:
    """Wire providers from configuration. Raises CacheStoreError if the cache cannot be opened."""
    cache = build_cache_store()
    return ResearchOrchestrator(
        llm=build_llm_manager(),
        search=build_search_manager(cache),
        fetcher=FetchService(cache),
        reranker=build_rerank_service(),
        cache=cache,
    )
