"""
Unit tests for the planner: action parsing, fallback, STOP gating and the
decomposed-query guard.
"""

import pytest

from app.agent.budget import init_budget
from app.agent.llm import LLMProviderManager
from app.agent.models import (
    AgentState,
    Facet,
    FetchAction,
    Passage,
    RerankAction,
    SearchAction,
    StopAction,
)
from app.agent.planner import decide_action, fallback_action, guard_search_query, parse_action
from app.core.errors import ProviderError
from tests.fakes import ScriptedLLMProvider

COMPARE_Q = "Compare Canada and Australia immigration policies"
DECOMPOSED = ["Canada immigration policies", "Australia immigration policies", "canada australia immigration policies"]


def _state(question: str = "What is the inflation rate in Japan", **kw) -> AgentState:
    state = AgentState(question=question, budget=init_budget(), **kw)
    state.facets = [Facet(name="inflation rate")]
    return state


def _planner(*replies) -> LLMProviderManager:
    return LLMProviderManager([ScriptedLLMProvider({"planner": list(replies)})])


class TestParseAction:
    def test_search_with_clamped_k_and_valid_time_range(self) -> None:
        action = parse_action({"action": {"type": "search", "query": " japan  cpi ", "k": 99, "timeRange": "w"}})
        assert action == SearchAction(query="japan cpi", k=20, time_range="w")

    def test_invalid_time_range_is_dropped(self) -> None:
        assert parse_action({"action": {"type": "SEARCH", "query": "x", "timeRange": "century"}}).time_range is None

    def test_fetch_requires_http_url(self) -> None:
        assert parse_action({"action": {"type": "FETCH", "url": "https://a.com/x"}}) == FetchAction("https://a.com/x")
        assert parse_action({"action": {"type": "FETCH", "url": "javascript:alert(1)"}}) is None
        assert parse_action({"action": {"type": "FETCH"}}) is None

    def test_rerank_and_stop(self) -> None:
        assert parse_action({"action": {"type": "RERANK", "top_n": "6"}}) == RerankAction(top_n=6)
        assert parse_action({"action": {"type": "STOP"}}) == StopAction()

    @pytest.mark.parametrize("payload", [None, [], "SEARCH", {"action": "SEARCH"}, {"action": {"type": "DANCE"}}])
    def test_unknown_shapes_are_rejected(self, payload) -> None:
        assert parse_action(payload) is None


class TestFallbackAction:
    def test_searches_when_few_passages(self) -> None:
        action = fallback_action(_state())
        assert action == SearchAction(query="What is the inflation rate in Japan latest", k=12, time_range=None)

    def test_time_sensitive_fallback_is_week_scoped(self) -> None:
        assert fallback_action(_state(time_sensitive=True)).time_range == "w"

    def test_reranks_when_enough_passages(self) -> None:
        state = _state()
        state.passages = [Passage(id=str(i), text="t", url=f"https://a{i}.com") for i in range(6)]
        assert fallback_action(state) == RerankAction(top_n=10)


class TestDecideAction:
    def test_model_action_is_used(self) -> None:
        action = decide_action(_state(), _planner({"thought": "go", "action": {"type": "SEARCH", "query": "japan cpi 2025"}}), "m")
        assert action == SearchAction(query="japan cpi 2025", k=12)

    def test_malformed_output_falls_back(self) -> None:
        state = _state()
        action = decide_action(state, _planner("I think we should search"), "m")
        assert isinstance(action, SearchAction)
        assert action.query.endswith("latest")
        assert state.trace[-1]["source"] == "fallback"

    def test_provider_failure_falls_back(self) -> None:
        action = decide_action(_state(), _planner(ProviderError("openai", "timeout")), "m")
        assert isinstance(action, SearchAction)

    def test_stop_rejected_until_facets_covered(self) -> None:
        state = _state()
        action = decide_action(state, _planner({"action": {"type": "STOP"}}), "m")
        assert not isinstance(action, StopAction)
        assert state.trace[-1]["source"] == "stop_gated"

        state.facets = [Facet(name="inflation rate", covered=True)]
        assert isinstance(decide_action(state, _planner({"action": {"type": "STOP"}}), "m"), StopAction)

    def test_stop_allowed_when_budget_spent(self) -> None:
        state = _state()
        state.budget.searches = 0
        state.budget.fetches = 0
        assert isinstance(decide_action(state, _planner({"action": {"type": "STOP"}}), "m"), StopAction)

    def test_repeated_query_is_replaced(self) -> None:
        state = _state()
        state.search_history = ["japan cpi"]
        action = decide_action(state, _planner({"action": {"type": "SEARCH", "query": "Japan CPI"}}), "m")
        assert action.query != "Japan CPI"
        assert state.trace[-1]["repair"] == "already_tried"


class TestDecomposedGuard:
    def _complex_state(self) -> AgentState:
        state = AgentState(question=COMPARE_Q, budget=init_budget())
        state.decomposed_queries_for_session = list(DECOMPOSED)
        return state

    def test_full_question_is_replaced_by_sub_query(self) -> None:
        state = self._complex_state()
        result = guard_search_query(SearchAction(query=COMPARE_Q), state)
        assert result.action.query == DECOMPOSED[0]
        assert result.reason == "duplicates_question"

    def test_off_list_query_is_replaced(self) -> None:
        state = self._complex_state()
        result = guard_search_query(SearchAction(query="canada express entry"), state)
        assert result.action.query == DECOMPOSED[0]
        assert result.reason == "not_decomposed"

    def test_on_list_query_is_kept_and_marked_used(self) -> None:
        state = self._complex_state()
        result = guard_search_query(SearchAction(query="australia IMMIGRATION policies"), state)
        assert result.action.query == DECOMPOSED[1]
        assert result.reason is None
        assert DECOMPOSED[1] in state.used_decomposed_queries

    def test_sub_queries_cycle_once_exhausted(self) -> None:
        state = self._complex_state()
        picked = []
        for _ in range(4):
            action = guard_search_query(SearchAction(query=COMPARE_Q), state).action
            picked.append(action.query)
            state.search_history.append(action.query)
        assert picked[:3] == DECOMPOSED
        assert picked[3] in DECOMPOSED
        assert picked[3] != picked[2]

    def test_planner_searches_only_decomposed_queries(self) -> None:
        state = self._complex_state()
        llm = _planner(
            {"action": {"type": "SEARCH", "query": COMPARE_Q}},
            {"action": {"type": "SEARCH", "query": "Canada and Australia immigration policies compared"}},
            "garbage",
            {"action": {"type": "SEARCH", "query": "Australia immigration policies"}},
        )
        queries = []
        for _ in range(4):
            action = decide_action(state, llm, "m")
            assert isinstance(action, SearchAction)
            queries.append(action.query)
            state.search_history.append(action.query)
        assert all(q in DECOMPOSED for q in queries)
        assert COMPARE_Q not in queries
