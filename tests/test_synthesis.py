"""
Tests for answer synthesis and result building.
"""

from datetime import date, timedelta

from app.agent.budget import init_budget
from app.agent.llm import LLMProviderManager
from app.agent.models import AgentState, Passage
from app.agent.results import TIME_WARNING, build_citations, build_result, time_warning
from app.agent.synthesis import (
    UNCERTAIN_NOTE,
    degraded_answer,
    flag_uncited_claims,
    select_top_diverse,
    synthesize,
)
from app.core.errors import ProviderError
from app.services.web_utils import utc_today
from tests.fakes import ScriptedLLMProvider


def _passage(i: int, domain: str, published: date | None = None, score: float | None = None) -> Passage:
    return Passage(
        id=f"p{i}",
        text=f"passage {i}",
        url=f"https://{domain}/{i}",
        title=f"Title {i}",
        published_date=published,
        score=score,
    )


class TestSelectTopDiverse:
    def test_caps_each_domain_at_three(self) -> None:
        passages = [_passage(i, "one.com", score=0.9) for i in range(6)] + [_passage(10, "two.org", score=0.1)]
        picked = select_top_diverse(passages, n=10)
        assert len(picked) == 4
        assert sum(1 for p in picked if "one.com" in p.url) == 3

    def test_prefers_authoritative_and_recent(self) -> None:
        blog = _passage(1, "someone.blogspot.com", score=0.5)
        agency = _passage(2, "census.gov", published=utc_today(), score=0.5)
        assert select_top_diverse([blog, agency], n=1) == [agency]


class TestFlagUncitedClaims:
    def test_flags_numbers_without_links(self) -> None:
        out = flag_uncited_claims("Prices rose 4.5% last year.\nIt is sunny.")
        assert out.split("\n") == ["Prices rose 4.5% last year." + UNCERTAIN_NOTE, "It is sunny."]

    def test_cited_lines_are_untouched(self) -> None:
        line = "In 2024 output grew [Report (2024-01-02)](https://stats.gov/r)."
        assert flag_uncited_claims(line) == line

    def test_is_idempotent(self) -> None:
        once = flag_uncited_claims("New York grew in 2023.")
        assert flag_uncited_claims(once) == once


class TestSynthesize:
    def test_model_answer_is_returned_with_flags(self) -> None:
        llm = LLMProviderManager([ScriptedLLMProvider({"synthesis": "Answer: the rate was 3% in 2024."})])
        budget = init_budget()
        before = budget.tokens
        answer, degraded = synthesize("What was the rate?", [_passage(1, "a.com")], llm, "writer", budget=budget)
        assert degraded is False
        assert answer.startswith("Answer: the rate was 3% in 2024.")
        assert answer.endswith(UNCERTAIN_NOTE)
        assert budget.tokens == before - 10

    def test_prompt_carries_passages(self) -> None:
        provider = ScriptedLLMProvider({"synthesis": "ok"})
        synthesize("Q?", [_passage(1, "a.com", published=date(2024, 1, 5))], LLMProviderManager([provider]), "writer")
        user = provider.calls[0][2][1]["content"]
        assert "URL: https://a.com/1" in user
        assert "PUBLISHED: 2024-01-05" in user
        assert "language of the question" in provider.calls[0][2][0]["content"]

    def test_provider_failure_degrades_to_source_list(self) -> None:
        llm = LLMProviderManager([ScriptedLLMProvider({"synthesis": ProviderError("openai", "down")})])
        answer, degraded = synthesize("Q?", [_passage(1, "a.com")], llm, "writer")
        assert degraded is True
        assert "[Title 1](https://a.com/1)" in answer

    def test_degraded_answer_without_passages(self) -> None:
        assert "could not find enough evidence" in degraded_answer("Q?", [])


class TestResults:
    def test_citations_dedupe_and_cap(self) -> None:
        passages = [_passage(1, "a.com", published=date(2024, 2, 3))]
        passages.append(Passage(id="dup", text="t", url=passages[0].url))
        passages += [_passage(i, f"d{i}.com") for i in range(2, 8)]
        citations = build_citations(passages)
        assert len(citations) == 4
        assert citations[0].url == "https://a.com/1"
        assert citations[0].published_date == "2024-02-03"
        assert len({c.url for c in citations}) == 4

    def test_time_warning_only_for_stale_time_sensitive(self) -> None:
        today = date(2025, 6, 1)
        stale = [_passage(1, "a.com", published=today - timedelta(days=45))]
        fresh = [_passage(2, "b.com", published=today - timedelta(days=3))]
        assert time_warning(True, stale, today) == TIME_WARNING
        assert time_warning(True, [], today) == TIME_WARNING
        assert time_warning(True, stale + fresh, today) is None
        assert time_warning(False, stale, today) is None

    def test_build_result_trace_toggle(self) -> None:
        state = AgentState(question="Q", budget=init_budget())
        state.passages = [_passage(1, "a.com")]
        state.trace.append({"step": "act"})
        assert build_result(state, "answer", include_trace=False).trace is None
        traced = build_result(state, "answer", {"searches": 1}, include_trace=True)
        assert traced.trace[-1] == {"step": "metrics", "searches": 1}
        assert traced.citations[0].url == "https://a.com/1"
