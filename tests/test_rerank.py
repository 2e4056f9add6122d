"""
Tests for passage reranking and its keyword fallback.
"""

import pytest

from app.agent.models import Passage
from app.core.errors import ProviderError
from app.services.rerank import RerankService, keyword_scores, parse_hf_scores

PASSAGES = [
    Passage(id="a", text="Gardening tips for spring.", url="https://a.com"),
    Passage(id="b", text="Lithium battery recycling rates in Europe.", url="https://b.com"),
    Passage(id="c", text="Battery chemistry overview.", url="https://c.com", title="Lithium"),
]


class StubReranker:
    def __init__(self, ranking: list[tuple[int, float]] | None = None, fail: bool = False, available: bool = True) -> None:
        self.name = "stub"
        self.ranking = ranking or []
        self.fail = fail
        self.available = available
        self.calls = 0

    def is_available(self) -> bool:
        return self.available

    def rerank(self, query: str, documents: list[str], top_n: int, timeout: float) -> list[tuple[int, float]]:
        self.calls += 1
        if self.fail:
            raise ProviderError(self.name, "HTTP 500")
        return self.ranking


def test_keyword_scores_use_title_and_text() -> None:
    assert keyword_scores("lithium battery recycling", PASSAGES) == [0.0, 1.0, 2 / 3]


def test_keyword_fallback_orders_by_overlap() -> None:
    ranked = RerankService([]).rerank("lithium battery recycling", PASSAGES)
    assert [p.id for p in ranked] == ["b", "c", "a"]
    assert ranked[0].score == 1.0
    assert PASSAGES[0].score is None


def test_provider_order_is_used_and_missing_passages_appended() -> None:
    stub = StubReranker([(2, 0.9), (0, 0.4)])
    ranked = RerankService([stub]).rerank("q", PASSAGES)
    assert [p.id for p in ranked] == ["c", "a", "b"]
    assert ranked[2].score == 0.0


def test_failed_provider_falls_back_to_keywords() -> None:
    stub = StubReranker(fail=True)
    ranked = RerankService([stub]).rerank("lithium battery recycling", PASSAGES)
    assert stub.calls == 1
    assert ranked[0].id == "b"


def test_keyword_only_skips_providers() -> None:
    stub = StubReranker([(0, 1.0)])
    RerankService([stub]).rerank("q", PASSAGES, keyword_only=True)
    assert stub.calls == 0


def test_empty_input() -> None:
    assert RerankService([StubReranker()]).rerank("q", []) == []


@pytest.mark.parametrize(
    "data, expected",
    [
        ([0.1, 0.9], [0.1, 0.9]),
        ([[0.1, 0.9]], [0.1, 0.9]),
        ([{"score": 0.3}, {"score": 0.7}], [0.3, 0.7]),
        ({"scores": [0.5]}, [0.5]),
        ({}, None),
        ([], None),
    ],
)
def test_parse_hf_scores(data, expected) -> None:
    assert parse_hf_scores(data) == expected
