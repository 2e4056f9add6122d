"""
Tests for web search: provider fallback, search cache, result shaping.
"""

from unittest.mock import patch

import pytest

from app.agent.tracking import CallTracker
from app.core.cache_store import InMemoryCacheStore
from app.core.errors import AllProvidersFailedError
from app.services.search import (
    BingSearchProvider,
    DuckDuckGoSearchProvider,
    SearchProviderManager,
    SearchResult,
    TavilySearchProvider,
    build_query_variants,
    filter_and_score,
    is_blocked,
    multi_query_search,
    retain_diverse,
)
from app.services.scoring import domain_authority_score
from app.services.web_utils import current_year, etld_plus_one
from tests.fakes import FakeSearchProvider, make_results


class TestSearchProviderManager:
    def test_falls_through_failed_provider(self) -> None:
        broken = FakeSearchProvider(name="tavily", fail=True)
        backup = FakeSearchProvider(lambda q: make_results("a.com", 3), name="bing")
        tracker = CallTracker()
        results = SearchProviderManager([broken, backup]).search("solar panels", 5, tracker=tracker)
        assert [r.url for r in results] == [r.url for r in make_results("a.com", 3)]
        assert broken.queries == ["solar panels"]
        assert tracker.summary()["total_calls"] == 2

    def test_empty_result_tries_next_provider(self) -> None:
        empty = FakeSearchProvider(name="tavily")
        backup = FakeSearchProvider(lambda q: make_results("a.com", 1), name="bing")
        assert len(SearchProviderManager([empty, backup]).search("solar", 5)) == 1

    def test_every_provider_failing_raises(self) -> None:
        manager = SearchProviderManager([FakeSearchProvider(fail=True), FakeSearchProvider(name="b", fail=True)])
        with pytest.raises(AllProvidersFailedError):
            manager.search("solar", 5)

    def test_no_results_anywhere_is_empty_not_error(self) -> None:
        assert SearchProviderManager([FakeSearchProvider()]).search("solar", 5) == []

    def test_blank_query_skips_providers(self) -> None:
        provider = FakeSearchProvider(lambda q: make_results("a.com", 1))
        assert SearchProviderManager([provider]).search("   ", 5) == []
        assert provider.queries == []

    def test_results_are_cached(self) -> None:
        provider = FakeSearchProvider(lambda q: make_results("a.com", 2))
        manager = SearchProviderManager([provider], cache=InMemoryCacheStore())
        first = manager.search("solar", 5, "w")
        second = manager.search("solar", 5, "w")
        assert [r.url for r in first] == [r.url for r in second]
        assert provider.queries == ["solar"]
        manager.search("solar", 5, "m")
        assert provider.queries == ["solar", "solar"]

    def test_keyless_providers_are_unavailable(self) -> None:
        manager = SearchProviderManager(
            [TavilySearchProvider(api_key=""), BingSearchProvider(api_key=""), DuckDuckGoSearchProvider(enabled=False)]
        )
        assert not manager.is_configured()


class TestProviderParsing:
    def test_tavily_maps_fields_and_time_range(self) -> None:
        data = {
            "results": [
                {"url": "https://a.com/x", "title": "A", "content": "snippet"},
                {"url": "ftp://bad", "title": "B"},
                "junk",
            ]
        }
        with patch("app.services.search._request_json", return_value=data) as request:
            results = TavilySearchProvider(api_key="k").search("solar", 5, "w", 3.0)
        assert results == [SearchResult(url="https://a.com/x", title="A", snippet="snippet")]
        assert request.call_args.kwargs["json"]["time_range"] == "week"

    def test_bing_reads_web_pages(self) -> None:
        data = {"webPages": {"value": [{"url": "https://b.org/y", "name": "B", "snippet": "s"}]}}
        with patch("app.services.search._request_json", return_value=data) as request:
            results = BingSearchProvider(api_key="k").search("solar", 5, "d", 3.0)
        assert results[0].title == "B"
        assert request.call_args.kwargs["params"]["freshness"] == "Day"


class TestQueryVariants:
    def test_seed_first_then_authority_variants(self) -> None:
        assert build_query_variants("solar  panels", time_sensitive=False) == [
            "solar panels",
            "solar panels latest",
            "solar panels site:gov",
            "solar panels site:edu",
        ]

    def test_time_sensitive_adds_year(self) -> None:
        variants = build_query_variants("solar panels", time_sensitive=True)
        assert variants[1] == f"solar panels {current_year()}"
        assert len(variants) == 5

    def test_empty_seed(self) -> None:
        assert build_query_variants("  ", time_sensitive=True) == []


class TestResultShaping:
    def test_blocklist(self) -> None:
        assert is_blocked("https://site.com/tag/solar")
        assert is_blocked("https://www.facebook.com/page")
        assert is_blocked("https://site.com/report.pdf")
        assert not is_blocked("https://site.com/solar-guide")

    def test_authoritative_domains_score_higher(self) -> None:
        results = [
            SearchResult(url="https://someone.medium.com/post", title="Solar", snippet="Solar"),
            SearchResult(url="https://energy.gov/solar", title="Solar", snippet="Solar"),
        ]
        scored = filter_and_score(results)
        assert scored[0].domain == "energy.gov"
        assert scored[0].score > scored[1].score

    def test_retain_diverse_counts_existing_domains(self) -> None:
        results = [SearchResult(url=u, domain=d) for u, d in (("https://a.com/1", "a.com"), ("https://a.com/2", "a.com"), ("https://b.org/1", "b.org"))]
        kept = retain_diverse(results, existing_domains=["a.com", "a.com"])
        assert [r.url for r in kept] == ["https://a.com/1", "https://b.org/1"]

    def test_country_zone_domains_stay_distinct(self) -> None:
        assert etld_plus_one("https://www.bbc.co.uk/news/x") == "bbc.co.uk"
        assert etld_plus_one("https://www.ox.ac.uk/research") == "ox.ac.uk"
        assert etld_plus_one("https://news.example.io/x") == "example.io"
        assert domain_authority_score("bbc.co.uk") > domain_authority_score("someshop.co.uk")
        results = filter_and_score(
            [SearchResult(url=f"https://{site}.co.uk/{i}") for site in ("bbc", "shop") for i in range(3)]
        )
        assert len(retain_diverse(results)) == 6

    def test_retain_diverse_max_total(self) -> None:
        results = [SearchResult(url=f"https://d{i}.com/x", domain=f"d{i}.com") for i in range(40)]
        assert len(retain_diverse(results)) == 25


def test_multi_query_search_tolerates_failed_variants() -> None:
    def flaky(query: str) -> list[SearchResult]:
        if "site:gov" in query:
            raise AllProvidersFailedError("search", ["down"])
        return make_results("a.com", 2)

    manager = SearchProviderManager([FakeSearchProvider(lambda q: make_results("a.com", 2))])
    with patch.object(manager, "search", side_effect=lambda q, *a, **kw: flaky(q)):
        fanout = multi_query_search(manager, "solar", 12, None, False, timeout=2.0)
    assert fanout.failed_variants == 1
    assert len(fanout.results) == 2
