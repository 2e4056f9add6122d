"""
Fixtures shared by agent and API tests (fakes live in tests/fakes.py).
"""

from typing import Any, Callable

import pytest

from app.agent.llm import LLMProviderManager
from app.agent.orchestrator import ResearchOrchestrator
from app.core.cache_store import InMemoryCacheStore
from app.services.rerank import RerankService
from app.services.search import SearchProviderManager
from tests.fakes import FakeFetchService, FakeSearchProvider, ScriptedLLMProvider


@pytest.fixture
def cache() -> InMemoryCacheStore:
    return InMemoryCacheStore()


@pytest.fixture
def llm_provider() -> ScriptedLLMProvider:
    return ScriptedLLMProvider()


@pytest.fixture
def search_provider() -> FakeSearchProvider:
    return FakeSearchProvider()


@pytest.fixture
def fetcher() -> FakeFetchService:
    return FakeFetchService()


@pytest.fixture
def make_orchestrator(
    cache: InMemoryCacheStore,
    llm_provider: ScriptedLLMProvider,
    search_provider: FakeSearchProvider,
    fetcher: FakeFetchService,
) -> Callable[..., ResearchOrchestrator]:
    """Factory: orchestrator over the shared fakes, optional budget overrides."""

    def build(budget_overrides: dict[str, Any] | None = None) -> ResearchOrchestrator:
        return ResearchOrchestrator(
            llm=LLMProviderManager([llm_provider]),
            search=SearchProviderManager([search_provider], cache=cache),
            fetcher=fetcher,
            reranker=RerankService([]),
            cache=cache,
            reasoning_model="reasoner",
            synthesis_model="writer",
            budget_overrides=budget_overrides,
        )

    return build
