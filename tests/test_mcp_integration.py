"""
Integration tests for MCP tool endpoints.

The orchestrator dependency is overridden with one built over in-memory fakes,
so tests need no provider keys or network.
"""

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from app.api.handlers import get_orchestrator
from app.core.auth import CallerIdentity, require_caller
from app.main import app
from tests.fakes import make_results


@pytest.fixture
def client(make_orchestrator) -> Iterator[TestClient]:
    orchestrator = make_orchestrator()
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[require_caller] = lambda: CallerIdentity(caller_id="tester")
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_mcp_lists_tools(client: TestClient) -> None:
    """GET /mcp/tools returns both tool descriptors."""
    response = client.get("/mcp/tools")
    assert response.status_code == 200
    assert [t["name"] for t in response.json()["tools"]] == ["answer_question", "search_web"]


def test_mcp_search_web_returns_results(client: TestClient, search_provider) -> None:
    """POST /mcp/tools/search_web returns 200 and { results: [{ url, title, snippet }] }."""
    search_provider.results_for = lambda q: make_results("a.com", 3)
    response = client.post("/mcp/tools/search_web", json={"query": "grid storage", "k": 2, "timeRange": "w"})
    assert response.status_code == 200
    data = response.json()
    assert data["results"] == [
        {"url": "https://a.com/article-0", "title": "a.com article 0", "snippet": "Evidence snippet about the topic. (0)"},
        {"url": "https://a.com/article-1", "title": "a.com article 1", "snippet": "Evidence snippet about the topic. (1)"},
    ]
    assert search_provider.queries == ["grid storage"]


def test_mcp_search_web_empty_query_returns_empty_results(client: TestClient, search_provider) -> None:
    response = client.post("/mcp/tools/search_web", json={"query": "   "})
    assert response.status_code == 200
    assert response.json() == {"results": []}
    assert search_provider.queries == []


def test_mcp_search_web_all_providers_failing_is_502(client: TestClient, search_provider) -> None:
    search_provider.fail = True
    response = client.post("/mcp/tools/search_web", json={"query": "grid storage"})
    assert response.status_code == 502


def test_mcp_search_web_rejects_bad_time_range(client: TestClient) -> None:
    response = client.post("/mcp/tools/search_web", json={"query": "grid storage", "timeRange": "decade"})
    assert response.status_code == 422


def test_mcp_answer_question_returns_answer(client: TestClient, llm_provider) -> None:
    """POST /mcp/tools/answer_question runs the pipeline and returns { answer, citations, time_warning }."""
    llm_provider.script["analysis"] = {"type": "DIRECT_ANSWER", "answer": "Paris."}
    response = client.post("/mcp/tools/answer_question", json={"question": "What is the capital of France?"})
    assert response.status_code == 200
    assert response.json() == {"answer": "Paris.", "citations": [], "time_warning": None}


def test_mcp_answer_question_empty_question_returns_empty_answer(client: TestClient, llm_provider) -> None:
    response = client.post("/mcp/tools/answer_question", json={"question": ""})
    assert response.status_code == 200
    assert response.json() == {"answer": "", "citations": [], "time_warning": None}
    assert llm_provider.calls == []
