"""
Minimal MCP-style tool server: exposes the research pipeline and raw web search
as a standardized tool interface for external agents.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from app.agent.orchestrator import ResearchOrchestrator
from app.api.handlers import get_orchestrator, handle_research
from app.core.auth import CallerIdentity, require_caller
from app.core.config import SEARCH_API_TIMEOUT
from app.core.errors import AllProvidersFailedError
from app.schemas.research import ResearchRequest, SearchWebRequest

logger = logging.getLogger(__name__)

# MCP tool schema for discovery / documentation
tools = [
    {
        "name": "answer_question",
        "description": "Research a question on the web and return a cited Markdown answer",
        "input_schema": {"question": "string", "model": "string (optional)"},
    },
    {
        "name": "search_web",
        "description": "Run one web search through the configured providers (cached)",
        "input_schema": {"query": "string", "k": "integer 1-20", "timeRange": "d|w|m|y (optional)"},
    },
]

mcp_router = APIRouter(tags=["mcp"])


class AnswerQuestionRequest(BaseModel):
    """Request body for MCP tool answer_question."""
    question: str = ""
    model: str | None = None


@mcp_router.get("/tools", summary="MCP tool discovery")
def mcp_list_tools() -> dict[str, list[dict[str, Any]]]:
    return {"tools": tools}


@mcp_router.post(
    "/tools/answer_question",
    summary="MCP tool: answer_question",
    description="This endpoint acts as an MCP tool server, allowing external agents to call the research pipeline.",
)
def mcp_answer_question(
    body: AnswerQuestionRequest,
    caller: CallerIdentity = Depends(require_caller),
    orchestrator: ResearchOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Same pipeline as POST /research; an empty question returns an empty answer without running it."""
    logger.info("MCP tool called: answer_question")
    question = (body.question or "").strip()
    if not question:
        return {"answer": "", "citations": [], "time_warning": None}
    response = handle_research(ResearchRequest(question=question, model=body.model), caller, orchestrator)
    return {
        "answer": response.final_answer_md,
        "citations": [c.model_dump() for c in response.citations],
        "time_warning": response.time_warning,
    }


@mcp_router.post(
    "/tools/search_web",
    summary="MCP tool: search_web",
    description="Run a single web search (first available provider wins).",
)
def mcp_search_web(
    body: SearchWebRequest,
    caller: CallerIdentity = Depends(require_caller),
    orchestrator: ResearchOrchestrator = Depends(get_orchestrator),
) -> dict[str, list[dict[str, Any]]]:
    logger.info("MCP tool called: search_web caller=%s", caller.caller_id)
    query = (body.query or "").strip()
    if not query:
        return {"results": []}
    if not orchestrator.search.is_configured():
        raise HTTPException(status_code=503, detail="No search provider is configured.")
    try:
        results = orchestrator.search.search(query, body.k, body.time_range, timeout=SEARCH_API_TIMEOUT)
    except AllProvidersFailedError as e:
        logger.warning("[mcp:search_web] all providers failed: %s", e.message)
        raise HTTPException(status_code=502, detail="All search providers failed.") from e
    return {"results": [r.to_dict() for r in results]}
