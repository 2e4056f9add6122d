"""
API route aggregator: register endpoints; no logic, only delegate to handlers.
"""

import logging

from fastapi import APIRouter, Depends

from app.agent.orchestrator import ResearchOrchestrator
from app.api.handlers import get_orchestrator, handle_research
from app.core.auth import CallerIdentity, require_caller
from app.schemas.research import ResearchRequest, ResearchResponse

logger = logging.getLogger(__name__)
router = APIRouter()


# --- System ---

@router.get("/", tags=["system"])
def root():
    return {"status": "Research orchestrator running"}


@router.get("/health", tags=["system"])
def health():
    return {"ok": True}


# --- Research ---

@router.post(
    "/research",
    response_model=ResearchResponse,
    tags=["research"],
    summary="Answer a question with web research",
    description=(
        "Search, fetch, rerank and synthesize a cited Markdown answer within a fixed budget. "
        "Requires a bearer API key. 400 on invalid input, 401 without a valid key, "
        "503 when no LLM/search provider is configured or the cache is unavailable."
    ),
)
def post_research(
    body: ResearchRequest,
    caller: CallerIdentity = Depends(require_caller),
    orchestrator: ResearchOrchestrator = Depends(get_orchestrator),
) -> ResearchResponse:
    return handle_research(body, caller, orchestrator)
