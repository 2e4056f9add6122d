"""
API handlers: call the orchestrator and map results/errors to HTTP.

Responsibility: Bridge HTTP types and the research pipeline. Marshalling and
exception-to-HTTP mapping live here so the agent stays free of FastAPI types.
"""

import logging
from functools import lru_cache

from fastapi import HTTPException

from app.agent.models import ReActResult
from app.agent.orchestrator import ResearchOrchestrator, build_orchestrator
from app.core.auth import CallerIdentity
from app.core.errors import ServiceUnavailableError
from app.schemas.research import Citation, ResearchRequest, ResearchResponse

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _orchestrator() -> ResearchOrchestrator:
    return build_orchestrator()


def get_orchestrator() -> ResearchOrchestrator:
    """FastAPI dependency: the process-wide orchestrator, built on first use."""
    try:
        return _orchestrator()
    except ServiceUnavailableError as e:
        logger.error("[api:get_orchestrator] unavailable: %s", e.message)
        raise HTTPException(status_code=503, detail=e.message) from e


def to_response(result: ReActResult) -> ResearchResponse:
    return ResearchResponse(
        final_answer_md=result.final_answer_md,
        citations=[Citation(**c.to_dict()) for c in result.citations],
        time_warning=result.time_warning,
        trace=result.trace,
    )


def handle_research(
    body: ResearchRequest,
    caller: CallerIdentity,
    orchestrator: ResearchOrchestrator,
) -> ResearchResponse:
    """Run one research request; ValueError → 400, ServiceUnavailableError → 503."""
    logger.info("[api:handle_research] IN  caller=%s model=%s question=%r", caller.caller_id, body.model, body.question)
    model_config = body.model_settings.overrides() if body.model_settings else None
    try:
        result = orchestrator.run(body.question, model=body.model, model_config=model_config)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except ServiceUnavailableError as e:
        logger.error("[api:handle_research] unavailable: %s", e.message)
        raise HTTPException(status_code=503, detail=e.message) from e
    except Exception as e:
        logger.exception("Research run failed")
        raise HTTPException(status_code=500, detail="Research run failed.") from e
    logger.info(
        "[api:handle_research] OUT caller=%s citations=%d answer_len=%d",
        caller.caller_id, len(result.citations), len(result.final_answer_md),
    )
    return to_response(result)
