# Run from project root: uvicorn app.main:app --reload

import logging

from fastapi import FastAPI

from app.api.routes import router
from app.core.config import LOG_LEVEL
from app.mcp.server import mcp_router

logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO))


app = FastAPI(title="Agentic Research Orchestrator")
app.include_router(router)
app.include_router(mcp_router, prefix="/mcp")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000)
