"""Schemas for the research endpoint and the MCP-style tools."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ModelConfig(BaseModel):
    """Optional synthesis-call overrides. Unknown keys are ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    max_tokens: int | None = Field(None, gt=0, le=16000, description="Completion token limit for synthesis.")
    temperature: float | None = Field(None, ge=0, le=2, description="Sampling temperature for synthesis.")
    token_parameter: str | None = Field(
        None,
        alias="tokenParameter",
        pattern="^(max_tokens|max_completion_tokens)$",
        description="OpenAI token-limit parameter name.",
    )

    def overrides(self) -> dict[str, Any]:
        return {
            k: v
            for k, v in {
                "max_tokens": self.max_tokens,
                "temperature": self.temperature,
                "tokenParameter": self.token_parameter,
            }.items()
            if v is not None
        }


class ResearchRequest(BaseModel):
    """Request body for POST /research."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    question: str = Field(..., min_length=1, max_length=2000, description="Natural-language question to research.")
    model: str | None = Field(None, description="Model id used for both reasoning and synthesis.")
    model_settings: ModelConfig | None = Field(None, alias="modelConfig", description="Synthesis-call overrides.")


class Citation(BaseModel):
    url: str
    title: str | None = None
    published_date: str | None = None


class ResearchResponse(BaseModel):
    """Response for POST /research."""

    final_answer_md: str = Field(..., description="Markdown answer with inline citations.")
    citations: list[Citation] = Field(default_factory=list, description="Deduplicated sources, at most 4.")
    time_warning: str | None = Field(None, description="Set when a time-sensitive answer lacks recent evidence.")
    trace: list[dict[str, Any]] | None = Field(None, description="Step trace (debug mode only).")


class SearchWebRequest(BaseModel):
    """Request body for MCP tool search_web."""

    query: str = ""
    k: int = Field(8, ge=1, le=20)
    time_range: str | None = Field(None, alias="timeRange", pattern="^[dwmy]$")

    model_config = ConfigDict(populate_by_name=True)
