"""
Per-run data model for the research agent.

Responsibility: Typed containers shared by the planner, executor, loop and
synthesis: facets, passages, budget, metrics, the closed action union, the
per-run AgentState aggregate and the final ReActResult.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, ClassVar, Literal


class QuestionType(str, Enum):
    DIRECT_ANSWER = "DIRECT_ANSWER"
    MINIMAL_SEARCH = "MINIMAL_SEARCH"
    FULL_RESEARCH = "FULL_RESEARCH"


TimeRange = Literal["d", "w", "m", "y"]
TIME_RANGES: frozenset[str] = frozenset({"d", "w", "m", "y"})


@dataclass
class Facet:
    """A required sub-claim of the question. Coverage fields are recomputed, never patched."""

    name: str
    required: bool = True
    covered_source_domains: set[str] = field(default_factory=set)
    covered: bool = False
    multiple_sources: bool = False


@dataclass
class Passage:
    id: str
    text: str
    url: str
    title: str | None = None
    published_date: date | None = None
    source_domain: str | None = None
    score: float | None = None


@dataclass
class Budget:
    time_ms: int
    searches: int
    fetches: int
    tokens: int
    started_ms: float


@dataclass
class Metrics:
    searches: int = 0
    fetches: int = 0
    reranks: int = 0


# --- Actions (closed union; only the planner builds them) ---


@dataclass(frozen=True)
class SearchAction:
    type: ClassVar[str] = "SEARCH"
    query: str
    k: int = 12
    time_range: TimeRange | None = None


@dataclass(frozen=True)
class FetchAction:
    type: ClassVar[str] = "FETCH"
    url: str


@dataclass(frozen=True)
class RerankAction:
    type: ClassVar[str] = "RERANK"
    top_n: int = 10


@dataclass(frozen=True)
class StopAction:
    type: ClassVar[str] = "STOP"


Action = SearchAction | FetchAction | RerankAction | StopAction


def describe_action(action: Action) -> dict[str, Any]:
    """Flat dict form of an action for logs and the trace."""
    if isinstance(action, SearchAction):
        return {"type": action.type, "query": action.query, "k": action.k, "timeRange": action.time_range}
    if isinstance(action, FetchAction):
        return {"type": action.type, "url": action.url}
    if isinstance(action, RerankAction):
        return {"type": action.type, "top_n": action.top_n}
    return {"type": "STOP"}


@dataclass
class AgentState:
    """Everything one research run knows. Owned by exactly one run."""

    question: str
    budget: Budget
    passages: list[Passage] = field(default_factory=list)
    facets: list[Facet] = field(default_factory=list)
    metrics: Metrics = field(default_factory=Metrics)
    search_history: list[str] = field(default_factory=list)
    used_decomposed_queries: set[str] = field(default_factory=set)
    decomposed_queries_for_session: list[str] = field(default_factory=list)
    question_type: QuestionType = QuestionType.FULL_RESEARCH
    direct_answer: str | None = None
    time_sensitive: bool = False
    peak_facet_coverage: int = 0
    freshness_boosted: bool = False
    action_counts: dict[str, int] = field(default_factory=dict)
    trace: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class Citation:
    url: str
    title: str | None = None
    published_date: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "title": self.title, "published_date": self.published_date}


@dataclass
class ReActResult:
    final_answer_md: str
    citations: list[Citation] = field(default_factory=list)
    trace: list[dict[str, Any]] | None = None
    time_warning: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "final_answer_md": self.final_answer_md,
            "citations": [c.to_dict() for c in self.citations],
            "trace": self.trace,
            "time_warning": self.time_warning,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReActResult":
        citations = [
            Citation(url=c["url"], title=c.get("title"), published_date=c.get("published_date"))
            for c in data.get("citations") or []
            if isinstance(c, dict) and c.get("url")
        ]
        return cls(
            final_answer_md=data.get("final_answer_md") or "",
            citations=citations,
            trace=data.get("trace"),
            time_warning=data.get("time_warning"),
        )
