"""
Synthesis engine: pick diverse evidence and write a cited Markdown answer.
"""

import logging
import re

from app.agent.budget import consume_tokens
from app.agent.facets import passage_domain
from app.agent.llm import SYNTHESIS_CONFIG, LLMConfig, LLMProviderManager
from app.agent.models import Budget, Passage
from app.agent.tracking import CallTracker
from app.core.config import PER_DOMAIN_CAP, SYNTHESIS_PASSAGES
from app.core.errors import ProviderError
from app.services.scoring import domain_authority_score, recency_decay
from app.services.web_utils import utc_today

logger = logging.getLogger(__name__)

PASSAGE_CONTEXT_CHARS = 2000
UNCERTAIN_NOTE = " *(source uncertain; verify)*"

# Years, percentages and "Proper Noun" pairs are claims that need a source
_NEEDS_CITATION_RE = re.compile(r"\b\d{4}\b|\b\d+(?:\.\d+)?%|\b[A-Z][a-z]+ [A-Z][a-z]+")
_INLINE_LINK_RE = re.compile(r"\]\(https?://")

SYNTHESIS_SYSTEM_PROMPT = """You are a precise research synthesis assistant.
- Today's date: {today}
- Support every non-trivial claim (numbers, names, dates) with an inline citation [Title (Date)](URL).
- Prefer claims corroborated by at least 2 independent domains; mark claims backed by one source as "single-source".
- If sources conflict or are stale (older than 30 days for time-sensitive questions), say so explicitly.
- Answer in the language of the question.
- Answer concisely in Markdown; use bullet points where they help."""


def diversity_score(passage: Passage) -> float:
    base = passage.score if passage.score is not None else 0.5
    return (
        0.55 * base
        + 0.30 * domain_authority_score(passage_domain(passage))
        + 0.15 * recency_decay(passage.published_date)
    )


def select_top_diverse(passages: list[Passage], n: int = SYNTHESIS_PASSAGES) -> list[Passage]:
    """Best `n` passages by composite score, at most PER_DOMAIN_CAP from any one domain."""
    ranked = sorted(passages, key=diversity_score, reverse=True)
    picked: list[Passage] = []
    counts: dict[str, int] = {}
    for p in ranked:
        domain = passage_domain(p)
        if counts.get(domain, 0) >= PER_DOMAIN_CAP:
            continue
        counts[domain] = counts.get(domain, 0) + 1
        picked.append(p)
        if len(picked) >= n:
            break
    return picked


def format_context(passages: list[Passage]) -> str:
    blocks = []
    for p in passages:
        published = p.published_date.isoformat() if p.published_date else "Unknown"
        blocks.append(
            f"URL: {p.url}\nTITLE: {p.title or 'Unknown'}\nPUBLISHED: {published}\n"
            f"CONTENT:\n{p.text[:PASSAGE_CONTEXT_CHARS]}\n---"
        )
    return "\n".join(blocks)


def flag_uncited_claims(markdown: str) -> str:
    """Append a verify note to lines that state a number/name but carry no inline link."""
    out = []
    for line in markdown.split("\n"):
        if _NEEDS_CITATION_RE.search(line) and not _INLINE_LINK_RE.search(line) and UNCERTAIN_NOTE not in line:
            line += UNCERTAIN_NOTE
        out.append(line)
    return "\n".join(out)


def degraded_answer(question: str, passages: list[Passage]) -> str:
    """Source list returned when no synthesis model answered."""
    if not passages:
        return f"I could not find enough evidence to answer: {question}"
    lines = [
        "I could not write a full answer right now. The most relevant sources found were:",
        "",
    ]
    for p in passages[:5]:
        published = f" ({p.published_date.isoformat()})" if p.published_date else ""
        lines.append(f"- [{p.title or passage_domain(p)}{published}]({p.url})")
    return "\n".join(lines)


def synthesize(
    question: str,
    passages: list[Passage],
    llm: LLMProviderManager,
    model: str,
    config: LLMConfig = SYNTHESIS_CONFIG,
    budget: Budget | None = None,
    tracker: CallTracker | None = None,
) -> tuple[str, bool]:
    """
    One synthesis-model call over the top diverse passages, then the uncited-claim pass.

    Returns `(answer, degraded)`. Every provider failing yields a degraded source
    list with `degraded=True`, never an exception.
    """
    top = select_top_diverse(passages, SYNTHESIS_PASSAGES)
    logger.info("[synthesis:synthesize] IN  question=%r passages=%d selected=%d", question, len(passages), len(top))
    messages = [
        {"role": "system", "content": SYNTHESIS_SYSTEM_PROMPT.format(today=utc_today().isoformat())},
        {
            "role": "user",
            "content": (
                f"Question: {question}\n\nPassages:\n{format_context(top)}\n\n"
                "Write the answer in Markdown with inline citations right after the sentences they support."
            ),
        },
    ]
    try:
        response = llm.call(model, messages, config, purpose="synthesis", tracker=tracker)
    except ProviderError as e:
        logger.warning("[synthesis:synthesize] all providers failed, returning source list: %s", e.message)
        return degraded_answer(question, top), True
    if budget is not None:
        consume_tokens(budget, response.usage)
    answer = flag_uncited_claims(response.text.strip())
    logger.info("[synthesis:synthesize] OUT provider=%s answer_len=%d", response.provider, len(answer))
    return answer, False
