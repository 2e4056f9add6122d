"""
Facet manager: split a question into required sub-claims and track which are evidenced.

Coverage is a pure function of (facets, passages): update_coverage rebuilds every
coverage field from scratch on each call and never mutates its inputs.
"""

import logging
from dataclasses import replace

from app.agent.budget import call_timeout, consume_tokens
from app.agent.llm import REASONING_CONFIG, LLMProviderManager, parse_json_object
from app.agent.models import Budget, Facet, Passage
from app.agent.tracking import CallTracker
from app.core.config import LLM_API_TIMEOUT, SOFT_COVERAGE_RATIO
from app.core.errors import ProviderError
from app.services.text_processing import keyword_tokens
from app.services.web_utils import etld_plus_one

logger = logging.getLogger(__name__)

MAX_FACETS = 5
MAX_FACET_NAME = 120

FACET_SYSTEM_PROMPT = (
    "Break the user's question into the distinct sub-claims that a complete answer must evidence. "
    'Reply ONLY with minified JSON: {"facets":[{"name":"short noun phrase","required":true}]}. '
    "Use 1 to 5 facets. Facet names are short keyword phrases that would appear in a supporting source."
)


def facets_from_payload(items: object) -> list[Facet]:
    """Build facets from a parsed [{"name", "required"}] list; skips malformed entries."""
    if not isinstance(items, list):
        return []
    out: list[Facet] = []
    seen: set[str] = set()
    for item in items:
        if isinstance(item, str):
            name, required = item, True
        elif isinstance(item, dict):
            name, required = str(item.get("name") or ""), item.get("required", True)
        else:
            continue
        name = " ".join(name.split())[:MAX_FACET_NAME]
        if not name or name.lower() in seen:
            continue
        seen.add(name.lower())
        out.append(Facet(name=name, required=bool(required) if required is not None else True))
        if len(out) >= MAX_FACETS:
            break
    return out


def fallback_facets(question: str) -> list[Facet]:
    return [Facet(name=" ".join(question.split())[:MAX_FACET_NAME], required=True)]


def extract_facets(
    question: str,
    llm: LLMProviderManager,
    model: str,
    budget: Budget | None = None,
    tracker: CallTracker | None = None,
) -> list[Facet]:
    """One reasoning-model call. Any failure degrades to one required facet equal to the question."""
    logger.info("[facets:extract_facets] IN  question=%r", question)
    messages = [
        {"role": "system", "content": FACET_SYSTEM_PROMPT},
        {"role": "user", "content": f"Question: {question}"},
    ]
    config = replace(REASONING_CONFIG, json_mode=True)
    if budget is not None:
        config = replace(config, timeout=call_timeout(budget, LLM_API_TIMEOUT))
    try:
        response = llm.call(model, messages, config, purpose="facet_extraction", tracker=tracker)
    except ProviderError as e:
        logger.warning("[facets:extract_facets] model call failed, using whole question: %s", e.message)
        return fallback_facets(question)
    if budget is not None:
        consume_tokens(budget, response.usage)
    parsed = parse_json_object(response.text)
    facets = facets_from_payload(parsed.get("facets") if parsed else None)
    if not facets:
        logger.info("[facets:extract_facets] malformed output, using whole question raw=%r", response.text[:200])
        return fallback_facets(question)
    logger.info("[facets:extract_facets] OUT facets=%s", [f.name for f in facets])
    return facets


def facet_keywords(name: str) -> list[str]:
    return keyword_tokens(name, min_len=3)


def passage_domain(passage: Passage) -> str:
    return passage.source_domain or etld_plus_one(passage.url) or "unknown"


def update_coverage(facets: list[Facet], passages: list[Passage]) -> list[Facet]:
    """
    Fresh facets with coverage recomputed. A passage hits a facet when every facet
    keyword from `keyword_tokens` occurs in its lower-cased title + text.
    """
    haystacks = [(f"{p.title or ''} {p.text}".lower(), passage_domain(p)) for p in passages]
    out: list[Facet] = []
    for facet in facets:
        keywords = facet_keywords(facet.name)
        domains: set[str] = set()
        if keywords:
            for text, domain in haystacks:
                if all(k in text for k in keywords):
                    domains.add(domain)
        out.append(
            Facet(
                name=facet.name,
                required=facet.required,
                covered_source_domains=domains,
                covered=len(domains) >= 1,
                multiple_sources=len(domains) >= 2,
            )
        )
    return out


def required_facets(facets: list[Facet]) -> list[Facet]:
    return [f for f in facets if f.required]


def covered_count(facets: list[Facet]) -> int:
    return sum(1 for f in required_facets(facets) if f.covered)


def coverage_ratio(facets: list[Facet]) -> float:
    """Covered share of required facets; 1.0 when nothing is required."""
    required = required_facets(facets)
    if not required:
        return 1.0
    return covered_count(facets) / len(required)


def all_required_covered(facets: list[Facet]) -> bool:
    """The 60% soft gate first, then the strict check that every required facet is covered."""
    if coverage_ratio(facets) < SOFT_COVERAGE_RATIO:
        return False
    return all(f.covered for f in required_facets(facets))


def distinct_domains(passages: list[Passage]) -> set[str]:
    return {passage_domain(p) for p in passages}


def has_domain_diversity(passages: list[Passage], min_domains: int = 2) -> bool:
    return len(distinct_domains(passages)) >= min_domains
