"""
Query decomposition for complex questions.

A question is complex when it is long, uses comparison language, or joins clauses
with conjunctions. Complex questions get a fixed list of focused sub-queries
before the loop starts; the planner's SEARCH queries are drawn from that list.
"""

import logging
import re

from app.agent.models import Facet
from app.core.config import MAX_DECOMPOSED_QUERIES, QUERY_OVERLAP_LIMIT
from app.services.text_processing import STOPWORDS, content_words

logger = logging.getLogger(__name__)

LONG_QUESTION_WORDS = 14
MAX_QUERY_WORDS = 8

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_COMPARISON_RE = re.compile(
    r"\b(compare[sd]?|comparing|comparison|contrast|versus|vs\.?|difference[s]? between|differ[s]?|"
    r"better than|worse than|pros and cons|similarities)\b",
    re.IGNORECASE,
)
_CONJUNCTION_RE = re.compile(r"\b(and|or|but|while|whereas|as well as|both|also)\b|;", re.IGNORECASE)
_COMPARISON_SUBJECT_RES: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(?:please\s+)?(?:compare|contrast)\s+(.+)$", re.IGNORECASE),
    re.compile(r"\bdifferences?\s+between\s+(.+)$", re.IGNORECASE),
    re.compile(r"\bsimilarities\s+between\s+(.+)$", re.IGNORECASE),
)
_COMPARISON_SPLIT_RE = re.compile(r"\s+(?:vs\.?|versus|and|or|compared\s+(?:to|with)|against)\s+", re.IGNORECASE)
_CLAUSE_SPLIT_RE = re.compile(
    r"\s*[;,]\s*(?:and\s+|but\s+)?|\s+(?:and|but|while|whereas|as well as|also)\s+",
    re.IGNORECASE,
)
_LEADING_FILLER_RE = re.compile(r"^(?:the|a|an)\s+", re.IGNORECASE)


def tokens(text: str) -> list[str]:
    return _TOKEN_RE.findall((text or "").lower())


def normalize_query(query: str) -> str:
    return " ".join(tokens(query))


def token_overlap(query: str, question: str) -> float:
    """Share of the question's distinct tokens that the query repeats (0..1)."""
    q_tokens = set(tokens(question))
    if not q_tokens:
        return 0.0
    return len(q_tokens & set(tokens(query))) / len(q_tokens)


def clause_count(query: str) -> int:
    """1 + number of clause separators (commas, semicolons, conjunctions, extra question marks)."""
    text = (query or "").strip().rstrip("?")
    separators = len(re.findall(r"[;,]", text)) + len(re.findall(r"\?", text))
    separators += len(re.findall(r"\b(?:and|or|but|while|whereas)\b", text, re.IGNORECASE))
    return 1 + separators


def is_complex_question(question: str) -> bool:
    q = (question or "").strip()
    if not q:
        return False
    if len(q.split()) >= LONG_QUESTION_WORDS:
        return True
    if _COMPARISON_RE.search(q):
        return True
    return bool(_CONJUNCTION_RE.search(q))


def _strip_question(question: str) -> str:
    return " ".join(question.strip().rstrip("?.!").split())


def _clean_part(part: str) -> str:
    return _LEADING_FILLER_RE.sub("", part.strip(" ,.;:?")).strip()


def comparison_parts(question: str) -> list[str]:
    """'Compare A and B policies' -> ['A policies', 'B policies']; [] when no comparison subject is found."""
    text = _strip_question(question)
    subject = ""
    for pattern in _COMPARISON_SUBJECT_RES:
        match = pattern.search(text)
        if match:
            subject = match.group(1)
            break
    if not subject and re.search(r"\b(?:vs\.?|versus)\b", text, re.IGNORECASE):
        subject = text
    if not subject:
        return []
    parts = [p for p in (_clean_part(x) for x in _COMPARISON_SPLIT_RE.split(subject)) if p][:4]
    if len(parts) < 2:
        return []
    first, last = parts[0].split(), parts[-1].split()
    if len(last) > len(first):
        # Shared trailing context: "A and B policies"
        tail = last[len(first):]
        parts = [" ".join(p.split() + tail) for p in parts[:-1]] + [" ".join(last)]
    elif len(first) > len(last):
        # Shared leading context: "policies of A and B"
        head = first[: len(first) - len(last)]
        parts = [" ".join(first)] + [" ".join(head + p.split()) for p in parts[1:]]
    return [_clean_part(p) for p in parts]


def compress_query(text: str, max_words: int = MAX_QUERY_WORDS) -> str:
    """Keyword-only search phrase: content words, original order, at most `max_words`."""
    return " ".join(content_words(text)[:max_words])


def create_focused_query(question: str, facet_name: str, max_words: int = MAX_QUERY_WORDS) -> str:
    """Question subject terms plus the facet's keywords, e.g. 'canada immigration points system'."""
    facet_words = content_words(facet_name)
    # Descriptive facets ("canada immigration policy") already name their subject
    n_subject = max(0, 3 - len(facet_words))
    subject = [w for w in content_words(question) if w not in facet_words][:n_subject]
    words = subject + facet_words
    return " ".join(words[:max_words])


def clause_queries(question: str) -> list[str]:
    """Split on conjunctions/commas; later clauses inherit the first clause's topic words."""
    clauses = [c for c in _CLAUSE_SPLIT_RE.split(_strip_question(question)) if c and c.strip()]
    if len(clauses) < 2:
        return []
    topic = content_words(clauses[0])[:3]
    out: list[str] = []
    for i, clause in enumerate(clauses):
        words = content_words(clause)
        if len(words) < 1:
            continue
        if i > 0:
            words = [w for w in topic if w not in words] + words
        if len(words) >= 2:
            out.append(" ".join(words[:MAX_QUERY_WORDS]))
    return out


def decompose_question(question: str, facets: list[Facet] | None = None) -> list[str]:
    """
    Focused sub-queries for a complex question; [] for simple questions.

    Order: comparison parts, clause splits, facet-focused queries, a keyword
    compression of the whole question. Queries that restate the question
    (token overlap above the limit) are dropped.
    """
    if not is_complex_question(question):
        return []
    candidates: list[str] = []
    candidates.extend(comparison_parts(question))
    if not candidates:
        candidates.extend(clause_queries(question))
    for facet in facets or []:
        if facet.required:
            candidates.append(create_focused_query(question, facet.name))
    candidates.append(compress_query(question, max_words=5))

    question_norm = normalize_query(question)
    seen: set[str] = set()
    out: list[str] = []
    for candidate in candidates:
        query = " ".join(candidate.split())
        norm = normalize_query(query)
        if not norm or norm in seen or norm == question_norm:
            continue
        if all(t in STOPWORDS for t in norm.split()):
            continue
        if token_overlap(query, question) > QUERY_OVERLAP_LIMIT:
            continue
        seen.add(norm)
        out.append(query)
        if len(out) >= MAX_DECOMPOSED_QUERIES:
            break
    logger.info("[decomposition:decompose_question] OUT question=%r queries=%s", question, out)
    return out
