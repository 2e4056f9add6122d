"""
Text processing for fetched pages: cleaning, token-window chunking, keyword tokens.

Cleaning reduces noise and encoding inconsistencies so coverage checks and
reranking see content, not markup residue. Token counts are approximate
(1 token ~ 4 characters), which is all the budget and windowing need.
"""

import math
import re
import unicodedata

_WORD_RE = re.compile(r"[^\W_]+")

STOPWORDS: frozenset[str] = frozenset(
    {
        "the", "and", "for", "are", "was", "were", "with", "that", "this", "what", "which",
        "who", "whom", "whose", "when", "where", "why", "how", "does", "did", "has", "have",
        "had", "from", "into", "about", "between", "than", "then", "them", "they", "their",
        "there", "these", "those", "its", "can", "could", "should", "would", "will", "shall",
        "may", "might", "must", "not", "but", "any", "all", "our", "your", "you", "his", "her",
        "she", "him", "out", "over", "under", "more", "most", "some", "such", "also", "just",
        "been", "being", "is", "of", "to", "in", "on", "a", "an", "or", "by", "as", "at", "it",
        "do", "be", "if", "so", "me", "my", "we", "vs", "versus", "compare", "comparison",
    }
)


def clean_text(text: str) -> str:
    """
    Normalize and clean raw page text.

    Unicode is NFKC-normalized, lines stripped, consecutive duplicate lines
    dropped and runs of blank lines collapsed to one.
    """
    if not text or not text.strip():
        return ""
    text = unicodedata.normalize("NFKC", text)
    lines = [line.strip() for line in text.splitlines()]
    deduped: list[str] = []
    for line in lines:
        if deduped and deduped[-1] == line:
            continue
        deduped.append(line)
    result: list[str] = []
    for line in deduped:
        if line == "":
            if result and result[-1] != "":
                result.append("")
        else:
            result.append(line)
    return "\n".join(result).strip()


def approx_token_len(text: str) -> int:
    return math.ceil(len(text or "") / 4)


def chunk_by_tokens(
    text: str,
    chunk_tokens: int = 900,
    overlap_tokens: int = 120,
    max_chunks: int | None = None,
) -> list[str]:
    """
    Split text into word-aligned windows of about `chunk_tokens` tokens.

    Consecutive windows share a tail of at least `overlap_tokens` tokens (unless a
    single word is longer). A window only exceeds `chunk_tokens` when one word does.
    """
    words = (text or "").split()
    if not words:
        return []
    if overlap_tokens >= chunk_tokens:
        raise ValueError("overlap_tokens must be smaller than chunk_tokens")

    chunks: list[str] = []
    start = 0
    while start < len(words):
        end = start
        size = 0
        while end < len(words):
            # +1 for the joining space
            add = len(words[end]) + (1 if end > start else 0)
            if end > start and math.ceil((size + add) / 4) > chunk_tokens:
                break
            size += add
            end += 1
        chunks.append(" ".join(words[start:end]))
        if max_chunks is not None and len(chunks) >= max_chunks:
            break
        if end >= len(words):
            break
        back = end
        tail = 0
        while back > start + 1 and math.ceil(tail / 4) < overlap_tokens:
            back -= 1
            tail += len(words[back]) + 1
        start = back if back > start else end
    return chunks


def keyword_tokens(text: str, min_len: int = 3) -> list[str]:
    """
    Lower-cased word tokens of at least `min_len` chars, order-preserving, unique.

    Non-ASCII tokens (Hangul, Han, kana) need only two chars.
    """
    seen: set[str] = set()
    out: list[str] = []
    for token in _WORD_RE.findall((text or "").lower()):
        needed = min_len if token.isascii() else min(min_len, 2)
        if len(token) >= needed and token not in seen:
            seen.add(token)
            out.append(token)
    return out


def content_words(text: str) -> list[str]:
    """Keyword tokens minus stopwords."""
    return [t for t in keyword_tokens(text, min_len=2) if t not in STOPWORDS]
