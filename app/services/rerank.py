"""
Rerank: Cohere, Jina, Hugging Face (BAAI/bge-reranker-base), keyword-overlap fallback.

Responsibility: Order passages by relevance to the question. Remote rerankers are
tried in order; the keyword fallback always answers, and is used directly when
no provider is configured or the run's deadline has passed.
"""

import logging
import time
from dataclasses import replace
from typing import Any, Protocol

import httpx

from app.agent.models import Passage
from app.agent.tracking import CallTracker
from app.core.config import (
    COHERE_API_KEY,
    COHERE_RERANK_MODEL,
    COHERE_RERANK_URL,
    HF_API_KEY,
    HF_RERANK_URL,
    JINA_API_KEY,
    JINA_RERANK_MODEL,
    JINA_RERANK_URL,
    RERANK_API_TIMEOUT,
)
from app.core.errors import ProviderError
from app.services.text_processing import content_words

logger = logging.getLogger(__name__)

# Rerankers see at most this much of each passage
_DOC_CHARS = 2000


class RerankProvider(Protocol):
    name: str

    def is_available(self) -> bool: ...

    def rerank(self, query: str, documents: list[str], top_n: int, timeout: float) -> list[tuple[int, float]]: ...


def _post_json(url: str, provider: str, payload: dict, headers: dict, timeout: float) -> Any:
    try:
        with httpx.Client(timeout=timeout) as client:
            response = client.post(url, json=payload, headers=headers)
    except httpx.HTTPError as e:
        raise ProviderError(provider, f"request failed: {e}") from e
    if response.status_code != 200:
        raise ProviderError(provider, f"HTTP {response.status_code}: {response.text[:200]}")
    try:
        return response.json()
    except ValueError as e:
        raise ProviderError(provider, "non-JSON response") from e


def _indexed_results(data: Any, provider: str, score_key: str, count: int) -> list[tuple[int, float]]:
    results = data.get("results") if isinstance(data, dict) else None
    if not isinstance(results, list):
        raise ProviderError(provider, "unexpected response shape")
    out: list[tuple[int, float]] = []
    for item in results:
        if not isinstance(item, dict):
            continue
        idx = item.get("index")
        if isinstance(idx, int) and 0 <= idx < count:
            out.append((idx, float(item.get(score_key) or 0.0)))
    out.sort(key=lambda x: -x[1])
    return out


class CohereRerankProvider:
    name = "cohere"

    def __init__(self, api_key: str = COHERE_API_KEY, model: str = COHERE_RERANK_MODEL) -> None:
        self.api_key = api_key
        self.model = model

    def is_available(self) -> bool:
        return bool(self.api_key)

    def rerank(self, query: str, documents: list[str], top_n: int, timeout: float) -> list[tuple[int, float]]:
        payload = {"model": self.model, "query": query, "documents": documents, "top_n": top_n}
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        data = _post_json(COHERE_RERANK_URL, self.name, payload, headers, timeout)
        return _indexed_results(data, self.name, "relevance_score", len(documents))


class JinaRerankProvider:
    name = "jina"

    def __init__(self, api_key: str = JINA_API_KEY, model: str = JINA_RERANK_MODEL) -> None:
        self.api_key = api_key
        self.model = model

    def is_available(self) -> bool:
        return bool(self.api_key)

    def rerank(self, query: str, documents: list[str], top_n: int, timeout: float) -> list[tuple[int, float]]:
        payload = {"model": self.model, "query": query, "documents": documents, "top_n": top_n}
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        data = _post_json(JINA_RERANK_URL, self.name, payload, headers, timeout)
        key = "relevance_score"
        results = data.get("results") if isinstance(data, dict) else None
        if isinstance(results, list) and results and isinstance(results[0], dict) and "score" in results[0]:
            key = "score"
        return _indexed_results(data, self.name, key, len(documents))


class HuggingFaceRerankProvider:
    """Router cross-encoder: inputs are {"text": query, "text_pair": document} pairs."""

    name = "huggingface"

    def __init__(self, api_key: str = HF_API_KEY, url: str = HF_RERANK_URL) -> None:
        self.api_key = api_key
        self.url = url

    def is_available(self) -> bool:
        return bool(self.api_key)

    def rerank(self, query: str, documents: list[str], top_n: int, timeout: float) -> list[tuple[int, float]]:
        payload = {
            "inputs": [{"text": query, "text_pair": d} for d in documents],
            "options": {"wait_for_model": True},
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        data = _post_json(self.url, self.name, payload, headers, timeout)
        scores = parse_hf_scores(data)
        if scores is None or not scores:
            raise ProviderError(self.name, "unexpected response shape")
        scored = [(i, s) for i, s in enumerate(scores[: len(documents)])]
        scored.sort(key=lambda x: -x[1])
        return scored[:top_n]


def parse_hf_scores(data: Any) -> list[float] | None:
    """Scores in input order. The router returns [s1, ...], [[s1, ...]], [{score}], or {"scores": [...]}."""

    def to_score(item: Any) -> float:
        if isinstance(item, (int, float)):
            return float(item)
        if isinstance(item, list) and item:
            return float(item[0]) if isinstance(item[0], (int, float)) else 0.0
        if isinstance(item, dict):
            return float(item.get("score", 0))
        return 0.0

    if isinstance(data, dict) and isinstance(data.get("scores"), list):
        return [to_score(s) for s in data["scores"]]
    if not isinstance(data, list) or not data:
        return None
    # Router sometimes returns [[s1, s2, ...]]: one element that is the full list of scores
    if len(data) == 1 and isinstance(data[0], list) and not isinstance(data[0][0] if data[0] else None, dict):
        return [to_score(s) for s in data[0]]
    return [to_score(s) for s in data]


def keyword_scores(query: str, passages: list[Passage]) -> list[float]:
    """Share of query content words present in each passage's title + text (0..1)."""
    words = content_words(query)
    if not words:
        return [0.0 for _ in passages]
    out: list[float] = []
    for p in passages:
        haystack = f"{p.title or ''} {p.text}".lower()
        out.append(sum(1 for w in words if w in haystack) / len(words))
    return out


class RerankService:
    def __init__(self, providers: list[RerankProvider]) -> None:
        self.providers = list(providers)

    def available(self) -> list[RerankProvider]:
        return [p for p in self.providers if p.is_available()]

    def rerank(
        self,
        query: str,
        passages: list[Passage],
        timeout: float = RERANK_API_TIMEOUT,
        tracker: CallTracker | None = None,
        keyword_only: bool = False,
    ) -> list[Passage]:
        """
        Return copies of all passages ordered by relevance, each with `score` set.

        Callers apply domain caps and truncation; the full order is returned so a cap
        never starves the result of candidates.
        """
        if not passages:
            return []
        logger.info("[rerank:rerank] IN  query=%r passages=%d keyword_only=%s", query, len(passages), keyword_only)
        if not keyword_only:
            documents = [f"{p.title or ''}\n{p.text}"[:_DOC_CHARS] for p in passages]
            for provider in self.available():
                started = time.perf_counter()
                try:
                    ranked = provider.rerank(query, documents, len(documents), timeout)
                except ProviderError as e:
                    logger.warning("[rerank:rerank] provider=%s failed: %s", provider.name, e.message)
                    if tracker is not None:
                        tracker.record("rerank", provider.name, (time.perf_counter() - started) * 1000, False, error=e.message[:200])
                    continue
                if tracker is not None:
                    tracker.record("rerank", provider.name, (time.perf_counter() - started) * 1000, True)
                if not ranked:
                    continue
                out = [replace(passages[i], score=score) for i, score in ranked]
                # Anything the provider dropped keeps its relative order at the end
                seen = {i for i, _ in ranked}
                out.extend(replace(p, score=0.0) for i, p in enumerate(passages) if i not in seen)
                logger.info("[rerank:rerank] OUT provider=%s ranked=%d", provider.name, len(out))
                return out

        scores = keyword_scores(query, passages)
        order = sorted(range(len(passages)), key=lambda i: (-scores[i], -(passages[i].score or 0.0), i))
        out = [replace(passages[i], score=scores[i]) for i in order]
        logger.info("[rerank:rerank] OUT provider=keyword ranked=%d", len(out))
        return out


def build_rerank_service() -> RerankService:
    return RerankService([CohereRerankProvider(), JinaRerankProvider(), HuggingFaceRerankProvider()])
