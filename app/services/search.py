"""
Web search: provider adapters, first-available-wins manager, and the SEARCH
action's result shaping (query variants, blocklist, scoring, domain diversity).

Responsibility: Turn one planner query into a ranked, domain-diverse list of
results. Provider failures fall through to the next provider; only when every
provider fails does the manager raise AllProvidersFailedError.
"""

import json
import logging
import math
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Protocol

import httpx
from ddgs import DDGS
from ddgs.exceptions import DDGSException

from app.agent.tracking import CallTracker
from app.core.cache_store import SEARCH_NAMESPACE, CacheStore
from app.core.config import (
    BING_API_KEY,
    BING_SEARCH_URL,
    DDGS_SEARCH_ENABLED,
    DIVERSITY_MAX_RESULTS,
    DIVERSITY_MIN_RESULTS,
    MAX_QUERY_VARIANTS,
    PER_DOMAIN_CAP,
    SEARCH_API_TIMEOUT,
    SEARCH_CACHE_TTL,
    SEARCH_FANOUT_WORKERS,
    SEARCH_RETAIN_TOP,
    SERPAPI_API_KEY,
    SERPAPI_SEARCH_URL,
    TAVILY_API_KEY,
    TAVILY_SEARCH_URL,
)
from app.core.errors import AllProvidersFailedError, ProviderError
from app.services.scoring import search_result_score
from app.services.web_utils import current_year, etld_plus_one, stable_hash

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    url: str
    title: str = ""
    snippet: str = ""
    domain: str = ""
    score: float = 0.0

    def to_dict(self) -> dict[str, str]:
        return {"url": self.url, "title": self.title, "snippet": self.snippet}


class SearchProvider(Protocol):
    name: str

    def is_available(self) -> bool: ...

    def search(self, query: str, k: int, time_range: str | None, timeout: float) -> list[SearchResult]: ...


def _clean_results(items: list[SearchResult]) -> list[SearchResult]:
    return [r for r in items if r.url and r.url.startswith(("http://", "https://"))]


class TavilySearchProvider:
    name = "tavily"
    _TIME_RANGES = {"d": "day", "w": "week", "m": "month", "y": "year"}

    def __init__(self, api_key: str = TAVILY_API_KEY, url: str = TAVILY_SEARCH_URL) -> None:
        self.api_key = api_key
        self.url = url

    def is_available(self) -> bool:
        return bool(self.api_key)

    def search(self, query: str, k: int, time_range: str | None, timeout: float) -> list[SearchResult]:
        payload: dict = {
            "query": query,
            "max_results": k,
            "include_answer": False,
            "search_depth": "basic",
        }
        if time_range in self._TIME_RANGES:
            payload["time_range"] = self._TIME_RANGES[time_range]
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        data = _request_json("POST", self.url, self.name, timeout, json=payload, headers=headers)
        return _clean_results(
            [
                SearchResult(url=r.get("url") or "", title=r.get("title") or "", snippet=r.get("content") or "")
                for r in data.get("results") or []
                if isinstance(r, dict)
            ]
        )


class BingSearchProvider:
    name = "bing"
    _FRESHNESS = {"d": "Day", "w": "Week", "m": "Month"}

    def __init__(self, api_key: str = BING_API_KEY, url: str = BING_SEARCH_URL) -> None:
        self.api_key = api_key
        self.url = url

    def is_available(self) -> bool:
        return bool(self.api_key)

    def search(self, query: str, k: int, time_range: str | None, timeout: float) -> list[SearchResult]:
        params: dict = {"q": query, "count": k}
        if time_range in self._FRESHNESS:
            params["freshness"] = self._FRESHNESS[time_range]
        headers = {"Ocp-Apim-Subscription-Key": self.api_key}
        data = _request_json("GET", self.url, self.name, timeout, params=params, headers=headers)
        values = (data.get("webPages") or {}).get("value") or []
        return _clean_results(
            [
                SearchResult(url=v.get("url") or "", title=v.get("name") or "", snippet=v.get("snippet") or "")
                for v in values
                if isinstance(v, dict)
            ]
        )


class SerpApiSearchProvider:
    name = "serpapi"

    def __init__(self, api_key: str = SERPAPI_API_KEY, url: str = SERPAPI_SEARCH_URL) -> None:
        self.api_key = api_key
        self.url = url

    def is_available(self) -> bool:
        return bool(self.api_key)

    def search(self, query: str, k: int, time_range: str | None, timeout: float) -> list[SearchResult]:
        params: dict = {"engine": "google", "q": query, "num": k, "api_key": self.api_key}
        if time_range:
            params["tbs"] = f"qdr:{time_range}"
        data = _request_json("GET", self.url, self.name, timeout, params=params)
        return _clean_results(
            [
                SearchResult(url=r.get("link") or "", title=r.get("title") or "", snippet=r.get("snippet") or "")
                for r in data.get("organic_results") or []
                if isinstance(r, dict)
            ]
        )


class DuckDuckGoSearchProvider:
    """Keyless search through the ddgs package. Off unless DDGS_SEARCH_ENABLED is set."""

    name = "duckduckgo"

    def __init__(self, enabled: bool = DDGS_SEARCH_ENABLED) -> None:
        self.enabled = enabled

    def is_available(self) -> bool:
        return self.enabled

    def search(self, query: str, k: int, time_range: str | None, timeout: float) -> list[SearchResult]:
        try:
            results = DDGS(timeout=int(max(1, timeout))).text(query, max_results=k, timelimit=time_range)
        except DDGSException as e:
            raise ProviderError(self.name, str(e)) from e
        return _clean_results(
            [
                SearchResult(url=r.get("href") or "", title=r.get("title") or "", snippet=r.get("body") or "")
                for r in results or []
                if isinstance(r, dict)
            ]
        )


def _request_json(method: str, url: str, provider: str, timeout: float, **kwargs) -> dict:
    try:
        with httpx.Client(timeout=timeout) as client:
            response = client.request(method, url, **kwargs)
    except httpx.HTTPError as e:
        raise ProviderError(provider, f"request failed: {e}") from e
    if response.status_code != 200:
        raise ProviderError(provider, f"HTTP {response.status_code}: {response.text[:200]}")
    try:
        data = response.json()
    except ValueError as e:
        raise ProviderError(provider, "non-JSON response") from e
    if not isinstance(data, dict):
        raise ProviderError(provider, "unexpected response shape")
    return data


def search_cache_key(query: str, k: int, time_range: str | None) -> str:
    return stable_hash(json.dumps({"q": query, "k": k, "timeRange": time_range}, sort_keys=True), 32)


class SearchProviderManager:
    """Ordered search providers with a read-through search cache."""

    def __init__(self, providers: list[SearchProvider], cache: CacheStore | None = None) -> None:
        self.providers = list(providers)
        self.cache = cache

    def available(self) -> list[SearchProvider]:
        return [p for p in self.providers if p.is_available()]

    def is_configured(self) -> bool:
        return bool(self.available())

    def search(
        self,
        query: str,
        k: int,
        time_range: str | None = None,
        timeout: float = SEARCH_API_TIMEOUT,
        tracker: CallTracker | None = None,
    ) -> list[SearchResult]:
        query = (query or "").strip()
        if not query:
            return []
        key = search_cache_key(query, k, time_range)
        if self.cache is not None:
            cached = self.cache.get(key, SEARCH_NAMESPACE)
            if isinstance(cached, list):
                logger.info("[search:search] cache hit query=%r results=%d", query, len(cached))
                return [SearchResult(url=c["url"], title=c.get("title", ""), snippet=c.get("snippet", "")) for c in cached]

        errors: list[str] = []
        providers = self.available()
        for provider in providers:
            started = time.perf_counter()
            try:
                results = provider.search(query, k, time_range, timeout)
            except ProviderError as e:
                logger.warning("[search:search] provider=%s failed: %s", provider.name, e.message)
                if tracker is not None:
                    tracker.record("search", provider.name, (time.perf_counter() - started) * 1000, False, error=e.message[:200])
                errors.append(f"{provider.name}: {e.message}")
                continue
            if tracker is not None:
                tracker.record("search", provider.name, (time.perf_counter() - started) * 1000, True)
            if not results:
                logger.info("[search:search] provider=%s returned no results for %r", provider.name, query)
                continue
            results = results[:k]
            if self.cache is not None:
                self.cache.set(key, [r.to_dict() for r in results], SEARCH_CACHE_TTL, SEARCH_NAMESPACE)
            logger.info("[search:search] OUT provider=%s query=%r results=%d", provider.name, query, len(results))
            return results
        if providers and len(errors) == len(providers):
            raise AllProvidersFailedError("search", errors)
        return []


def build_search_manager(cache: CacheStore | None = None) -> SearchProviderManager:
    return SearchProviderManager(
        [TavilySearchProvider(), BingSearchProvider(), SerpApiSearchProvider(), DuckDuckGoSearchProvider()],
        cache=cache,
    )


# --- SEARCH action result shaping ---

_BLOCKLIST: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"/tag/",
        r"/category/",
        r"/author/",
        r"/page/\d+",
        r"/feed/?",
        r"\.docx?($|\?)",
        r"\.pptx?($|\?)",
        r"\.xlsx?($|\?)",
        r"\.pdf($|\?)",
        r"facebook\.com",
        r"(^|\.|//)twitter\.com",
        r"(^|\.|//)x\.com",
        r"instagram\.com",
        r"tiktok\.com",
        r"linkedin\.com/posts",
        r"youtube\.com/watch",
        r"youtu\.be/",
    )
)


def is_blocked(url: str) -> bool:
    return any(p.search(url or "") for p in _BLOCKLIST)


def build_query_variants(seed: str, time_sensitive: bool, max_variants: int = MAX_QUERY_VARIANTS) -> list[str]:
    """Seed first, then year / freshness / authority-site variants; distinct, order kept."""
    seed = " ".join((seed or "").split())
    if not seed:
        return []
    variants = [seed]
    if time_sensitive:
        variants.append(f"{seed} {current_year()}")
    variants.extend([f"{seed} latest", f"{seed} site:gov", f"{seed} site:edu"])
    seen: set[str] = set()
    out: list[str] = []
    for v in variants:
        if v.lower() not in seen:
            seen.add(v.lower())
            out.append(v)
    return out[:max_variants]


@dataclass
class FanOutResult:
    results: list[SearchResult] = field(default_factory=list)
    failed_variants: int = 0


def multi_query_search(
    manager: SearchProviderManager,
    seed: str,
    k: int,
    time_range: str | None,
    time_sensitive: bool,
    timeout: float,
    tracker: CallTracker | None = None,
    max_workers: int = SEARCH_FANOUT_WORKERS,
) -> FanOutResult:
    """Run every query variant concurrently; merge in variant order, first-seen URL wins."""
    variants = build_query_variants(seed, time_sensitive)
    if not variants:
        return FanOutResult()
    per_variant_k = max(1, math.ceil(k / len(variants)) * 2)
    logger.info("[search:multi_query] IN  seed=%r variants=%d per_variant_k=%d", seed, len(variants), per_variant_k)

    def run(variant: str) -> list[SearchResult] | None:
        try:
            return manager.search(variant, per_variant_k, time_range, timeout, tracker)
        except AllProvidersFailedError as e:
            logger.warning("[search:multi_query] variant=%r failed: %s", variant, e.message)
            return None

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(variants)))) as pool:
        batches = list(pool.map(run, variants))

    merged = FanOutResult()
    seen: set[str] = set()
    for batch in batches:
        if batch is None:
            merged.failed_variants += 1
            continue
        for result in batch:
            if result.url in seen:
                continue
            seen.add(result.url)
            merged.results.append(result)
    logger.info("[search:multi_query] OUT merged=%d failed_variants=%d", len(merged.results), merged.failed_variants)
    return merged


def filter_and_score(results: list[SearchResult], retain: int = SEARCH_RETAIN_TOP) -> list[SearchResult]:
    """Drop blocklisted URLs, score the rest, keep the best `retain` (stable for ties)."""
    kept: list[SearchResult] = []
    for r in results:
        if is_blocked(r.url):
            continue
        r.domain = etld_plus_one(r.url)
        r.score = search_result_score(r.domain, r.title, r.snippet, r.url)
        kept.append(r)
    kept.sort(key=lambda r: -r.score)
    return kept[:retain]


def retain_diverse(
    results: list[SearchResult],
    existing_domains: list[str] | None = None,
    per_domain_cap: int = PER_DOMAIN_CAP,
    max_total: int = DIVERSITY_MAX_RESULTS,
    min_total: int = DIVERSITY_MIN_RESULTS,
) -> list[SearchResult]:
    """At most `per_domain_cap` per domain (counting passages already held), at most `max_total`."""
    counts: dict[str, int] = {}
    for d in existing_domains or []:
        counts[d] = counts.get(d, 0) + 1
    picked: list[SearchResult] = []
    for r in results:
        domain = r.domain or etld_plus_one(r.url) or "unknown"
        if counts.get(domain, 0) >= per_domain_cap:
            continue
        counts[domain] = counts.get(domain, 0) + 1
        picked.append(r)
        if len(picked) >= max_total:
            break
    if len(picked) < min_total:
        logger.info("[search:retain_diverse] below diversity target picked=%d target=%d", len(picked), min_total)
    return picked
