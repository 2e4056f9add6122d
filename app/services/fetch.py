"""
Page fetch: Microlink extraction first, direct HTML download + BeautifulSoup second.

Responsibility: fetch(url) -> FetchResult {text, title, status, published_date}.
Results are cached in the page namespace for a week. PDFs and oversized bodies
are rejected; text is cleaned and truncated to FETCH_MAX_CHARS.
"""

import json
import logging
import re
import time
from dataclasses import dataclass
from datetime import date
from typing import Any

import httpx
from bs4 import BeautifulSoup

from app.agent.tracking import CallTracker
from app.core.cache_store import PAGE_NAMESPACE, CacheStore
from app.core.config import (
    FETCH_MAX_BYTES,
    FETCH_MAX_CHARS,
    FETCH_TIMEOUT,
    FETCH_USER_AGENT,
    MICROLINK_API_KEY,
    MICROLINK_PRO_URL,
    MICROLINK_URL,
    PAGE_CACHE_TTL,
)
from app.core.errors import AllProvidersFailedError, ProviderError
from app.services.text_processing import clean_text
from app.services.web_utils import parse_date, stable_hash

logger = logging.getLogger(__name__)

REMOVE_TAGS: tuple[str, ...] = ("script", "style", "noscript", "nav", "footer", "header", "aside", "form", "svg")

_URL_DATE_RE = re.compile(r"/(20\d{2}|19\d{2})/(\d{1,2})/(\d{1,2})(?:/|$|-)")
_URL_MONTH_RE = re.compile(r"/(20\d{2}|19\d{2})/(\d{1,2})/")
_BODY_DATE_RE = re.compile(r"\b((?:19|20)\d{2})-(\d{2})-(\d{2})\b")

_DATE_META: tuple[tuple[str, str], ...] = (
    ("property", "article:published_time"),
    ("property", "og:published_time"),
    ("itemprop", "datePublished"),
    ("name", "pubdate"),
    ("name", "publishdate"),
    ("name", "date"),
    ("name", "dc.date"),
    ("property", "article:modified_time"),
)


@dataclass
class FetchResult:
    url: str
    text: str
    title: str | None = None
    status: int = 200
    content_type: str | None = None
    published_date: date | None = None
    source: str = "direct"

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400 and bool(self.text)

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "text": self.text,
            "title": self.title,
            "status": self.status,
            "content_type": self.content_type,
            "published_date": self.published_date.isoformat() if self.published_date else None,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FetchResult":
        return cls(
            url=data.get("url") or "",
            text=data.get("text") or "",
            title=data.get("title"),
            status=int(data.get("status") or 0),
            content_type=data.get("content_type"),
            published_date=parse_date(data.get("published_date")),
            source="cache",
        )


# --- Published date extraction ---


def _json_ld_dates(soup: BeautifulSoup) -> list[str]:
    found: list[str] = []

    def walk(node: Any) -> None:
        if isinstance(node, dict):
            for key in ("datePublished", "dateCreated", "dateModified"):
                if isinstance(node.get(key), str):
                    found.append(node[key])
            for value in node.values():
                if isinstance(value, (dict, list)):
                    walk(value)
        elif isinstance(node, list):
            for item in node:
                walk(item)

    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            walk(json.loads(script.string or ""))
        except (json.JSONDecodeError, TypeError):
            continue
    return found


def date_from_url(url: str) -> date | None:
    match = _URL_DATE_RE.search(url or "")
    if match:
        try:
            return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        except ValueError:
            pass
    match = _URL_MONTH_RE.search(url or "")
    if match:
        try:
            return date(int(match.group(1)), int(match.group(2)), 1)
        except ValueError:
            return None
    return None


def date_from_text(text: str) -> date | None:
    for match in _BODY_DATE_RE.finditer(text or ""):
        try:
            return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        except ValueError:
            continue
    return None


def extract_published_date(url: str, soup: BeautifulSoup | None = None, text: str = "") -> date | None:
    """JSON-LD, meta tags, <time datetime>, URL path, then the first ISO date in the body."""
    if soup is not None:
        for raw in _json_ld_dates(soup):
            parsed = parse_date(raw)
            if parsed:
                return parsed
        for attr, value in _DATE_META:
            tag = soup.find("meta", attrs={attr: value})
            if tag is not None:
                parsed = parse_date(tag.get("content"))
                if parsed:
                    return parsed
        time_tag = soup.find("time", attrs={"datetime": True})
        if time_tag is not None:
            parsed = parse_date(time_tag.get("datetime"))
            if parsed:
                return parsed
    return date_from_url(url) or date_from_text(text)


def html_to_text(html: str, url: str = "") -> tuple[str, str | None, date | None]:
    """Parse HTML into (clean text, title, published date)."""
    soup = BeautifulSoup(html, "html.parser")
    published = extract_published_date(url, soup)
    title = soup.title.get_text(strip=True) if soup.title else None
    for tag in soup(list(REMOVE_TAGS)):
        tag.decompose()
    text = clean_text(soup.get_text(separator="\n"))
    if published is None:
        published = date_from_text(text)
    return text, title or None, published


class FetchService:
    """Primary Microlink extraction, secondary raw-HTML fallback, page cache in front."""

    def __init__(
        self,
        cache: CacheStore | None = None,
        microlink_api_key: str = MICROLINK_API_KEY,
        use_microlink: bool = True,
        user_agent: str = FETCH_USER_AGENT,
        max_chars: int = FETCH_MAX_CHARS,
        max_bytes: int = FETCH_MAX_BYTES,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.cache = cache
        self.microlink_api_key = microlink_api_key
        self.use_microlink = use_microlink
        self.user_agent = user_agent
        self.max_chars = max_chars
        self.max_bytes = max_bytes
        self._transport = transport

    def _client(self, timeout: float) -> httpx.Client:
        return httpx.Client(timeout=timeout, follow_redirects=True, transport=self._transport)

    def fetch(self, url: str, timeout: float = FETCH_TIMEOUT, tracker: CallTracker | None = None) -> FetchResult:
        logger.info("[fetch:fetch] IN  url=%s timeout=%.1f", url, timeout)
        key = f"url:{stable_hash(url, 32)}"
        if self.cache is not None:
            cached = self.cache.get(key, PAGE_NAMESPACE)
            if isinstance(cached, dict):
                logger.info("[fetch:fetch] cache hit url=%s", url)
                return FetchResult.from_dict(cached)

        errors: list[str] = []
        strategies = [("microlink", self._fetch_microlink)] if self.use_microlink else []
        strategies.append(("direct", self._fetch_direct))
        for name, strategy in strategies:
            started = time.perf_counter()
            try:
                result = strategy(url, timeout)
            except ProviderError as e:
                logger.warning("[fetch:fetch] %s failed url=%s: %s", name, url, e.message)
                if tracker is not None:
                    tracker.record("fetch", name, (time.perf_counter() - started) * 1000, False, error=e.message[:200])
                errors.append(f"{name}: {e.message}")
                continue
            if tracker is not None:
                tracker.record("fetch", name, (time.perf_counter() - started) * 1000, True)
            result.text = result.text[: self.max_chars]
            if self.cache is not None and result.ok:
                self.cache.set(key, result.to_dict(), PAGE_CACHE_TTL, PAGE_NAMESPACE)
            logger.info(
                "[fetch:fetch] OUT via=%s status=%d text_len=%d published=%s",
                name, result.status, len(result.text), result.published_date,
            )
            return result
        raise AllProvidersFailedError("fetch", errors)

    def _fetch_microlink(self, url: str, timeout: float) -> FetchResult:
        base = MICROLINK_PRO_URL if self.microlink_api_key else MICROLINK_URL
        headers = {"x-api-key": self.microlink_api_key} if self.microlink_api_key else {}
        params = {"url": url, "meta": "true", "text": "true"}
        try:
            with self._client(timeout) as client:
                response = client.get(base, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderError("microlink", f"request failed: {e}") from e
        if response.status_code != 200:
            raise ProviderError("microlink", f"HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError("microlink", "non-JSON response") from e
        if payload.get("status") != "success":
            raise ProviderError("microlink", f"status={payload.get('status')}")
        data = payload.get("data") or {}
        text = clean_text(data.get("text") or "")
        if not text:
            raise ProviderError("microlink", "no text extracted")
        published = parse_date(data.get("date")) or date_from_url(url) or date_from_text(text)
        return FetchResult(
            url=url,
            text=text,
            title=data.get("title") or None,
            status=200,
            content_type=data.get("contentType") or "text/html",
            published_date=published,
            source="microlink",
        )

    def _fetch_direct(self, url: str, timeout: float) -> FetchResult:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }
        try:
            with self._client(timeout) as client:
                response = client.get(url, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderError("direct", f"request failed: {e}") from e
        content_type = (response.headers.get("content-type") or "").lower()
        if "pdf" in content_type or url.lower().split("?")[0].endswith(".pdf"):
            raise ProviderError("direct", "PDF content is not supported")
        declared = response.headers.get("content-length")
        if (declared and declared.isdigit() and int(declared) > self.max_bytes) or len(response.content) > self.max_bytes:
            raise ProviderError("direct", "response body too large")
        if response.status_code >= 400:
            return FetchResult(url=url, text="", status=response.status_code, content_type=content_type, source="direct")
        if "html" in content_type or not content_type:
            text, title, published = html_to_text(response.text, url)
        else:
            text = clean_text(response.text)
            title, published = None, date_from_url(url) or date_from_text(text)
        return FetchResult(
            url=url,
            text=text,
            title=title,
            status=response.status_code,
            content_type=content_type or None,
            published_date=published,
            source="direct",
        )
