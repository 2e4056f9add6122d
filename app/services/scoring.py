"""
Source scoring: domain authority, technical-source and recency bonuses, recency decay.

Used by the SEARCH result filter and by synthesis passage selection.
"""

from datetime import date

from app.services.web_utils import age_days, current_year

_HIGH_AUTHORITY: tuple[str, ...] = (
    "nature.com",
    "sciencedirect.com",
    "nejm.org",
    "thelancet.com",
    "who.int",
    "oecd.org",
    "imf.org",
    "worldbank.org",
    "un.org",
    "reuters.com",
    "apnews.com",
    "bbc.co.uk",
    "nytimes.com",
    "washingtonpost.com",
    "ft.com",
    "bloomberg.com",
)

_LOW_AUTHORITY: tuple[str, ...] = (
    "medium.com",
    "quora.com",
    "reddit.com",
    "stackexchange.com",
    "blogspot.",
    "wordpress.",
    "substack.com",
    "contentfarm",
    "clickbait",
)

_TECHNICAL_DOMAINS: tuple[str, ...] = (
    "arxiv.org",
    "ieee.org",
    "acm.org",
    "springer.com",
    "nature.com",
    "sciencedirect.com",
    "researchgate.net",
    "nih.gov",
    "pubmed",
    "jstor.org",
    "ssrn.com",
)

_TECHNICAL_KEYWORDS: tuple[str, ...] = (
    "research",
    "study",
    "analysis",
    "report",
    "paper",
    "journal",
    "statistics",
    "dataset",
    "documentation",
    "whitepaper",
    "specification",
)

_FRESHNESS_KEYWORDS: tuple[str, ...] = ("latest", "update", "updated", "new", "breaking", "today")


def domain_authority_score(domain: str | None) -> float:
    d = (domain or "").lower()
    if not d:
        return 0.6
    labels = set(d.split("."))
    if labels & {"gov", "govt", "gouv"}:
        return 0.98
    if labels & {"edu", "ac"}:
        return 0.95
    if any(d == h or d.endswith("." + h) for h in _HIGH_AUTHORITY):
        return 0.9
    if any(marker in d for marker in _LOW_AUTHORITY):
        return 0.2
    return 0.6


def technical_source_bonus(domain: str | None, title: str | None, snippet: str | None) -> float:
    """1.0 for academic/research domains, 0.5 for research-flavoured text, else 0."""
    d = (domain or "").lower()
    if set(d.split(".")) & {"edu", "gov", "ac"} or any(t in d for t in _TECHNICAL_DOMAINS):
        return 1.0
    text = f"{title or ''} {snippet or ''}".lower()
    if any(keyword in text for keyword in _TECHNICAL_KEYWORDS):
        return 0.5
    return 0.0


def recency_bonus(url: str | None, title: str | None, snippet: str | None = None) -> float:
    """Year mentions and freshness words in url/title/snippet."""
    text = f"{url or ''} {title or ''} {snippet or ''}".lower()
    year = current_year()
    if str(year) in text:
        return 1.0
    if str(year - 1) in text:
        return 0.6
    if any(keyword in text for keyword in _FRESHNESS_KEYWORDS):
        return 0.4
    return 0.0


def recency_decay(published: date | None) -> float:
    """1 / (1 + months old); 0.4 when the date is unknown."""
    days = age_days(published)
    if days is None:
        return 0.4
    return 1.0 / (1.0 + days / 30.0)


def search_result_score(domain: str, title: str, snippet: str, url: str) -> float:
    length_score = min(1.0, len(snippet or "") / 200.0)
    return (
        0.5 * domain_authority_score(domain)
        + 0.2 * length_score
        + 0.2 * technical_source_bonus(domain, title, snippet)
        + 0.1 * recency_bonus(url, title, snippet)
    )
