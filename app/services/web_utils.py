"""
URL, hashing and date helpers shared by search, fetch, facets and synthesis.
"""

import hashlib
import re
from datetime import date, datetime, timezone
from urllib.parse import urlparse

_TIME_SENSITIVE_KEYWORDS: tuple[str, ...] = (
    "current",
    "today",
    "now",
    "as of",
    "latest",
    "recent",
    "update",
    "price",
    "prices",
    "release",
    "released",
    "updated",
    "outage",
    "who is",
    "who's",
    "who’s",
    "breaking",
    "this week",
    "this month",
    "this year",
)

_TIME_SENSITIVE_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(k) for k in _TIME_SENSITIVE_KEYWORDS) + r")\b"
)
_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})")
_SECOND_LEVEL_ZONES: frozenset[str] = frozenset({"ac", "co", "com", "edu", "go", "gov", "net", "or", "org"})


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def current_year() -> int:
    return utc_today().year


def stable_hash(value: str, length: int = 16) -> str:
    """Deterministic short hex digest (sha256) used for ids and cache keys."""
    return hashlib.sha256((value or "").encode("utf-8")).hexdigest()[:length]


def is_http_url(url: str) -> bool:
    try:
        parsed = urlparse((url or "").strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def etld_plus_one(url: str) -> str:
    """
    Registrable-ish domain, lower-cased, no 'www.': the last two host labels, or
    the last three under a country second-level zone such as co.uk or gov.au.
    """
    try:
        host = (urlparse((url or "").strip()).hostname or "").lower()
    except ValueError:
        return ""
    if host.startswith("www."):
        host = host[4:]
    labels = [part for part in host.split(".") if part]
    if len(labels) <= 2:
        return ".".join(labels)
    if len(labels[-1]) == 2 and labels[-2] in _SECOND_LEVEL_ZONES:
        return ".".join(labels[-3:])
    return ".".join(labels[-2:])


def is_time_sensitive(question: str, today: date | None = None) -> bool:
    """Keyword heuristic: freshness words or an explicit recent year (this year or last)."""
    text = (question or "").lower()
    if _TIME_SENSITIVE_RE.search(text):
        return True
    year = (today or utc_today()).year
    return any(re.search(rf"\b{y}\b", text) for y in (year, year - 1))


def day_bucket(question: str, today: date | None = None) -> str:
    """Calendar day for time-sensitive questions, a fixed token otherwise."""
    today = today or utc_today()
    return today.isoformat() if is_time_sensitive(question, today) else "evergreen"


def parse_date(value: str | None) -> date | None:
    """Best-effort parse of ISO-ish dates ("2024-05-01", "2024-05-01T10:00:00Z")."""
    if not value:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    match = _ISO_DATE_RE.search(text)
    if match:
        try:
            return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        except ValueError:
            return None
    return None


def age_days(published: date | None, today: date | None = None) -> int | None:
    if published is None:
        return None
    return max(0, ((today or utc_today()) - published).days)


def newest_date(dates: list[date | None]) -> date | None:
    known = [d for d in dates if d is not None]
    return max(known) if known else None
