"""
Caller authentication for the research endpoints.

The pipeline only needs a yes/no "authorized" answer plus an identity for logging.
Callers send `Authorization: Bearer <key>`; keys come from API_KEYS ("label:key"
pairs). AUTH_DISABLED lets local runs through as "anonymous".
"""

import hmac
import logging
from dataclasses import dataclass

from fastapi import Header, HTTPException

from app.core.config import API_KEYS, AUTH_DISABLED

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallerIdentity:
    caller_id: str
    authenticated: bool = True


def parse_api_keys(raw: str) -> dict[str, str]:
    """Parse "label:key,label2:key2" into {key: label}. Bare keys get a positional label."""
    keys: dict[str, str] = {}
    for i, item in enumerate(part.strip() for part in (raw or "").split(",")):
        if not item:
            continue
        label, sep, key = item.partition(":")
        if not sep:
            label, key = f"client-{i + 1}", item
        label, key = label.strip(), key.strip()
        if key:
            keys[key] = label or f"client-{i + 1}"
    return keys


_KEYS: dict[str, str] = parse_api_keys(API_KEYS)


def authenticate(token: str, keys: dict[str, str]) -> CallerIdentity | None:
    """Return the caller identity for a valid key, else None. Constant-time compare."""
    if not token:
        return None
    match: CallerIdentity | None = None
    for key, label in keys.items():
        if hmac.compare_digest(token.encode("utf-8"), key.encode("utf-8")):
            match = CallerIdentity(caller_id=label)
    return match


def require_caller(authorization: str | None = Header(default=None)) -> CallerIdentity:
    """FastAPI dependency: resolve the caller or raise 401."""
    if AUTH_DISABLED:
        return CallerIdentity(caller_id="anonymous", authenticated=False)
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        logger.info("[auth:require_caller] missing bearer token")
        raise HTTPException(
            status_code=401,
            detail="Missing bearer token.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    caller = authenticate(token.strip(), _KEYS)
    if caller is None:
        logger.info("[auth:require_caller] rejected token")
        raise HTTPException(
            status_code=401,
            detail="Invalid API key.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return caller
