"""
TTL key/value cache with three logical namespaces: search results, page content,
final answers.

SqliteCacheStore persists to data/research_cache.db (one table per namespace:
key, value JSON, expires_at epoch seconds). InMemoryCacheStore is a dict behind a
lock, for tests and single-process dev runs. Both expose get/set/purge_expired.

Per-operation read/write failures are logged and behave as a miss / no-op; only a
store that cannot be opened at all raises CacheStoreError.
"""

import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Protocol

from app.core.config import CACHE_BACKEND, CACHE_DB_PATH
from app.core.errors import CacheStoreError

logger = logging.getLogger(__name__)

SEARCH_NAMESPACE = "search"
PAGE_NAMESPACE = "page"
ANSWER_NAMESPACE = "answer"
NAMESPACES: tuple[str, ...] = (SEARCH_NAMESPACE, PAGE_NAMESPACE, ANSWER_NAMESPACE)

# Project root
_ROOT = Path(__file__).resolve().parent.parent.parent


class CacheStore(Protocol):
    def get(self, key: str, namespace: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl_seconds: int, namespace: str) -> None: ...

    def purge_expired(self) -> int: ...


def _check_namespace(namespace: str) -> str:
    if namespace not in NAMESPACES:
        raise ValueError(f"unknown cache namespace: {namespace!r}")
    return namespace


def _table(namespace: str) -> str:
    return f"{_check_namespace(namespace)}_cache"


class SqliteCacheStore:
    """SQLite-backed cache. A short-lived connection per operation, like the rest of the app."""

    def __init__(self, db_path: str | Path = CACHE_DB_PATH) -> None:
        path = Path(db_path)
        self.db_path = path if path.is_absolute() else _ROOT / path
        try:
            self.init_db()
        except (sqlite3.Error, OSError) as e:
            logger.exception("[cache_store:init] cannot open cache db=%s", self.db_path)
            raise CacheStoreError(f"Cache store unavailable: {e}") from e

    def _get_conn(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(str(self.db_path), timeout=5.0)

    def init_db(self) -> None:
        """Create one table per namespace if it does not exist."""
        conn = self._get_conn()
        try:
            for namespace in NAMESPACES:
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {_table(namespace)} (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        expires_at REAL NOT NULL
                    )
                    """
                )
            conn.commit()
        finally:
            conn.close()

    def get(self, key: str, namespace: str) -> Any | None:
        table = _table(namespace)
        try:
            conn = self._get_conn()
            try:
                row = conn.execute(
                    f"SELECT value, expires_at FROM {table} WHERE key = ?", (key,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.warning("[cache_store:get] namespace=%s read failed: %s", namespace, e)
            return None
        if row is None:
            logger.debug("[cache_store:get] namespace=%s miss key=%s", namespace, key[:16])
            return None
        value, expires_at = row
        if expires_at <= time.time():
            logger.debug("[cache_store:get] namespace=%s expired key=%s", namespace, key[:16])
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.warning("[cache_store:get] namespace=%s corrupt value key=%s", namespace, key[:16])
            return None

    def set(self, key: str, value: Any, ttl_seconds: int, namespace: str) -> None:
        table = _table(namespace)
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.warning("[cache_store:set] namespace=%s value not serializable: %s", namespace, e)
            return
        try:
            conn = self._get_conn()
            try:
                conn.execute(
                    f"INSERT OR REPLACE INTO {table} (key, value, expires_at) VALUES (?, ?, ?)",
                    (key, payload, time.time() + ttl_seconds),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.warning("[cache_store:set] namespace=%s write failed: %s", namespace, e)
            return
        logger.debug("[cache_store:set] namespace=%s key=%s ttl=%d", namespace, key[:16], ttl_seconds)

    def purge_expired(self) -> int:
        """Delete expired rows in every namespace. Returns rows removed."""
        removed = 0
        conn = self._get_conn()
        try:
            now = time.time()
            for namespace in NAMESPACES:
                cur = conn.execute(f"DELETE FROM {_table(namespace)} WHERE expires_at <= ?", (now,))
                removed += cur.rowcount or 0
            conn.commit()
        finally:
            conn.close()
        logger.info("[cache_store:purge_expired] removed=%d", removed)
        return removed

    def clear_all(self) -> None:
        conn = self._get_conn()
        try:
            for namespace in NAMESPACES:
                conn.execute(f"DELETE FROM {_table(namespace)}")
            conn.commit()
        finally:
            conn.close()
        logger.info("[cache_store] cleared all namespaces")


class InMemoryCacheStore:
    """Process-local cache: namespace -> key -> (value, expires_at)."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, tuple[Any, float]]] = {ns: {} for ns in NAMESPACES}
        self._lock = threading.Lock()

    def get(self, key: str, namespace: str) -> Any | None:
        _check_namespace(namespace)
        with self._lock:
            entry = self._data[namespace].get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= time.time():
            return None
        # JSON round trip so callers never share mutable state with the store
        return json.loads(value)

    def set(self, key: str, value: Any, ttl_seconds: int, namespace: str) -> None:
        _check_namespace(namespace)
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.warning("[cache_store:memory:set] namespace=%s value not serializable: %s", namespace, e)
            return
        with self._lock:
            self._data[namespace][key] = (payload, time.time() + ttl_seconds)

    def purge_expired(self) -> int:
        now = time.time()
        removed = 0
        with self._lock:
            for entries in self._data.values():
                for key in [k for k, (_, exp) in entries.items() if exp <= now]:
                    del entries[key]
                    removed += 1
        return removed


def build_cache_store(backend: str = CACHE_BACKEND) -> CacheStore:
    """Create the configured cache store. Raises CacheStoreError if it cannot be opened."""
    if backend == "memory":
        logger.info("[cache_store:build] backend=memory")
        return InMemoryCacheStore()
    logger.info("[cache_store:build] backend=sqlite path=%s", CACHE_DB_PATH)
    return SqliteCacheStore(CACHE_DB_PATH)
