"""
Tests for the TTL cache stores and answer-cache keys.
"""

import time
from datetime import date

import pytest

from app.agent.budget import init_budget
from app.agent.orchestrator import build_cache_key
from app.core.cache_store import (
    ANSWER_NAMESPACE,
    PAGE_NAMESPACE,
    SEARCH_NAMESPACE,
    InMemoryCacheStore,
    SqliteCacheStore,
    build_cache_store,
)
from app.services.web_utils import day_bucket


@pytest.fixture
def sqlite_store(tmp_path) -> SqliteCacheStore:
    return SqliteCacheStore(tmp_path / "cache.db")


class TestSqliteCacheStore:
    def test_set_then_get(self, sqlite_store: SqliteCacheStore) -> None:
        sqlite_store.set("k", {"answer": 42, "urls": ["https://a.com"]}, 60, ANSWER_NAMESPACE)
        assert sqlite_store.get("k", ANSWER_NAMESPACE) == {"answer": 42, "urls": ["https://a.com"]}

    def test_namespaces_are_separate(self, sqlite_store: SqliteCacheStore) -> None:
        sqlite_store.set("k", "page text", 60, PAGE_NAMESPACE)
        assert sqlite_store.get("k", SEARCH_NAMESPACE) is None

    def test_expired_entries_miss_and_purge(self, sqlite_store: SqliteCacheStore) -> None:
        sqlite_store.set("old", [1], 0, SEARCH_NAMESPACE)
        sqlite_store.set("new", [2], 60, SEARCH_NAMESPACE)
        time.sleep(0.01)
        assert sqlite_store.get("old", SEARCH_NAMESPACE) is None
        assert sqlite_store.purge_expired() == 1
        assert sqlite_store.get("new", SEARCH_NAMESPACE) == [2]

    def test_overwrite_replaces_value(self, sqlite_store: SqliteCacheStore) -> None:
        sqlite_store.set("k", 1, 60, ANSWER_NAMESPACE)
        sqlite_store.set("k", 2, 60, ANSWER_NAMESPACE)
        assert sqlite_store.get("k", ANSWER_NAMESPACE) == 2

    def test_clear_all(self, sqlite_store: SqliteCacheStore) -> None:
        sqlite_store.set("k", 1, 60, ANSWER_NAMESPACE)
        sqlite_store.clear_all()
        assert sqlite_store.get("k", ANSWER_NAMESPACE) is None

    def test_unserializable_value_is_skipped(self, sqlite_store: SqliteCacheStore) -> None:
        sqlite_store.set("k", {1, 2}, 60, ANSWER_NAMESPACE)
        assert sqlite_store.get("k", ANSWER_NAMESPACE) is None

    def test_unknown_namespace_is_rejected(self, sqlite_store: SqliteCacheStore) -> None:
        with pytest.raises(ValueError):
            sqlite_store.get("k", "sessions")


class TestInMemoryCacheStore:
    def test_returns_copies(self) -> None:
        store = InMemoryCacheStore()
        store.set("k", {"items": [1]}, 60, ANSWER_NAMESPACE)
        first = store.get("k", ANSWER_NAMESPACE)
        first["items"].append(2)
        assert store.get("k", ANSWER_NAMESPACE) == {"items": [1]}

    def test_ttl(self) -> None:
        store = InMemoryCacheStore()
        store.set("k", 1, 0, PAGE_NAMESPACE)
        time.sleep(0.01)
        assert store.get("k", PAGE_NAMESPACE) is None
        assert store.purge_expired() == 1


def test_build_cache_store_memory_backend() -> None:
    assert isinstance(build_cache_store("memory"), InMemoryCacheStore)


class TestCacheKey:
    def test_deterministic_and_whitespace_insensitive(self) -> None:
        budget = init_budget()
        a = build_cache_key("What is  CRISPR?", "r", "s", budget, date(2025, 3, 1))
        b = build_cache_key("What is CRISPR?", "r", "s", budget, date(2025, 3, 1))
        assert a == b
        assert a.startswith("answer:")

    def test_models_and_budget_change_the_key(self) -> None:
        budget = init_budget()
        base = build_cache_key("What is CRISPR?", "r", "s", budget, date(2025, 3, 1))
        assert build_cache_key("What is CRISPR?", "r2", "s", budget, date(2025, 3, 1)) != base
        assert build_cache_key("What is CRISPR?", "r", "s", init_budget({"searches": 1}), date(2025, 3, 1)) != base

    def test_only_time_sensitive_keys_roll_daily(self) -> None:
        budget = init_budget()
        evergreen = [build_cache_key("What is CRISPR?", "r", "s", budget, date(2025, 3, d)) for d in (1, 2)]
        latest = [build_cache_key("latest CRISPR news", "r", "s", budget, date(2025, 3, d)) for d in (1, 2)]
        assert evergreen[0] == evergreen[1]
        assert latest[0] != latest[1]

    def test_day_bucket(self) -> None:
        assert day_bucket("latest CRISPR news", date(2025, 3, 1)) == "2025-03-01"
        assert day_bucket("What is CRISPR?", date(2025, 3, 1)) == "evergreen"
