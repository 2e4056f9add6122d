#!/usr/bin/env python3
"""
Purge expired rows from the research cache.

Opens the SQLite cache at CACHE_DB_PATH (creating tables if missing) and deletes
expired search, page and answer entries. Use --all to empty every namespace.

Run from project root:

    python scripts/purge_cache.py
    python scripts/purge_cache.py --all
"""

import argparse
import sys
from pathlib import Path

# Project root on path so "app" resolves
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from app.core.cache_store import SqliteCacheStore
from app.core.config import CACHE_DB_PATH


def main() -> None:
    parser = argparse.ArgumentParser(description="Purge expired research cache entries.")
    parser.add_argument(
        "--all",
        action="store_true",
        help="Delete every entry, not only expired ones.",
    )
    parser.add_argument("--db", default=CACHE_DB_PATH, help="Cache database path (default: CACHE_DB_PATH).")
    args = parser.parse_args()

    store = SqliteCacheStore(args.db)
    if args.all:
        store.clear_all()
        print(f"Cleared all cache entries in {store.db_path}.")
        return

    removed = store.purge_expired()
    print(f"Done. Removed {removed} expired entries from {store.db_path}.")


if __name__ == "__main__":
    main()
