"""Inspect and repair the durable state held by the sync engine."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from .cache import CacheEntry, wall_clock_ms
from .const import CACHE_KEY_PREFIX, NAMED_CACHE_KEY_PREFIX, PENDING_CHANGES_SUFFIX
from .errors import StorageError
from .pending import PendingLog
from .store import DurableStore, open_store

_LOGGER = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="resilient_sync", description="Inspect resilient sync state")
    parser.add_argument("--db", type=Path, default=Path(".resilient_sync.db"), help="SQLite or JSON store path")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="Show pending changes and cache entries")
    clear = sub.add_parser("clear-pending", help="Drop the pending change log of a resource")
    clear.add_argument("resource", help="Resource key")
    return parser.parse_args(argv)


def collect_status(store: DurableStore) -> dict[str, Any]:
    pending: dict[str, int] = {}
    for storage_key in store.keys():
        if storage_key.endswith(PENDING_CHANGES_SUFFIX):
            resource = storage_key[: -len(PENDING_CHANGES_SUFFIX)]
            pending[resource] = len(PendingLog(store, resource))

    now = wall_clock_ms()
    cache: dict[str, dict[str, Any]] = {}
    for storage_key in store.keys(CACHE_KEY_PREFIX) + store.keys(NAMED_CACHE_KEY_PREFIX):
        raw = store.get(storage_key)
        if raw is None:
            continue
        try:
            entry = CacheEntry.from_dict(json.loads(raw))
        except (KeyError, TypeError, ValueError):
            cache[storage_key] = {"readable": False}
            continue
        cache[storage_key] = {
            "readable": True,
            "expired": entry.expired(now),
            "expires_in_ms": max(int(entry.expires_at - now), 0),
        }
    return {"pending": pending, "cache": cache}


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.WARNING))
    try:
        store = open_store(args.db)
        try:
            if args.command == "status":
                json.dump(collect_status(store), sys.stdout, indent=2, sort_keys=True)
                sys.stdout.write("\n")
            elif args.command == "clear-pending":
                log = PendingLog(store, args.resource)
                dropped = len(log)
                log.clear()
                _LOGGER.info("Cleared %d pending change(s) for %s", dropped, args.resource)
                print(f"cleared {dropped} pending change(s) for {args.resource}")
        finally:
            store.close()
    except StorageError as err:
        print(f"error: {err}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
