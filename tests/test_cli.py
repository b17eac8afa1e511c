from __future__ import annotations

import json
from pathlib import Path

from resilient_sync.__main__ import collect_status, main
from resilient_sync.cache import BoundedCache
from resilient_sync.pending import PendingChange, PendingLog
from resilient_sync.sqlite_store import SqliteStore
from resilient_sync.store import JsonFileStore


def seed(path: Path) -> None:
    store = SqliteStore(path)
    log = PendingLog(store, "profile")
    log.append(PendingChange(payload={"a": 1}))
    log.append(PendingChange(payload={"b": 2}))
    BoundedCache(ttl=60_000, max_size=5, store=store).set("plants", [1, 2])
    BoundedCache(ttl=60_000, max_size=5, store=store, key_prefix="cache@garden:").set("beds", 3)
    store.set("cache:broken", "{")


def test_collect_status(tmp_path: Path) -> None:
    path = tmp_path / "state.db"
    seed(path)
    status = collect_status(SqliteStore(path))
    assert status["pending"] == {"profile": 2}
    assert status["cache"]["cache:plants"]["readable"] is True
    assert status["cache"]["cache:plants"]["expired"] is False
    assert status["cache"]["cache:broken"] == {"readable": False}
    assert status["cache"]["cache@garden:beds"]["readable"] is True


def test_status_command_prints_json(tmp_path: Path, capsys) -> None:
    path = tmp_path / "state.db"
    seed(path)
    assert main(["--db", str(path), "status"]) == 0
    output = json.loads(capsys.readouterr().out)
    assert output["pending"] == {"profile": 2}


def test_clear_pending_command(tmp_path: Path, capsys) -> None:
    path = tmp_path / "state.json"
    PendingLog(JsonFileStore(path), "profile").append(PendingChange(payload={"a": 1}))
    assert main(["--db", str(path), "clear-pending", "profile"]) == 0
    assert "cleared 1 pending change(s) for profile" in capsys.readouterr().out
    assert len(PendingLog(JsonFileStore(path), "profile")) == 0


def test_unreadable_store_returns_error(tmp_path: Path, capsys) -> None:
    path = tmp_path / "state.json"
    path.write_text("not json", encoding="utf-8")
    assert main(["--db", str(path), "status"]) == 1
    assert "error:" in capsys.readouterr().err
