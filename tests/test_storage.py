from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import pytest

from fleet_probe.errors import StorageWriteError
from fleet_probe.storage import SqliteResultStore


TS = datetime(2024, 1, 2, 7, 0, 0, tzinfo=timezone.utc)


def test_ensure_schema_is_idempotent_and_insert_roundtrips(tmp_path: Path) -> None:
    store = SqliteResultStore(tmp_path / "nested" / "results.db")
    store.ensure_schema()
    store.ensure_schema()

    store.insert("a.example.com", TS, 50, 200)
    store.insert("b.example.com", TS, 180000, 0)

    rows = store.fetch_all()
    assert rows == [
        {"host": "a.example.com", "timestamp": TS.isoformat(), "response_time": 50, "status_code": 200},
        {"host": "b.example.com", "timestamp": TS.isoformat(), "response_time": 180000, "status_code": 0},
    ]


def test_failed_insert_is_rolled_back_and_does_not_affect_later_writes(tmp_path: Path) -> None:
    db_path = tmp_path / "results.db"
    store = SqliteResultStore(db_path)
    store.ensure_schema()
    store.insert("a.example.com", TS, 10, 200)

    conn = sqlite3.connect(db_path)
    conn.execute("DROP TABLE results")
    conn.commit()
    conn.close()

    with pytest.raises(StorageWriteError) as excinfo:
        store.insert("b.example.com", TS, 20, 200)
    assert excinfo.value.host == "b.example.com"

    store.ensure_schema()
    store.insert("c.example.com", TS, 30, 503)
    assert [r["host"] for r in store.fetch_all()] == ["c.example.com"]


def test_insert_into_unopenable_path_raises_storage_error(tmp_path: Path) -> None:
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x", encoding="utf-8")
    store = SqliteResultStore(blocker / "results.db")
    with pytest.raises(StorageWriteError):
        store.insert("a.example.com", TS, 10, 200)
