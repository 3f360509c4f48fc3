from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

import structlog

from fleet_probe.errors import StorageWriteError


logger = structlog.get_logger(__name__)


class ResultStore(Protocol):
    def ensure_schema(self) -> None: ...

    def insert(self, host: str, observed_at: datetime, latency_ms: int, status_code: int) -> None: ...


def _connect(path: str) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise ValueError("Missing db_path")
    if p != ":memory:":
        Path(p).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(p, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout = 5000;")
    return conn


class SqliteResultStore:
    """
    Result sink backed by a SQLite file.

    Every insert opens its own connection and commits or rolls back only that
    record, so one failed write leaves later writes unaffected.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)

    def ensure_schema(self) -> None:
        conn = _connect(self.db_path)
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS results (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  host TEXT NOT NULL,
                  timestamp TEXT NOT NULL,
                  response_time INTEGER NOT NULL,
                  status_code INTEGER NOT NULL
                );
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_results_host_ts ON results(host, timestamp);")
            conn.commit()
        finally:
            conn.close()

    def insert(self, host: str, observed_at: datetime, latency_ms: int, status_code: int) -> None:
        try:
            conn = _connect(self.db_path)
        except (sqlite3.Error, OSError, ValueError) as e:
            raise StorageWriteError(f"cannot open result store: {e}", host=host) from e
        try:
            conn.execute(
                "INSERT INTO results (host, timestamp, response_time, status_code) VALUES (?, ?, ?, ?)",
                (host, observed_at.isoformat(), int(latency_ms), int(status_code)),
            )
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageWriteError(f"{type(e).__name__}: {e}", host=host) from e
        finally:
            conn.close()
        logger.debug("Result written", host=host)

    def fetch_all(self) -> list[dict[str, Any]]:
        conn = _connect(self.db_path)
        try:
            rows = conn.execute(
                "SELECT host, timestamp, response_time, status_code FROM results ORDER BY id"
            ).fetchall()
        finally:
            conn.close()
        return [dict(r) for r in rows]
