from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from graph_alert_collector.core.errors import PersistenceError
from graph_alert_collector.utils.time import utc_now_iso

DEFAULT_KEY = "microsoft-graph-security-alerts"


class SQLiteWatermarkStore:
    """SQLite-backed watermark store; one row per collector key."""

    def __init__(self, path: str, key: str = DEFAULT_KEY):
        self.path = path
        self.key = key
        self._ensure_parent_dir(path)
        self._ensure_schema()

    def load(self) -> Optional[str]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT timestamp FROM watermarks WHERE key = ?",
                (self.key,),
            ).fetchone()
        if not row or not row["timestamp"]:
            return None
        return str(row["timestamp"])

    def save(self, timestamp: str) -> None:
        now = utc_now_iso()
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO watermarks (key, timestamp, updated_at_utc)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    timestamp = excluded.timestamp,
                    updated_at_utc = excluded.updated_at_utc
                """,
                (self.key, timestamp, now),
            )

    def _ensure_schema(self) -> None:
        with self._session() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS watermarks (
                    key TEXT PRIMARY KEY,
                    timestamp TEXT NOT NULL,
                    updated_at_utc TEXT NOT NULL
                )
                """
            )

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _session(self):
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise PersistenceError(f"unable to open state database {self.path}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"state database error in {self.path}: {e}") from e
        finally:
            conn.close()

    def _ensure_parent_dir(self, path: str) -> None:
        parent = Path(path).parent
        if str(parent) not in {"", "."}:
            parent.mkdir(parents=True, exist_ok=True)
