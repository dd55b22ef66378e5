"""SQLite storage backend for hook results."""

from __future__ import annotations

import json
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any


class SQLiteHookStore:
    """Append-only SQLite log of data returned by hooks."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS hook_data (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  hook_name TEXT NOT NULL,
                  event TEXT NOT NULL,
                  stored_at TEXT NOT NULL,
                  payload_json TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_hook_data_name_event ON hook_data(hook_name, event);
                """
            )

    def store_hook_data(self, hook_name: str, event: str, data: Any) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO hook_data (hook_name, event, stored_at, payload_json)
                VALUES (?, ?, ?, ?)
                """,
                (hook_name, event, datetime.now(UTC).isoformat(), json.dumps(data, default=str)),
            )
            return int(cursor.lastrowid)

    def get_hook_history(self, hook_name: str, event: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        query = "SELECT id, hook_name, event, stored_at, payload_json FROM hook_data WHERE hook_name = ?"
        params: list[Any] = [hook_name]
        if event is not None:
            query += " AND event = ?"
            params.append(event)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        history = []
        for row in rows:
            item = dict(row)
            item["data"] = json.loads(item.pop("payload_json"))
            history.append(item)
        return history
