"""
persistence/sqlite.py
---------------------
Simple SQLite key-value store.  The engine keeps its linked accounts under a
single fixed key as a JSON list of records.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, List, Optional

ACCOUNTS_KEY = "copy_trading_accounts"

SCHEMA = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS kv (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,      -- raw JSON blob
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""


class SQLitePersistence:
    def __init__(self, db_path: str = "copybot.db"):
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    # ---------------------------- KEY / VALUE ----------------------------- #
    def set(self, key: str, value: Any) -> None:
        self.conn.execute(
            """
            INSERT INTO kv (key, value) VALUES (:key, :value)
            ON CONFLICT(key) DO UPDATE SET
              value = excluded.value,
              updated_at = CURRENT_TIMESTAMP
            """,
            {"key": key, "value": json.dumps(value)},
        )
        self.conn.commit()

    def get(self, key: str, default: Any = None) -> Any:
        row = self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        return json.loads(row["value"])

    def delete(self, key: str) -> None:
        self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        self.conn.commit()

    # ---------------------------- ACCOUNTS -------------------------------- #
    def save_accounts(self, records: List[dict]) -> None:
        self.set(ACCOUNTS_KEY, records)

    def load_accounts(self) -> List[dict]:
        records: Optional[list] = self.get(ACCOUNTS_KEY, [])
        return records if isinstance(records, list) else []

    def close(self) -> None:
        self.conn.close()
