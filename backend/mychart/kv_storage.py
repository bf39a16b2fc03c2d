"""Key/value persistence for store snapshots."""
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union

from .config import Settings

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any) -> None:
        ...


class MemoryKeyValueStore:
    """Keeps JSON-encoded values in a dict; used in tests and mock mode."""

    def __init__(self) -> None:
        self._values: Dict[str, str] = {}

    def get(self, key: str) -> Optional[Any]:
        raw = self._values.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any) -> None:
        self._values[key] = json.dumps(value)


class SqliteKeyValueStore:
    """SQLite-backed store, one JSON document per key."""

    def __init__(self, db_path: Union[str, Path]) -> None:
        self.db_path = str(db_path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.commit()
        conn.close()

    def get(self, key: str) -> Optional[Any]:
        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
        row = cursor.fetchone()
        conn.close()
        if row is None:
            return None
        return json.loads(row["value"])

    def set(self, key: str, value: Any) -> None:
        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute(
            """
            INSERT INTO kv_store (key, value, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            (key, json.dumps(value)),
        )
        conn.commit()
        conn.close()


def open_storage(settings: Settings) -> KeyValueStore:
    """PostgreSQL when DATABASE_URL is configured, SQLite otherwise."""
    if settings.database_url:
        from .kv_storage_pg import PostgresKeyValueStore

        logger.info("Using PostgreSQL key/value storage")
        return PostgresKeyValueStore(settings.database_url)
    logger.info("Using SQLite key/value storage at %s", settings.db_path)
    return SqliteKeyValueStore(settings.db_path)
