# src/chronos_tasks/storage/local_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any

from ..core.errors import LocalStoreError

logger = logging.getLogger(__name__)

LOCAL_STORAGE_VERSION = 2

KEY_TODOS = "chronos_todos_v2"
KEY_PREFERENCES = "chronos_preferences_v2"
KEY_TAGS = "chronos_tags_v1"
KEY_FILTERS = "chronos_filters"
KEY_DISPLAY_CONFIG = "chronos_display_config"
KEY_LISTS = "chronos_lists_v1"
KEY_LAST_SYNC = "chronos_last_sync"


class LocalStore:
    """
    SQLite key/value store for the local-first snapshot.

    Values are JSON documents under string keys. The schema is migration-safe
    (create table if missing, add missing columns via PRAGMA table_info).

    Errors:
    - sqlite / encoding failures raise LocalStoreError
    - a stored value that is not valid JSON is treated as missing (logged)

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "chronos.sqlite3") -> None:
        self._db_path = Path(db_path)
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._ensure_schema()
        except (OSError, sqlite3.Error) as e:
            raise LocalStoreError(f"cannot open local store at {self._db_path}: {e}") from e
        logger.info("LocalStore ready db=%s keys=%s", self._db_path, len(self.keys()))

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Shutdown hook (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at REAL NOT NULL DEFAULT 0
                )
                """
            )

            cur.execute("PRAGMA table_info(kv)")
            cols = {row["name"] for row in cur.fetchall()}
            if "updated_at" not in cols:
                cur.execute("ALTER TABLE kv ADD COLUMN updated_at REAL NOT NULL DEFAULT 0")
                logger.info("LocalStore migration: added column updated_at")

            conn.commit()
        finally:
            conn.close()

    # ---- generic key/value ----

    def load(self, key: str, default: Any = None) -> Any:
        try:
            conn = self._get_conn()
            try:
                row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise LocalStoreError(f"load {key} failed: {e}") from e

        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except ValueError:
            logger.warning("Corrupt JSON under key=%s; using default", key)
            return default

    def save(self, key: str, value: Any) -> None:
        try:
            payload = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise LocalStoreError(f"cannot encode value for {key}: {e}") from e

        try:
            conn = self._get_conn()
            try:
                conn.execute(
                    """
                    INSERT INTO kv(key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                    """,
                    (key, payload, time.time()),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise LocalStoreError(f"save {key} failed: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            conn = self._get_conn()
            try:
                cur = conn.execute("DELETE FROM kv WHERE key = ?", (key,))
                conn.commit()
                return cur.rowcount > 0
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise LocalStoreError(f"delete {key} failed: {e}") from e

    def keys(self) -> list[str]:
        try:
            conn = self._get_conn()
            try:
                rows = conn.execute("SELECT key FROM kv ORDER BY key").fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise LocalStoreError(f"list keys failed: {e}") from e
        return [str(r["key"]) for r in rows]

    # ---- task snapshot ----

    def load_tasks(self) -> list[dict[str, Any]]:
        """
        Persisted task records.

        Accepts the versioned blob {"version": N, "tasks": [...]} and a bare list
        (pre-versioning). Non-dict entries are skipped.
        """
        raw = self.load(KEY_TODOS)
        if raw is None:
            return []

        if isinstance(raw, dict):
            version = raw.get("version")
            if version != LOCAL_STORAGE_VERSION:
                logger.info("Loading task snapshot version=%s (current=%s)", version, LOCAL_STORAGE_VERSION)
            records = raw.get("tasks")
        else:
            records = raw

        if not isinstance(records, list):
            logger.warning("Task snapshot has unexpected shape; ignoring")
            return []
        return [r for r in records if isinstance(r, dict)]

    def save_tasks(self, records: list[dict[str, Any]]) -> None:
        self.save(KEY_TODOS, {"version": LOCAL_STORAGE_VERSION, "tasks": records})

    def load_last_sync(self) -> float:
        raw = self.load(KEY_LAST_SYNC, 0)
        return float(raw) if isinstance(raw, (int, float)) and not isinstance(raw, bool) else 0.0

    def save_last_sync(self, ts: float) -> None:
        self.save(KEY_LAST_SYNC, ts)
