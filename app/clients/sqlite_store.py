"""SQLite-backed substitute for the remote key-value service."""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from typing import Callable, Optional


class SQLiteKeyValueStore:
    """
    Local key-value store with per-key expiry.

    Implements the same command semantics as the REST store (``SET NX``,
    ``INCR`` and friends) for development and tests. Each command runs in its
    own transaction, so commands are atomic with respect to each other.
    """

    def __init__(self, db_path: str, *, clock: Callable[[], float] = time.time) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_entries (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL
                )
                """
            )

    def _purge_expired(self, conn: sqlite3.Connection, key: str) -> None:
        conn.execute(
            "DELETE FROM kv_entries WHERE key = ? AND expires_at IS NOT NULL AND expires_at <= ?",
            (key, self._clock()),
        )

    def _expiry(self, ttl_seconds: int | None) -> float | None:
        if ttl_seconds is None:
            return None
        return self._clock() + ttl_seconds

    async def get(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            self._purge_expired(conn, key)
            row = conn.execute(
                "SELECT value FROM kv_entries WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    async def set(
        self,
        key: str,
        value: str,
        *,
        ttl_seconds: int | None = None,
        only_if_absent: bool = False,
    ) -> bool:
        with self._connect() as conn:
            self._purge_expired(conn, key)
            if only_if_absent:
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO kv_entries (key, value, expires_at) VALUES (?, ?, ?)",
                    (key, value, self._expiry(ttl_seconds)),
                )
                return cursor.rowcount == 1
            conn.execute(
                """
                INSERT INTO kv_entries (key, value, expires_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    expires_at = excluded.expires_at
                """,
                (key, value, self._expiry(ttl_seconds)),
            )
        return True

    async def delete(self, key: str) -> bool:
        with self._connect() as conn:
            self._purge_expired(conn, key)
            cursor = conn.execute("DELETE FROM kv_entries WHERE key = ?", (key,))
        return cursor.rowcount > 0

    async def incr(self, key: str) -> int:
        return self._add(key, 1)

    async def decr(self, key: str) -> int:
        return self._add(key, -1)

    def _add(self, key: str, amount: int) -> int:
        with self._connect() as conn:
            self._purge_expired(conn, key)
            conn.execute(
                """
                INSERT INTO kv_entries (key, value, expires_at)
                VALUES (?, ?, NULL)
                ON CONFLICT(key) DO UPDATE SET
                    value = CAST(CAST(kv_entries.value AS INTEGER) + ? AS TEXT)
                """,
                (key, str(amount), amount),
            )
            row = conn.execute(
                "SELECT value FROM kv_entries WHERE key = ?", (key,)
            ).fetchone()
        return int(row["value"])

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        with self._connect() as conn:
            self._purge_expired(conn, key)
            cursor = conn.execute(
                "UPDATE kv_entries SET expires_at = ? WHERE key = ?",
                (self._expiry(ttl_seconds), key),
            )
        return cursor.rowcount == 1

    def raw_keys(self) -> list[str]:
        """List stored keys, including expired ones not yet purged."""
        with self._connect() as conn:
            rows = conn.execute("SELECT key FROM kv_entries ORDER BY key").fetchall()
        return [row["key"] for row in rows]


__all__ = ["SQLiteKeyValueStore"]
