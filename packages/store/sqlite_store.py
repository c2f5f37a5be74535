"""
SQLite Session Store: chat_sessions / chat_messages tables.

Schema mirrors the chat application's backing store:

    chat_sessions(id TEXT PRIMARY KEY, user_id TEXT, created_at TEXT, is_active INTEGER)
    chat_messages(id TEXT PRIMARY KEY, session_id TEXT, role TEXT, content TEXT, created_at TEXT)

Bulk updates run in one transaction each.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, List

from packages.common.session_records import Session
from packages.reconcile.errors import StoreError
from packages.store.base import SessionStore

SCHEMA = """
CREATE TABLE IF NOT EXISTS chat_sessions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1
);
CREATE TABLE IF NOT EXISTS chat_messages (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    role TEXT,
    content TEXT,
    created_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_chat_sessions_active ON chat_sessions(is_active, created_at);
CREATE INDEX IF NOT EXISTS idx_chat_messages_session ON chat_messages(session_id);
"""


class SqliteSessionStore(SessionStore):

    def __init__(self, path: Path):
        self.path = Path(path)

    @contextmanager
    def _transaction(self, operation: str, create: bool = False):
        # sqlite3.connect creates a missing file; only create_schema may do that
        if not create and not self.path.exists():
            raise StoreError(operation, f"database not found: {self.path}")

        try:
            conn = sqlite3.connect(str(self.path))
        except sqlite3.Error as e:
            raise StoreError(operation, str(e)) from e

        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise StoreError(operation, str(e)) from e
        finally:
            conn.close()

    def create_schema(self) -> None:
        with self._transaction("create_schema", create=True) as conn:
            conn.executescript(SCHEMA)

    def insert_session(self, session: Session) -> None:
        with self._transaction("insert_session") as conn:
            conn.execute(
                "INSERT INTO chat_sessions (id, user_id, created_at, is_active) VALUES (?, ?, ?, ?)",
                (session.id, session.user_id, session.created_at.isoformat(), int(session.is_active)),
            )

    def insert_message(self, message_id: str, session_id: str, content: str = "", role: str = "user") -> None:
        with self._transaction("insert_message") as conn:
            conn.execute(
                "INSERT INTO chat_messages (id, session_id, role, content) VALUES (?, ?, ?, ?)",
                (message_id, session_id, role, content),
            )

    def count_messages(self, session_id: str) -> int:
        with self._transaction("count_messages") as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM chat_messages WHERE session_id = ?", (session_id,)
            ).fetchone()
        return row[0]

    def fetch_active_sessions(self) -> List[Session]:
        with self._transaction("fetch_active_sessions") as conn:
            rows = conn.execute(
                "SELECT id, user_id, created_at, is_active FROM chat_sessions "
                "WHERE is_active = 1 ORDER BY created_at DESC"
            ).fetchall()

        try:
            sessions = [Session.from_row(dict(row)) for row in rows]
        except ValueError as e:
            raise StoreError("fetch_active_sessions", str(e)) from e

        # created_at is text; re-sort on parsed values so mixed offsets order correctly
        return sorted(sessions, key=lambda s: s.created_at, reverse=True)

    def bulk_set_inactive(self, session_ids: Iterable[str]) -> None:
        ids = list(session_ids)
        if not ids:
            return
        placeholders = ",".join("?" for _ in ids)
        with self._transaction("bulk_set_inactive") as conn:
            conn.execute(
                f"UPDATE chat_sessions SET is_active = 0 WHERE id IN ({placeholders})", ids
            )

    def bulk_delete_messages_by_session(self, session_ids: Iterable[str]) -> int:
        ids = list(session_ids)
        if not ids:
            return 0
        placeholders = ",".join("?" for _ in ids)
        with self._transaction("bulk_delete_messages_by_session") as conn:
            cursor = conn.execute(
                f"DELETE FROM chat_messages WHERE session_id IN ({placeholders})", ids
            )
        return cursor.rowcount

    def fetch_active_session_user_ids(self) -> List[str]:
        with self._transaction("fetch_active_session_user_ids") as conn:
            rows = conn.execute("SELECT user_id FROM chat_sessions WHERE is_active = 1").fetchall()
        return [row['user_id'] for row in rows]
