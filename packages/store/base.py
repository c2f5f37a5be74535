"""
Session Store Interface

The reconciler talks to the chat backing store only through these four
operations. Implementations raise StoreError when the backing store fails.
"""

from pathlib import Path
from typing import Iterable, List

from packages.common.session_records import Session


class SessionStore:
    """Query/update interface over chat sessions and their messages."""

    def fetch_active_sessions(self) -> List[Session]:
        """Active sessions, newest first."""
        raise NotImplementedError

    def bulk_set_inactive(self, session_ids: Iterable[str]) -> None:
        raise NotImplementedError

    def bulk_delete_messages_by_session(self, session_ids: Iterable[str]) -> int:
        """Delete every message owned by one of the sessions. Returns the count deleted."""
        raise NotImplementedError

    def fetch_active_session_user_ids(self) -> List[str]:
        """user_id of every active session (one entry per session)."""
        raise NotImplementedError


def open_store(path):
    """Pick a store implementation from the file extension (.yaml/.yml, else SQLite)."""
    path = Path(path)
    if path.suffix.lower() in ('.yaml', '.yml'):
        from packages.store.yaml_store import YamlSessionStore
        return YamlSessionStore(path)

    from packages.store.sqlite_store import SqliteSessionStore
    return SqliteSessionStore(path)
