"""
YAML Session Store: chat sessions and messages kept in one YAML document.

Document layout:

    chat_sessions:
      - id: s1
        user_id: u1
        created_at: '2025-01-01T12:00:00+00:00'
        is_active: true
    chat_messages:
      - id: m1
        session_id: s1
        content: hello

Every write loads the file, applies the change and saves it back.
"""

import yaml
from pathlib import Path
from typing import Any, Dict, Iterable, List

from packages.common.session_records import Session, validate_session_row
from packages.reconcile.errors import StoreError
from packages.store.base import SessionStore


class YamlSessionStore(SessionStore):

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self, operation: str = "load") -> Dict[str, List[Dict[str, Any]]]:
        if not self.path.exists():
            raise StoreError(operation, f"store file not found: {self.path}")

        try:
            with open(self.path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise StoreError(operation, str(e)) from e

        if not isinstance(data, dict):
            raise StoreError(operation, "store document must be a mapping")

        for table in ('chat_sessions', 'chat_messages'):
            rows = data.setdefault(table, []) or []
            if not isinstance(rows, list):
                raise StoreError(operation, f"{table} must be a list")
            for i, row in enumerate(rows):
                if not isinstance(row, dict):
                    raise StoreError(operation, f"{table} row {i} must be a mapping")
            data[table] = rows
        return data

    def save(self, data: Dict[str, List[Dict[str, Any]]], operation: str = "save") -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w') as f:
                yaml.dump(data, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            raise StoreError(operation, str(e)) from e

    def fetch_active_sessions(self) -> List[Session]:
        data = self.load("fetch_active_sessions")

        sessions = []
        for row in data['chat_sessions']:
            if not row.get('is_active', True):
                continue
            is_valid, error = validate_session_row(row)
            if not is_valid:
                raise StoreError("fetch_active_sessions", error)
            sessions.append(Session.from_row(row))

        return sorted(sessions, key=lambda s: s.created_at, reverse=True)

    def bulk_set_inactive(self, session_ids: Iterable[str]) -> None:
        ids = set(session_ids)
        data = self.load("bulk_set_inactive")

        for row in data['chat_sessions']:
            if str(row.get('id')) in ids:
                row['is_active'] = False

        self.save(data, "bulk_set_inactive")

    def bulk_delete_messages_by_session(self, session_ids: Iterable[str]) -> int:
        ids = set(session_ids)
        data = self.load("bulk_delete_messages_by_session")

        before = len(data['chat_messages'])
        data['chat_messages'] = [
            row for row in data['chat_messages']
            if str(row.get('session_id')) not in ids
        ]
        self.save(data, "bulk_delete_messages_by_session")
        return before - len(data['chat_messages'])

    def fetch_active_session_user_ids(self) -> List[str]:
        data = self.load("fetch_active_session_user_ids")
        return [
            str(row['user_id'])
            for row in data['chat_sessions']
            if row.get('is_active', True)
        ]
