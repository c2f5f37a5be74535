"""
Pending Prune History: Track sessions marked inactive whose messages are not yet deleted.

Once a session is inactive it never shows up in the active scan again, so a
failed message delete would leave its messages orphaned for good. Recording
the ids here lets the next run finish the prune.

File layout:

    pending_sessions:
      - session_id: s1
        marked_inactive_at: '2025-06-01T09:00:00'
"""

import yaml
from pathlib import Path
from datetime import datetime
from typing import Dict, List, Any

from packages.reconcile.errors import LedgerError


def load_prune_history(history_file: Path) -> Dict[str, List[Dict]]:
    """
    Read the pending prune list. A missing or blank file means nothing is pending.

    Raises:
        LedgerError: The file cannot be read, is not YAML, or has the wrong shape
    """
    try:
        text = history_file.read_text() if history_file.exists() else ""
        history = yaml.safe_load(text) if text.strip() else None
    except (OSError, yaml.YAMLError) as e:
        raise LedgerError("load_prune_history", 0, f"{history_file}: {e}") from e

    if history is None:
        return {"pending_sessions": []}

    entries = history.get("pending_sessions") if isinstance(history, dict) else None
    if entries is None and isinstance(history, dict):
        entries = history["pending_sessions"] = []
    if not isinstance(entries, list) or not all(
        isinstance(entry, dict) and "session_id" in entry for entry in entries
    ):
        raise LedgerError(
            "load_prune_history", 0,
            f"{history_file}: expected a pending_sessions list of session_id entries"
        )
    return history


def save_prune_history(history: Dict[str, List[Dict]], history_file: Path) -> None:
    """
    Write the pending prune list, creating parent directories.

    Raises:
        LedgerError: The file cannot be written
    """
    pending = history.get("pending_sessions", [])
    try:
        history_file.parent.mkdir(parents=True, exist_ok=True)
        history_file.write_text(yaml.safe_dump(history, default_flow_style=False, sort_keys=False))
    except OSError as e:
        raise LedgerError("save_prune_history", len(pending), f"{history_file}: {e}") from e


def pending_session_ids(history: Dict[str, List[Dict]]) -> List[str]:
    """Session ids marked inactive in an earlier run and not yet pruned."""
    return [entry["session_id"] for entry in history.get("pending_sessions", [])]


def mark_sessions_pending(history: Dict[str, List[Dict]], session_ids: List[str], marked_at: str = None) -> None:
    """
    Add sessions to the pending prune list (modified in-place).

    Ids already pending are skipped.

    Args:
        history: Prune history dict
        session_ids: Sessions just marked inactive
        marked_at: Optional ISO 8601 timestamp, defaults to now
    """
    if marked_at is None:
        marked_at = datetime.now().isoformat(timespec="seconds")

    already_pending = set(pending_session_ids(history))
    entries = history.setdefault("pending_sessions", [])

    for session_id in session_ids:
        if session_id in already_pending:
            continue
        entries.append({
            "session_id": session_id,
            "marked_inactive_at": marked_at
        })
        already_pending.add(session_id)


def clear_pruned_sessions(history: Dict[str, List[Dict]], session_ids: List[Any]) -> int:
    """
    Drop sessions whose messages are now deleted.

    Returns:
        Number of entries removed
    """
    pruned = set(session_ids)
    entries = history.get("pending_sessions", [])
    remaining = [entry for entry in entries if entry.get("session_id") not in pruned]
    history["pending_sessions"] = remaining
    return len(entries) - len(remaining)
