"""
Session Reconciler: find duplicate chat sessions and retire them.

Run order (strictly sequential, no retries):
1. Finish pending prunes from an earlier run (only with a prune history file)
2. Fetch active sessions
3. Classify duplicates per user
4. Mark duplicates inactive, then delete their messages
5. Re-read active sessions for the closing summary

Two runs against the same store at the same time can pick overlapping sets;
nothing here guards against that.
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from packages.common.session_records import Session
from packages.reconcile.classifier import (
    find_duplicate_sessions,
    group_sessions_by_user,
    ordered_retirement_ids,
)
from packages.reconcile.errors import FetchError, LedgerError, StoreError
from packages.reconcile.prune_history import (
    clear_pruned_sessions,
    load_prune_history,
    mark_sessions_pending,
    pending_session_ids,
    save_prune_history,
)
from packages.reconcile.retirement import (
    RetirementOutcome,
    RetirementState,
    prune_messages,
    retire_sessions,
)
from packages.store.base import SessionStore


def fetch_sessions(store: SessionStore) -> List[Session]:
    """Read active sessions, translating store failures into FetchError."""
    try:
        return store.fetch_active_sessions()
    except StoreError as e:
        raise FetchError("fetch_active_sessions", 0, str(e)) from e


def summarize_active_sessions(store: SessionStore) -> Dict[str, int]:
    """
    Count active sessions and the distinct users owning them.

    Returns:
        {'active_sessions': int, 'users': int}
    """
    try:
        user_ids = store.fetch_active_session_user_ids()
    except StoreError as e:
        raise FetchError("fetch_active_session_user_ids", 0, str(e)) from e

    return {
        'active_sessions': len(user_ids),
        'users': len(set(user_ids))
    }


def recover_pending_prunes(store: SessionStore, history_file: Path) -> List[str]:
    """
    Delete messages of sessions an earlier run marked inactive but never pruned.

    Args:
        store: Session store
        history_file: Pending prune history YAML

    Returns:
        Session ids whose messages were deleted

    Raises:
        DeleteError: The delete failed; the history is left as it was
        LedgerError: The history could not be read or written
    """
    history = load_prune_history(history_file)
    session_ids = pending_session_ids(history)
    if not session_ids:
        return []

    print(f"♻️  Finishing message cleanup for {len(session_ids)} previously retired sessions")
    pending = RetirementOutcome(state=RetirementState.MARKED_INACTIVE, session_ids=session_ids)
    pruned = prune_messages(store, pending)

    clear_pruned_sessions(history, pruned.session_ids)
    save_prune_history(history, history_file)
    print(f"  ✓ Deleted {pruned.messages_deleted} orphaned messages")
    return session_ids


def run_reconciliation(
    store: SessionStore,
    dry_run: bool = False,
    prune_history_file: Optional[Path] = None,
    window_minutes: Optional[float] = None,
    max_sessions: Optional[int] = None
) -> Dict[str, Any]:
    """
    Run one full reconciliation pass.

    Args:
        store: Session store
        dry_run: Classify and report only, issue no writes
        prune_history_file: Optional YAML file tracking sessions marked
            inactive whose messages are not yet deleted. Without it,
            messages orphaned by a failed delete are not revisited.
        window_minutes: Override for DUPLICATE_WINDOW_MINUTES
        max_sessions: Override for MAX_SESSIONS_PER_USER

    Returns:
        Report dict: date, dry_run, recovered_sessions, active_sessions,
        users, decisions, retired_session_ids, state, messages_deleted,
        summary

    Raises:
        FetchError, UpdateError, DeleteError, LedgerError
    """
    report = {
        'date': datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        'dry_run': dry_run,
        'recovered_sessions': [],
        'active_sessions': 0,
        'users': 0,
        'decisions': {},
        'retired_session_ids': [],
        'state': RetirementState.NOTHING_TO_DO.value,
        'messages_deleted': 0,
        'summary': None
    }

    if prune_history_file is not None and not dry_run:
        report['recovered_sessions'] = recover_pending_prunes(store, prune_history_file)

    print("🧹 Starting cleanup of duplicate sessions...")
    sessions = fetch_sessions(store)
    print(f"📊 Found {len(sessions)} total active sessions")

    decisions_by_user = find_duplicate_sessions(sessions, window_minutes, max_sessions)
    report['active_sessions'] = len(sessions)
    report['users'] = len(decisions_by_user)
    report['decisions'] = {user_id: d for user_id, d in decisions_by_user.items() if d}

    user_groups = group_sessions_by_user(sessions)
    for user_id, decisions in decisions_by_user.items():
        print(f"👤 User {user_id}: {len(user_groups[user_id])} sessions")
        for decision in decisions:
            print(
                f"🗑️  Marking duplicate session {decision['session_id']} of user {user_id} "
                f"({decision['gap_minutes']:.1f} min before the next session; "
                f"{', '.join(decision['reasons'])})"
            )

    retired_ids = ordered_retirement_ids(decisions_by_user)
    report['retired_session_ids'] = retired_ids

    if not retired_ids:
        print("✅ No duplicate sessions found!")
        return report

    print(f"🔍 Found {len(retired_ids)} duplicate sessions to clean up")

    if dry_run:
        print("Mode: DRY RUN (no changes written)")
        return report

    def record_pending(marked: RetirementOutcome) -> None:
        report['state'] = marked.state.value
        print(f"  ✓ Marked {len(marked.session_ids)} sessions inactive")
        if prune_history_file is not None:
            try:
                history = load_prune_history(prune_history_file)
                mark_sessions_pending(history, marked.session_ids)
                save_prune_history(history, prune_history_file)
            except LedgerError as e:
                # Messages are not deleted for ids that could not be recorded
                e.outcome = marked
                raise

    outcome = retire_sessions(store, retired_ids, on_marked=record_pending)
    report['state'] = outcome.state.value
    report['messages_deleted'] = outcome.messages_deleted

    if prune_history_file is not None:
        try:
            history = load_prune_history(prune_history_file)
            clear_pruned_sessions(history, outcome.session_ids)
            save_prune_history(history, prune_history_file)
        except LedgerError as e:
            # Pruned ids left pending are deleted again (a no-op) next run
            e.outcome = outcome
            raise

    print(
        f"✅ Successfully cleaned up {len(retired_ids)} duplicate sessions "
        f"and {outcome.messages_deleted} messages"
    )

    report['summary'] = summarize_active_sessions(store)
    print(
        f"📈 Final stats: {report['summary']['active_sessions']} active sessions "
        f"for {report['summary']['users']} users"
    )
    return report
