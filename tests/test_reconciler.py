"""
End-to-end tests for the session reconciler against a YAML store.
"""

import pytest
import sys
import yaml
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from packages.reconcile.errors import DeleteError, FetchError, LedgerError, StoreError, UpdateError
from packages.reconcile.prune_history import load_prune_history, pending_session_ids
from packages.reconcile.reconciler import (
    recover_pending_prunes,
    run_reconciliation,
    summarize_active_sessions
)
from packages.reconcile.retirement import RetirementState
from packages.store.yaml_store import YamlSessionStore


class FlakyStore(YamlSessionStore):
    """YAML store that fails one operation while `fail_on` is set."""

    def __init__(self, path, fail_on=None):
        super().__init__(path)
        self.fail_on = fail_on

    def _maybe_fail(self, operation):
        if self.fail_on == operation:
            raise StoreError(operation, 'store unavailable')

    def fetch_active_sessions(self):
        self._maybe_fail('fetch_active_sessions')
        return super().fetch_active_sessions()

    def bulk_set_inactive(self, session_ids):
        self._maybe_fail('bulk_set_inactive')
        super().bulk_set_inactive(session_ids)

    def bulk_delete_messages_by_session(self, session_ids):
        self._maybe_fail('bulk_delete_messages_by_session')
        return super().bulk_delete_messages_by_session(session_ids)

    def fetch_active_session_user_ids(self):
        self._maybe_fail('fetch_active_session_user_ids')
        return super().fetch_active_session_user_ids()


def session(session_id, user_id, minute):
    return {
        'id': session_id,
        'user_id': user_id,
        'created_at': f"2025-06-01T09:{minute:02d}:00+00:00",
        'is_active': True
    }


@pytest.fixture
def store_path(tmp_path):
    """
    U: 4 sessions at 0,5,12,14 (over cap) -> retire u12, u5, u0
    V: 2 sessions 20 minutes apart        -> keep both
    W: 1 session                          -> keep
    X: 2 sessions 3 minutes apart         -> retire x0
    """
    path = tmp_path / "chat_store.yaml"
    data = {
        'chat_sessions': [
            session('u14', 'U', 14), session('u12', 'U', 12), session('u5', 'U', 5), session('u0', 'U', 0),
            session('v20', 'V', 20), session('v0', 'V', 0),
            session('w0', 'W', 0),
            session('x3', 'X', 3), session('x0', 'X', 0),
        ],
        'chat_messages': [
            {'id': f"m-{sid}-{n}", 'session_id': sid}
            for sid in ('u14', 'u12', 'u5', 'u0', 'v20', 'v0', 'w0', 'x3', 'x0')
            for n in range(2)
        ]
    }
    with open(path, 'w') as f:
        yaml.dump(data, f, sort_keys=False)
    return path


def load_store(path):
    with open(path, 'r') as f:
        return yaml.safe_load(f)


def messages_for(path, session_id):
    return [m for m in load_store(path)['chat_messages'] if m['session_id'] == session_id]


def test_full_run_retires_duplicates(store_path):
    report = run_reconciliation(YamlSessionStore(store_path))

    assert set(report['retired_session_ids']) == {'u12', 'u5', 'u0', 'x0'}
    assert report['state'] == 'MessagesPruned'
    assert report['messages_deleted'] == 8
    assert report['active_sessions'] == 9
    assert report['users'] == 4
    assert report['summary'] == {'active_sessions': 5, 'users': 4}
    assert set(report['decisions'].keys()) == {'U', 'X'}

    data = load_store(store_path)
    flags = {s['id']: s['is_active'] for s in data['chat_sessions']}
    for retired in ('u12', 'u5', 'u0', 'x0'):
        assert flags[retired] is False
        assert messages_for(store_path, retired) == []
    for kept in ('u14', 'v20', 'v0', 'w0', 'x3'):
        assert flags[kept] is True
        assert len(messages_for(store_path, kept)) == 2


def test_second_run_retires_nothing(store_path):
    run_reconciliation(YamlSessionStore(store_path))

    report = run_reconciliation(YamlSessionStore(store_path))

    assert report['retired_session_ids'] == []
    assert report['state'] == 'NothingToDo'
    assert report['summary'] is None


def test_dry_run_writes_nothing(store_path):
    before = store_path.read_text()

    report = run_reconciliation(YamlSessionStore(store_path), dry_run=True)

    assert set(report['retired_session_ids']) == {'u12', 'u5', 'u0', 'x0'}
    assert report['state'] == 'NothingToDo'
    assert store_path.read_text() == before


def test_fetch_failure_aborts_before_classification(store_path):
    before = store_path.read_text()

    with pytest.raises(FetchError) as exc_info:
        run_reconciliation(FlakyStore(store_path, fail_on='fetch_active_sessions'))

    assert exc_info.value.operation == 'fetch_active_sessions'
    assert store_path.read_text() == before


def test_update_failure_leaves_store_unchanged(store_path):
    before = store_path.read_text()

    with pytest.raises(UpdateError) as exc_info:
        run_reconciliation(FlakyStore(store_path, fail_on='bulk_set_inactive'))

    assert exc_info.value.session_count == 4
    assert store_path.read_text() == before


def test_delete_failure_without_history_orphans_messages(store_path):
    """Default behaviour: a second run does not revisit the orphaned messages."""
    with pytest.raises(DeleteError) as exc_info:
        run_reconciliation(FlakyStore(store_path, fail_on='bulk_delete_messages_by_session'))

    assert exc_info.value.outcome.state.value == 'MarkedInactive'
    assert len(messages_for(store_path, 'u0')) == 2

    report = run_reconciliation(YamlSessionStore(store_path))

    assert report['retired_session_ids'] == []
    assert len(messages_for(store_path, 'u0')) == 2


def test_delete_failure_with_history_is_finished_next_run(store_path, tmp_path):
    history_file = tmp_path / "_meta" / "prune_history.yaml"

    with pytest.raises(DeleteError):
        run_reconciliation(
            FlakyStore(store_path, fail_on='bulk_delete_messages_by_session'),
            prune_history_file=history_file
        )

    pending = pending_session_ids(load_prune_history(history_file))
    assert set(pending) == {'u12', 'u5', 'u0', 'x0'}

    report = run_reconciliation(YamlSessionStore(store_path), prune_history_file=history_file)

    assert set(report['recovered_sessions']) == {'u12', 'u5', 'u0', 'x0'}
    assert report['retired_session_ids'] == []
    assert pending_session_ids(load_prune_history(history_file)) == []
    for retired in ('u12', 'u5', 'u0', 'x0'):
        assert messages_for(store_path, retired) == []


def test_successful_run_with_history_leaves_nothing_pending(store_path, tmp_path):
    history_file = tmp_path / "prune_history.yaml"

    run_reconciliation(YamlSessionStore(store_path), prune_history_file=history_file)

    assert pending_session_ids(load_prune_history(history_file)) == []


def test_recover_pending_prunes_without_history_file(store_path, tmp_path):
    assert recover_pending_prunes(YamlSessionStore(store_path), tmp_path / "none.yaml") == []


def test_summary_failure_reported_as_fetch_error(store_path):
    with pytest.raises(FetchError) as exc_info:
        run_reconciliation(FlakyStore(store_path, fail_on='fetch_active_session_user_ids'))

    assert exc_info.value.operation == 'fetch_active_session_user_ids'
    # Retirement itself was applied
    assert messages_for(store_path, 'x0') == []


def test_summarize_active_sessions(store_path):
    assert summarize_active_sessions(YamlSessionStore(store_path)) == {'active_sessions': 9, 'users': 4}


def test_policy_overrides_passed_through(store_path):
    report = run_reconciliation(YamlSessionStore(store_path), dry_run=True, window_minutes=1, max_sessions=10)

    assert report['retired_session_ids'] == []


def test_progress_output(store_path, capsys):
    run_reconciliation(YamlSessionStore(store_path))

    out = capsys.readouterr().out
    assert "Found 9 total active sessions" in out
    assert "Marking duplicate session x0 of user X" in out
    assert "Final stats: 5 active sessions for 4 users" in out


def test_corrupt_prune_history_fails_before_any_write(store_path, tmp_path):
    history_file = tmp_path / "prune_history.yaml"
    history_file.write_text("pending_sessions: [unclosed\n")
    before = store_path.read_text()

    with pytest.raises(LedgerError) as exc_info:
        run_reconciliation(YamlSessionStore(store_path), prune_history_file=history_file)

    assert exc_info.value.operation == 'load_prune_history'
    assert exc_info.value.outcome is None
    assert store_path.read_text() == before


def test_unwritable_prune_history_after_marking_carries_outcome(store_path, tmp_path):
    """Sessions are already inactive; their messages are neither deleted nor recorded."""
    blocker = tmp_path / "blocker"
    blocker.write_text("")

    with pytest.raises(LedgerError) as exc_info:
        run_reconciliation(YamlSessionStore(store_path), prune_history_file=blocker / "prune_history.yaml")

    outcome = exc_info.value.outcome
    assert exc_info.value.operation == 'save_prune_history'
    assert outcome.state == RetirementState.MARKED_INACTIVE
    assert set(outcome.session_ids) == {'u12', 'u5', 'u0', 'x0'}
    flags = {s['id']: s['is_active'] for s in load_store(store_path)['chat_sessions']}
    assert flags['x0'] is False
    assert len(messages_for(store_path, 'x0')) == 2


def test_progress_lists_each_user(store_path, capsys):
    run_reconciliation(YamlSessionStore(store_path), dry_run=True)

    out = capsys.readouterr().out
    assert "👤 User U: 4 sessions" in out
    assert "👤 User W: 1 sessions" in out
    assert out.index("👤 User U") < out.index("Marking duplicate session u12")
