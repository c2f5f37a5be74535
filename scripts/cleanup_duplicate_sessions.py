#!/usr/bin/env python3
"""
Duplicate Chat Session Cleanup

Retire duplicate chat sessions: keep each user's most recent session, mark
the rest inactive when they were created within 10 minutes of a newer
session or when the user has more than 3 active sessions, then delete the
messages of every retired session.

Examples:
    python scripts/cleanup_duplicate_sessions.py --store data/chat_store.sqlite
    python scripts/cleanup_duplicate_sessions.py --store data/chat_store.yaml --dry-run
    python scripts/cleanup_duplicate_sessions.py --prune-history ledger/_meta/prune_history.yaml \\
        --report logs/session_cleanup.yaml

Environment (read from .env.local when present):
    SESSION_STORE_PATH      Default for --store
    SESSION_PRUNE_HISTORY   Default for --prune-history

Exit codes:
    0 = Completed (including nothing to retire)
    1 = A fetch, update or delete against the store, or a prune history read/write, failed
"""

import argparse
import os
import sys
import yaml
from pathlib import Path
from datetime import datetime
from typing import Any, Dict

from dotenv import load_dotenv

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from packages.reconcile.classifier import DUPLICATE_WINDOW_MINUTES, MAX_SESSIONS_PER_USER
from packages.reconcile.errors import DeleteError, ReconcileError, describe_error
from packages.reconcile.retirement import RetirementState
from packages.reconcile.reconciler import run_reconciliation
from packages.store.base import open_store

REPO_ROOT = Path(__file__).resolve().parents[1]
ENV_FILE = REPO_ROOT / ".env.local"
DEFAULT_STORE = REPO_ROOT / "data" / "chat_store.sqlite"


def load_settings(env_file: Path = ENV_FILE) -> Dict[str, Any]:
    """Read store and prune history paths from the environment (.env.local first)."""
    if env_file.exists():
        load_dotenv(env_file)

    prune_history = os.getenv('SESSION_PRUNE_HISTORY')
    return {
        'store_path': Path(os.getenv('SESSION_STORE_PATH', DEFAULT_STORE)),
        'prune_history': Path(prune_history) if prune_history else None
    }


def generate_report(report_data: Dict[str, Any], output_path: Path) -> None:
    """Write the run report as YAML."""
    output_path.parent.mkdir(parents=True, exist_ok=True)

    report = {
        'session_cleanup': {
            'date': report_data['date'],
            'dry_run': report_data['dry_run'],
            'active_sessions': report_data['active_sessions'],
            'users': report_data['users'],
            'recovered_sessions': report_data['recovered_sessions'],
            'retired_sessions': [
                {
                    'session_id': d['session_id'],
                    'user_id': d['user_id'],
                    'gap_minutes': d['gap_minutes'],
                    'reasons': d['reasons']
                }
                for decisions in report_data['decisions'].values()
                for d in decisions
            ],
            'state': report_data['state'],
            'messages_deleted': report_data['messages_deleted'],
            'summary': report_data['summary']
        }
    }

    with open(output_path, 'w') as f:
        yaml.dump(report, f, default_flow_style=False, sort_keys=False)
    print(f"\nReport generated: {output_path}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Retire duplicate chat sessions and their messages')
    parser.add_argument('--store', type=str, help='Session store path (.yaml/.yml for YAML, otherwise SQLite)')
    parser.add_argument('--dry-run', action='store_true', help='Show what would be retired without writing')
    parser.add_argument('--prune-history', type=str,
                        help='YAML file tracking retired sessions whose messages are not yet deleted')
    parser.add_argument('--report', type=str, help='Write a YAML report of the run to this path')
    parser.add_argument('--window-minutes', type=float, default=DUPLICATE_WINDOW_MINUTES,
                        help=f'Duplicate window in minutes (default: {DUPLICATE_WINDOW_MINUTES})')
    parser.add_argument('--max-sessions', type=int, default=MAX_SESSIONS_PER_USER,
                        help=f'Active sessions allowed per user (default: {MAX_SESSIONS_PER_USER})')
    return parser


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    settings = load_settings()

    store_path = Path(args.store) if args.store else settings['store_path']
    prune_history = Path(args.prune_history) if args.prune_history else settings['prune_history']

    print("="*60)
    print("DUPLICATE SESSION CLEANUP")
    print("="*60)
    print(f"Date: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"Store: {store_path}")
    if args.dry_run:
        print("Mode: DRY RUN (no changes will be written)")
    print("="*60)

    store = open_store(store_path)

    try:
        report_data = run_reconciliation(
            store,
            dry_run=args.dry_run,
            prune_history_file=prune_history,
            window_minutes=args.window_minutes,
            max_sessions=args.max_sessions
        )
    except ReconcileError as e:
        print(f"\n✗ ERROR: {e}", file=sys.stderr)
        consequence = describe_error(e)
        if consequence:
            print(f"  {consequence}", file=sys.stderr)
        recorded = isinstance(e, DeleteError) and prune_history is not None
        marked = e.outcome is not None and e.outcome.state == RetirementState.MARKED_INACTIVE
        if marked and not recorded:
            # Inactive sessions are not rescanned, so these ids are the only record
            print(f"  Sessions with orphaned messages: {', '.join(e.outcome.session_ids)}", file=sys.stderr)
        return 1

    if args.report:
        generate_report(report_data, Path(args.report))

    print("\n✓ Session cleanup complete")
    return 0


if __name__ == '__main__':
    sys.exit(main())
