"""
Duplicate Session Classifier

Decide which active chat sessions are duplicates of a more recent sibling.

Rules (applied per user, most recent session first):
1. The most recent session of each user is always kept
2. A session created within DUPLICATE_WINDOW_MINUTES of the next more recent
   session is a duplicate
3. If a user has more than MAX_SESSIONS_PER_USER sessions, every session
   except the most recent is a duplicate, regardless of gaps

Ties on created_at keep the order the store returned them in (stable sort).
There is no secondary key.
"""

from collections import OrderedDict
from typing import Dict, List, Optional, Set

from packages.common.session_records import Session

DUPLICATE_WINDOW_MINUTES = 10
MAX_SESSIONS_PER_USER = 3

REASON_WITHIN_WINDOW = "within_window"
REASON_OVER_CAP = "over_cap"


def group_sessions_by_user(sessions: List[Session]) -> Dict[str, List[Session]]:
    """
    Partition sessions by owning user, each partition newest first.

    Args:
        sessions: Active sessions in store order

    Returns:
        Mapping user_id -> sessions sorted by created_at descending.
        Users appear in order of first occurrence.
    """
    partitions = OrderedDict()
    for session in sessions:
        partitions.setdefault(session.user_id, []).append(session)

    return OrderedDict(
        (user_id, sorted(user_sessions, key=lambda s: s.created_at, reverse=True))
        for user_id, user_sessions in partitions.items()
    )


def minutes_between(newer: Session, older: Session) -> float:
    return (newer.created_at - older.created_at).total_seconds() / 60


def classify_user_group(
    user_sessions: List[Session],
    window_minutes: float = DUPLICATE_WINDOW_MINUTES,
    max_sessions: int = MAX_SESSIONS_PER_USER
) -> List[Dict]:
    """
    Classify one user's sessions.

    Args:
        user_sessions: One partition, sorted newest first
        window_minutes: Gap at or under which a session is a duplicate
        max_sessions: Partition size above which all but the newest retire

    Returns:
        One decision dict per retired session:
            session_id, user_id, gap_minutes, reasons
    """
    decisions = []
    over_cap = len(user_sessions) > max_sessions

    for i in range(1, len(user_sessions)):
        current = user_sessions[i]
        previous = user_sessions[i - 1]
        gap = minutes_between(previous, current)

        reasons = []
        if gap <= window_minutes:
            reasons.append(REASON_WITHIN_WINDOW)
        if over_cap:
            reasons.append(REASON_OVER_CAP)

        if reasons:
            decisions.append({
                'session_id': current.id,
                'user_id': current.user_id,
                'gap_minutes': round(gap, 1),
                'reasons': reasons
            })

    return decisions


def find_duplicate_sessions(
    sessions: List[Session],
    window_minutes: Optional[float] = None,
    max_sessions: Optional[int] = None
) -> Dict[str, List[Dict]]:
    """
    Classify every user's sessions.

    Args:
        sessions: All active sessions
        window_minutes: Override for DUPLICATE_WINDOW_MINUTES
        max_sessions: Override for MAX_SESSIONS_PER_USER

    Returns:
        Mapping user_id -> retirement decisions, for every user (empty list
        when nothing of theirs retires)
    """
    if window_minutes is None:
        window_minutes = DUPLICATE_WINDOW_MINUTES
    if max_sessions is None:
        max_sessions = MAX_SESSIONS_PER_USER

    return OrderedDict(
        (user_id, classify_user_group(user_sessions, window_minutes, max_sessions))
        for user_id, user_sessions in group_sessions_by_user(sessions).items()
    )


def retirement_set(decisions_by_user: Dict[str, List[Dict]]) -> Set[str]:
    """Union of retired session ids across all users."""
    return {
        decision['session_id']
        for decisions in decisions_by_user.values()
        for decision in decisions
    }


def ordered_retirement_ids(decisions_by_user: Dict[str, List[Dict]]) -> List[str]:
    # Same ids as retirement_set, in classification order for reporting and bulk calls
    seen = set()
    ordered = []
    for decisions in decisions_by_user.values():
        for decision in decisions:
            if decision['session_id'] not in seen:
                seen.add(decision['session_id'])
                ordered.append(decision['session_id'])
    return ordered
