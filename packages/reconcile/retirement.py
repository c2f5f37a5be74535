"""
Retirement Executor: apply a retirement set in two steps.

1. Mark sessions inactive        -> MarkedInactive
2. Delete their messages         -> MessagesPruned

There is no rollback. If step 2 fails the sessions stay inactive with their
messages in place; the DeleteError carries an outcome in MarkedInactive so
callers can record the ids for a later prune.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from packages.reconcile.errors import DeleteError, StoreError, UpdateError
from packages.store.base import SessionStore


class RetirementState(Enum):
    NOTHING_TO_DO = "NothingToDo"
    MARKED_INACTIVE = "MarkedInactive"
    MESSAGES_PRUNED = "MessagesPruned"


@dataclass
class RetirementOutcome:
    state: RetirementState
    session_ids: List[str] = field(default_factory=list)
    messages_deleted: Optional[int] = None

    @property
    def fully_applied(self) -> bool:
        return self.state in (RetirementState.NOTHING_TO_DO, RetirementState.MESSAGES_PRUNED)


def mark_inactive(store: SessionStore, session_ids: List[str]) -> RetirementOutcome:
    """
    Step 1: flip is_active to false for every session in the set.

    Raises:
        UpdateError: The store rejected the update; nothing was changed
    """
    try:
        store.bulk_set_inactive(session_ids)
    except StoreError as e:
        raise UpdateError("bulk_set_inactive", len(session_ids), str(e)) from e

    return RetirementOutcome(state=RetirementState.MARKED_INACTIVE, session_ids=list(session_ids))


def prune_messages(store: SessionStore, outcome: RetirementOutcome) -> RetirementOutcome:
    """
    Step 2: delete messages of sessions already marked inactive.

    Raises:
        DeleteError: The store rejected the delete; flags stay committed
    """
    if outcome.state != RetirementState.MARKED_INACTIVE:
        raise ValueError(f"Cannot prune messages from state {outcome.state.value}")

    try:
        deleted = store.bulk_delete_messages_by_session(outcome.session_ids)
    except StoreError as e:
        raise DeleteError(
            "bulk_delete_messages_by_session", len(outcome.session_ids), str(e), outcome=outcome
        ) from e

    return RetirementOutcome(
        state=RetirementState.MESSAGES_PRUNED,
        session_ids=outcome.session_ids,
        messages_deleted=deleted,
    )


def retire_sessions(
    store: SessionStore,
    session_ids: List[str],
    on_marked: Optional[Callable[[RetirementOutcome], None]] = None
) -> RetirementOutcome:
    """
    Retire sessions: mark inactive, then delete their messages.

    Args:
        store: Session store
        session_ids: Retirement set (no duplicates)
        on_marked: Called with the MarkedInactive outcome before messages
            are deleted

    Returns:
        RetirementOutcome in NothingToDo (empty set, no writes issued) or
        MessagesPruned

    Raises:
        UpdateError: Step 1 failed
        DeleteError: Step 2 failed, error.outcome is in MarkedInactive
    """
    if not session_ids:
        return RetirementOutcome(state=RetirementState.NOTHING_TO_DO)

    marked = mark_inactive(store, session_ids)
    if on_marked is not None:
        on_marked(marked)
    return prune_messages(store, marked)
