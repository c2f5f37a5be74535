"""Errors raised by the session reconciler and its stores."""

from typing import Optional


class StoreError(RuntimeError):
    """Raised by a store when a read or write against the backing store fails."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation}: {message}")


class ReconcileError(RuntimeError):
    """Base class for fatal reconciliation errors."""

    def __init__(self, operation: str, session_count: int, message: str, outcome=None):
        self.operation = operation
        self.session_count = session_count
        self.outcome = outcome
        super().__init__(f"{operation} failed ({session_count} sessions): {message}")


class FetchError(ReconcileError):
    """Reading sessions failed. Nothing was written."""


class UpdateError(ReconcileError):
    """Marking sessions inactive failed. Nothing was written, messages untouched."""


class DeleteError(ReconcileError):
    """
    Deleting messages failed after sessions were marked inactive.

    The flags stay committed; `outcome` is the RetirementOutcome in state
    MarkedInactive.
    """


class LedgerError(ReconcileError):
    """
    Reading or writing the pending prune history failed.

    When raised after sessions were marked inactive, `outcome` is the
    RetirementOutcome in MarkedInactive and their messages were not deleted.
    """


def describe_error(error: ReconcileError) -> Optional[str]:
    if isinstance(error, DeleteError):
        return "sessions were marked inactive but their messages remain"
    if isinstance(error, UpdateError):
        return "store unchanged"
    if isinstance(error, FetchError):
        if error.operation == "fetch_active_session_user_ids":
            return "retirement was applied but the summary could not be read"
        return "no sessions were classified"
    if isinstance(error, LedgerError):
        if error.outcome is not None and error.outcome.state.value == "MarkedInactive":
            return "sessions were marked inactive but their messages were not deleted or recorded"
        return "prune history could not be read or written"
    return None


__all__ = [
    "StoreError",
    "ReconcileError",
    "FetchError",
    "UpdateError",
    "DeleteError",
    "LedgerError",
    "describe_error",
]
