"""
Session Records

Row contract between the chat store and the reconciler. The reconciler only
depends on these fields; everything else on a row is carried through
untouched in `extra`.

Required session fields:
    - id (string): Unique session identifier
    - user_id (string): Owning user
    - created_at (string, ISO8601 or datetime): Creation timestamp

Optional session fields:
    - is_active (bool): Defaults to True

Required message fields:
    - id (string)
    - session_id (string): Owning session
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple, Union

from dateutil import parser as date_parser

REQUIRED_SESSION_FIELDS = ['id', 'user_id', 'created_at']
REQUIRED_MESSAGE_FIELDS = ['id', 'session_id']


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    """
    Parse a creation timestamp into an aware datetime.

    Naive values are read as UTC so rows from different writers compare.

    Args:
        value: ISO 8601 string or datetime

    Returns:
        Timezone-aware datetime

    Raises:
        ValueError: If the value is not a timestamp
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = date_parser.isoparse(value)
    else:
        raise ValueError(f"Unsupported timestamp type: {type(value).__name__}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    return value.isoformat()


@dataclass
class Session:
    id: str
    user_id: str
    created_at: datetime
    is_active: bool = True
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Session":
        """Build a Session from a store row (validated first)."""
        is_valid, error = validate_session_row(row)
        if not is_valid:
            raise ValueError(error)

        extra = {k: v for k, v in row.items() if k not in ('id', 'user_id', 'created_at', 'is_active')}
        return cls(
            id=str(row['id']),
            user_id=str(row['user_id']),
            created_at=parse_timestamp(row['created_at']),
            is_active=bool(row.get('is_active', True)),
            extra=extra,
        )

    def to_row(self) -> Dict[str, Any]:
        row = dict(self.extra)
        row.update({
            'id': self.id,
            'user_id': self.user_id,
            'created_at': format_timestamp(self.created_at),
            'is_active': self.is_active,
        })
        return row


@dataclass
class Message:
    id: str
    session_id: str
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Message":
        for field_name in REQUIRED_MESSAGE_FIELDS:
            if field_name not in row:
                raise ValueError(f"Message missing required field: {field_name}")
        extra = {k: v for k, v in row.items() if k not in REQUIRED_MESSAGE_FIELDS}
        return cls(id=str(row['id']), session_id=str(row['session_id']), extra=extra)


def validate_session_row(row: Any) -> Tuple[bool, str]:
    """
    Validate a session row against the minimal contract.

    Args:
        row: Row as returned by the store

    Returns:
        tuple: (is_valid, error) - error is "" when the row is valid

    Examples:
        >>> validate_session_row({"id": "s1", "user_id": "u1", "created_at": "2025-01-01T00:00:00Z"})
        (True, '')
        >>> validate_session_row({"id": "s1", "user_id": "u1"})
        (False, 'Session missing required field: created_at')
    """
    if not isinstance(row, dict):
        return False, "Session row must be a dict"

    for field_name in REQUIRED_SESSION_FIELDS:
        if field_name not in row or row[field_name] in (None, ""):
            return False, f"Session missing required field: {field_name}"

    try:
        parse_timestamp(row['created_at'])
    except (ValueError, OverflowError) as e:
        return False, f"Session {row['id']} has invalid created_at: {e}"

    return True, ""


def sessions_from_rows(rows: List[Dict[str, Any]]) -> List[Session]:
    return [Session.from_row(row) for row in rows]
