"""
Session records and the TTL-bounded store that keeps them.
"""

from .store import KEY_PREFIX, SessionStore
from .types import (
    ProgressReport,
    Session,
    SessionHandle,
    SessionStatus,
    completion_message,
    new_session_id,
    parse_session_kind,
)

__all__ = [
    "Session",
    "SessionStatus",
    "SessionHandle",
    "ProgressReport",
    "SessionStore",
    "KEY_PREFIX",
    "completion_message",
    "new_session_id",
    "parse_session_kind",
]
