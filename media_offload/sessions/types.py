"""
Session types.

A Session is one bounded, trackable execution of a migration or optimization
job. Its item list is frozen at creation; ``processed`` is a cursor into it.

Session IDs: {prefix}_{epoch seconds}_{8 hex chars}, where prefix is
``migration`` or ``opt``.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..assets.types import JobKind
from ..utils import progress_percentage

SESSION_ID_PREFIXES = {
    JobKind.MIGRATION: "migration",
    JobKind.OPTIMIZATION: "opt",
}


def new_session_id(kind: JobKind, now: float) -> str:
    """Generate a session ID for a job kind."""
    return f"{SESSION_ID_PREFIXES[kind]}_{int(now)}_{secrets.token_hex(4)}"


def parse_session_kind(session_id: str) -> JobKind:
    """Extract the job kind from a session ID.

    Raises ValueError on malformed input.
    """
    prefix = session_id.split("_", 1)[0]
    for kind, known in SESSION_ID_PREFIXES.items():
        if prefix == known:
            return kind
    raise ValueError(f"Malformed session ID: {session_id}")


class SessionStatus(Enum):
    """Session lifecycle states. COMPLETED and CANCELLED are terminal."""

    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.RUNNING


@dataclass
class Session:
    """Persisted state of one batch job."""

    session_id: str
    kind: JobKind
    status: SessionStatus
    total: int
    items: list[str]
    started_at: float
    processed: int = 0
    successful: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    criteria: dict[str, Any] = field(default_factory=dict)
    updated_at: float | None = None
    completed_at: float | None = None
    last_tick: list[dict[str, Any]] = field(default_factory=list)

    @property
    def remaining(self) -> list[str]:
        return self.items[self.processed :]

    @property
    def is_exhausted(self) -> bool:
        return self.processed >= len(self.items)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "total": self.total,
            "items": list(self.items),
            "started_at": self.started_at,
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "errors": list(self.errors),
            "criteria": dict(self.criteria),
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
            "last_tick": list(self.last_tick),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        return cls(
            session_id=data["session_id"],
            kind=JobKind(data["kind"]),
            status=SessionStatus(data["status"]),
            total=int(data["total"]),
            items=list(data.get("items", [])),
            started_at=float(data["started_at"]),
            processed=int(data.get("processed", 0)),
            successful=int(data.get("successful", 0)),
            failed=int(data.get("failed", 0)),
            errors=list(data.get("errors", [])),
            criteria=dict(data.get("criteria") or {}),
            updated_at=data.get("updated_at"),
            completed_at=data.get("completed_at"),
            last_tick=list(data.get("last_tick") or []),
        )


@dataclass
class SessionHandle:
    """Returned by ``start``: what a caller needs to begin polling."""

    session_id: str
    kind: JobKind
    total: int
    batch_size: int
    concurrency_limit: int
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "kind": self.kind.value,
            "total": self.total,
            "batch_size": self.batch_size,
            "concurrency_limit": self.concurrency_limit,
            "message": self.message,
        }


@dataclass
class ProgressReport:
    """Read-only projection of a Session for front ends."""

    session_id: str
    kind: JobKind
    status: SessionStatus
    processed: int
    total: int
    percent: float
    successful: int
    failed: int
    errors: list[str]
    completed: bool
    recent: list[dict[str, Any]] = field(default_factory=list)
    message: str = ""

    @classmethod
    def from_session(cls, session: Session) -> ProgressReport:
        return cls(
            session_id=session.session_id,
            kind=session.kind,
            status=session.status,
            processed=session.processed,
            total=session.total,
            percent=progress_percentage(session.processed, session.total),
            successful=session.successful,
            failed=session.failed,
            errors=list(session.errors),
            completed=session.status is SessionStatus.COMPLETED,
            recent=list(session.last_tick),
            message=completion_message(session),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "processed": self.processed,
            "total": self.total,
            "percent": self.percent,
            "successful": self.successful,
            "failed": self.failed,
            "errors": list(self.errors),
            "completed": self.completed,
            "recent": list(self.recent),
            "message": self.message,
        }


def completion_message(session: Session) -> str:
    """Human summary for a session; empty while it is still running."""
    label = "Migration" if session.kind is JobKind.MIGRATION else "Optimization"
    if session.status is SessionStatus.COMPLETED:
        return (
            f"{label} completed. {session.processed} files processed, "
            f"{session.successful} successful, {session.failed} failed."
        )
    if session.status is SessionStatus.CANCELLED:
        return f"{label} cancelled after {session.processed} of {session.total} files."
    return ""
