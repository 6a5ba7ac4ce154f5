"""
Durable optimization queue types.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class QueuePriority(Enum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort key: lower is claimed first."""
        return _PRIORITY_RANKS[self]


_PRIORITY_RANKS = {
    QueuePriority.HIGH: 0,
    QueuePriority.NORMAL: 1,
    QueuePriority.LOW: 2,
}


class QueueStatus(Enum):
    """Entry lifecycle: pending -> processing -> completed | failed | skipped."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_active(self) -> bool:
        return self in (QueueStatus.PENDING, QueueStatus.PROCESSING)


@dataclass
class QueueEntry:
    """One asset queued for background optimization. Never reused."""

    entry_id: int
    asset_id: str
    priority: QueuePriority
    status: QueueStatus
    created_at: float
    updated_at: float
    claimed_at: float | None = None
    completed_at: float | None = None
    worker_id: str | None = None
    error_message: str | None = None

    @classmethod
    def from_row(cls, row: Any) -> QueueEntry:
        return cls(
            entry_id=int(row["id"]),
            asset_id=row["asset_id"],
            priority=QueuePriority(row["priority"]),
            status=QueueStatus(row["status"]),
            created_at=float(row["created_at"]),
            updated_at=float(row["updated_at"]),
            claimed_at=row["claimed_at"],
            completed_at=row["completed_at"],
            worker_id=row["worker_id"],
            error_message=row["error_message"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.entry_id,
            "asset_id": self.asset_id,
            "priority": self.priority.value,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "claimed_at": self.claimed_at,
            "completed_at": self.completed_at,
            "worker_id": self.worker_id,
            "error_message": self.error_message,
        }
