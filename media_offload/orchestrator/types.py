"""
Per-item and per-tick results of the batch processor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..assets.types import JobKind
from ..clients.types import OptimizationResult, Optimized

VALIDATION_FAILURE_PREFIX = "validation failed at execution time"


class OutcomeState(Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ItemOutcome:
    """What happened to one work item during a tick.

    Skipped items (the optimizer judged the image already optimal) count as
    successful.
    """

    asset_id: str
    state: OutcomeState
    action: str = ""
    error: str | None = None
    remote_url: str | None = None
    remote_path: str | None = None
    variant_urls: dict[str, str] = field(default_factory=dict)
    optimization: OptimizationResult | None = None
    size_bytes: int = 0
    display_name: str | None = None

    @property
    def counts_as_success(self) -> bool:
        return self.state is not OutcomeState.FAILED

    @property
    def bytes_saved(self) -> int:
        if isinstance(self.optimization, Optimized):
            return self.optimization.bytes_saved
        return 0

    @classmethod
    def failure(
        cls,
        asset_id: str,
        error: str,
        size_bytes: int = 0,
        display_name: str | None = None,
    ) -> ItemOutcome:
        return cls(
            asset_id=asset_id,
            state=OutcomeState.FAILED,
            action="Failed",
            error=error,
            size_bytes=size_bytes,
            display_name=display_name,
        )

    @classmethod
    def validation_failure(cls, asset_id: str, reason: str, display_name: str | None = None) -> ItemOutcome:
        return cls.failure(asset_id, f"{VALIDATION_FAILURE_PREFIX}: {reason}", display_name=display_name)

    def error_line(self) -> str:
        """Entry for the session error log."""
        return f"{self.display_name or self.asset_id}: {self.error}"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "asset_id": self.asset_id,
            "name": self.display_name or self.asset_id,
            "state": self.state.value,
            "action": self.action,
        }
        if self.error:
            data["error"] = self.error
        if self.remote_url:
            data["remote_url"] = self.remote_url
        if self.optimization is not None:
            data["optimization"] = self.optimization.to_dict()
        if self.size_bytes:
            data["size_bytes"] = self.size_bytes
        return data


@dataclass
class TickResult:
    """Summary of one Batch Processor invocation."""

    session_id: str
    kind: JobKind
    outcomes: list[ItemOutcome] = field(default_factory=list)
    completed: bool = False
    cancelled: bool = False
    committed: bool = False

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def successful(self) -> int:
        return sum(1 for o in self.outcomes if o.counts_as_success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.counts_as_success)

    @property
    def errors(self) -> list[str]:
        return [o.error_line() for o in self.outcomes if not o.counts_as_success]
