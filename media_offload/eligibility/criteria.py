"""
Eligibility rules for migration and optimization.

Single source of truth for "should this asset be touched": session start,
execution-time re-validation, the background queue worker, and diagnostics
all ask the same filter, so they can never disagree.

The filter is pure. It judges the facts on the WorkItem it is given and does
no I/O of its own; callers are responsible for handing it a fresh snapshot.
"""

from __future__ import annotations

import time
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

from ..assets.types import JobKind, WorkItem
from ..config import CriteriaConfig
from ..utils import format_file_size

MIGRATION_MIME_TYPES: tuple[str, ...] = (
    "image/svg+xml",
    "image/webp",
    "image/avif",
)

OPTIMIZATION_MIME_TYPES: tuple[str, ...] = (
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/avif",
    "image/heic",
    "image/tiff",
)


class IneligibleReason(Enum):
    """Reason codes reported for ineligible assets."""

    FILE_MISSING = "file_missing"
    EMPTY_FILE = "empty_file"
    UNREADABLE = "unreadable"
    UNSUPPORTED_MIME_TYPE = "unsupported_mime_type"
    TOO_LARGE = "too_large"
    BELOW_THRESHOLD = "below_threshold"
    ALREADY_MIGRATED = "already_migrated"
    REMOTE_ASSET = "remote_asset"
    RECENTLY_OPTIMIZED = "recently_optimized"
    ALREADY_QUEUED = "already_queued"


@dataclass(frozen=True)
class EligibilityVerdict:
    """Outcome of one eligibility check."""

    eligible: bool
    reason: IneligibleReason | None = None
    detail: str = ""

    def describe(self) -> str:
        if self.eligible:
            return "eligible"
        code = self.reason.value if self.reason is not None else "ineligible"
        return f"{code}: {self.detail}" if self.detail else code


ELIGIBLE = EligibilityVerdict(True)


def _reject(reason: IneligibleReason, detail: str = "") -> EligibilityVerdict:
    return EligibilityVerdict(False, reason, detail)


class EligibilityFilter:
    """
    Decides whether an asset should be migrated or optimized now.

    Migration: supported mime type, ``0 < size <= max_file_size``, file
    present and readable, no remote counterpart yet.

    Optimization: supported raster type, ``floor < size <= ceiling``, local
    (not offloaded), outside the re-optimization cooldown, and not already
    waiting in the background queue.
    """

    def __init__(
        self,
        config: CriteriaConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or CriteriaConfig()
        self._clock = clock

    @property
    def migration_mime_types(self) -> tuple[str, ...]:
        return MIGRATION_MIME_TYPES

    @property
    def optimization_mime_types(self) -> tuple[str, ...]:
        return OPTIMIZATION_MIME_TYPES

    def mime_types_for(self, kind: JobKind) -> tuple[str, ...]:
        return MIGRATION_MIME_TYPES if kind is JobKind.MIGRATION else OPTIMIZATION_MIME_TYPES

    def _check_file(self, item: WorkItem) -> EligibilityVerdict | None:
        # Missing and empty files are rejected before any other rule
        if not item.exists:
            return _reject(IneligibleReason.FILE_MISSING, str(item.local_path))
        if item.size_bytes <= 0:
            return _reject(IneligibleReason.EMPTY_FILE, str(item.local_path))
        return None

    def check_migration(self, item: WorkItem) -> EligibilityVerdict:
        """Explain whether an item may be migrated."""
        rejected = self._check_file(item)
        if rejected is not None:
            return rejected
        if item.mime_type not in MIGRATION_MIME_TYPES:
            return _reject(IneligibleReason.UNSUPPORTED_MIME_TYPE, str(item.mime_type))
        limit = self.config.max_file_size_bytes
        if item.size_bytes > limit:
            return _reject(
                IneligibleReason.TOO_LARGE,
                f"{format_file_size(item.size_bytes)} exceeds {format_file_size(limit)}",
            )
        if not item.readable:
            return _reject(IneligibleReason.UNREADABLE, str(item.local_path))
        if item.is_remote:
            return _reject(IneligibleReason.ALREADY_MIGRATED, item.remote_url or "")
        return ELIGIBLE

    def check_optimization(self, item: WorkItem) -> EligibilityVerdict:
        """Explain whether an item may be optimized."""
        rejected = self._check_file(item)
        if rejected is not None:
            return rejected
        if item.mime_type not in OPTIMIZATION_MIME_TYPES:
            return _reject(IneligibleReason.UNSUPPORTED_MIME_TYPE, str(item.mime_type))
        floor = self.config.max_file_size_bytes
        if item.size_bytes <= floor:
            return _reject(
                IneligibleReason.BELOW_THRESHOLD,
                f"{format_file_size(item.size_bytes)} is not above {format_file_size(floor)}",
            )
        ceiling = self.config.optimization_ceiling_bytes
        if item.size_bytes > ceiling:
            return _reject(
                IneligibleReason.TOO_LARGE,
                f"{format_file_size(item.size_bytes)} exceeds {format_file_size(ceiling)}",
            )
        if not item.readable:
            return _reject(IneligibleReason.UNREADABLE, str(item.local_path))
        if item.is_remote:
            return _reject(IneligibleReason.REMOTE_ASSET, item.remote_url or "")
        if item.last_optimized_at is not None:
            elapsed = self._clock() - item.last_optimized_at
            if elapsed < self.config.cooldown_seconds:
                return _reject(
                    IneligibleReason.RECENTLY_OPTIMIZED,
                    f"optimized {int(elapsed)}s ago",
                )
        if item.in_queue:
            return _reject(IneligibleReason.ALREADY_QUEUED)
        return ELIGIBLE

    def check(self, kind: JobKind, item: WorkItem) -> EligibilityVerdict:
        if kind is JobKind.MIGRATION:
            return self.check_migration(item)
        return self.check_optimization(item)

    def is_migration_eligible(self, item: WorkItem) -> bool:
        return self.check_migration(item).eligible

    def is_optimization_eligible(self, item: WorkItem) -> bool:
        return self.check_optimization(item).eligible

    def diagnose(self, kind: JobKind, items: Iterable[WorkItem]) -> dict[str, int]:
        """
        Tally eligibility outcomes across a set of items.

        Returns:
            Mapping of ``"eligible"`` and each reason code to a count
        """
        tally: Counter[str] = Counter()
        for item in items:
            verdict = self.check(kind, item)
            tally["eligible" if verdict.eligible else verdict.reason.value] += 1  # type: ignore[union-attr]
        return dict(tally)
