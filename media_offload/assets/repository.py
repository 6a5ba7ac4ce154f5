"""
Asset repository contract.

The orchestrator never touches the asset catalog directly: it asks the
repository for candidates and fresh snapshots, and tells it when an asset has
been migrated or optimized.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from .types import JobKind, MigrationRecord, SelectionCriteria, WorkItem

if TYPE_CHECKING:
    from ..clients.types import Optimized


class AssetRepository(ABC):
    """Abstract source of work items and sink for processing results."""

    @abstractmethod
    async def list_candidates(
        self,
        kind: JobKind,
        mime_types: tuple[str, ...],
        criteria: SelectionCriteria | None = None,
    ) -> list[WorkItem]:
        """
        List assets that may be processed by a job of the given kind.

        Results must come back in a deterministic order; that order becomes
        the processing order of the session.

        Args:
            kind: Pipeline the candidates are for
            mime_types: Mime types the pipeline supports
            criteria: Optional narrowing supplied by the caller

        Returns:
            Fresh work item snapshots (not yet eligibility-filtered)
        """
        pass

    @abstractmethod
    async def get(self, asset_id: str) -> WorkItem | None:
        """
        Get a fresh snapshot of one asset.

        Returns:
            The work item, or None if the asset no longer exists in the catalog
        """
        pass

    @abstractmethod
    async def mark_migrated(self, record: MigrationRecord) -> None:
        """Record that an asset now has a remote counterpart."""
        pass

    @abstractmethod
    async def mark_optimized(self, asset_id: str, result: Optimized | None, optimized_at: float) -> None:
        """
        Record an optimization attempt that the service accepted.

        Args:
            asset_id: Asset that was processed
            result: Compression details, or None when the service skipped it
            optimized_at: Epoch seconds, starts the re-optimization cooldown
        """
        pass

    @abstractmethod
    async def remove_local_copy(self, asset_id: str) -> int:
        """
        Delete the local file of an offloaded asset and its variants.

        Returns:
            Number of files removed
        """
        pass

    @abstractmethod
    async def migration_records(self) -> list[MigrationRecord]:
        """Remote-tracking records of every offloaded asset, in asset id order."""
        pass

    async def get_migration(self, asset_id: str) -> MigrationRecord | None:
        for record in await self.migration_records():
            if record.asset_id == asset_id:
                return record
        return None

    @abstractmethod
    async def clear_migration(self, asset_id: str) -> None:
        """
        Forget an asset's remote counterpart after it was restored locally.

        Optimization history is kept.
        """
        pass
