"""
Assets: work item snapshots and the repository that produces them.
"""

from .directory import DirectoryAssetRepository, guess_mime_type
from .repository import AssetRepository
from .types import JobKind, MigrationRecord, SelectionCriteria, WorkItem

__all__ = [
    "JobKind",
    "WorkItem",
    "SelectionCriteria",
    "MigrationRecord",
    "AssetRepository",
    "DirectoryAssetRepository",
    "guess_mime_type",
]
