"""
Asset types shared by the repository, the eligibility filter, and the
orchestrator.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class JobKind(Enum):
    """The two pipelines a session can drive."""

    MIGRATION = "migration"
    OPTIMIZATION = "optimization"


@dataclass(frozen=True)
class WorkItem:
    """A reference to one local asset plus the facts eligibility depends on.

    Work items are snapshots: repositories build them from a fresh ``stat()``
    and nothing in the orchestrator mutates them.
    """

    asset_id: str
    local_path: Path
    size_bytes: int
    mime_type: str | None
    exists: bool = True
    readable: bool = True
    is_remote: bool = False
    remote_url: str | None = None
    last_optimized_at: float | None = None
    title: str | None = None
    source_url: str | None = None
    variants: tuple[Path, ...] = ()
    in_queue: bool = False

    @property
    def display_name(self) -> str:
        return self.title or self.local_path.name or self.asset_id


@dataclass
class SelectionCriteria:
    """Caller-supplied narrowing of the candidate set for a new session."""

    mime_types: tuple[str, ...] | None = None
    path_prefix: str | None = None
    limit: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.mime_types is not None:
            data["mime_types"] = list(self.mime_types)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SelectionCriteria:
        if not data:
            return cls()
        mime_types = data.get("mime_types")
        return cls(
            mime_types=tuple(mime_types) if mime_types is not None else None,
            path_prefix=data.get("path_prefix"),
            limit=data.get("limit"),
        )


@dataclass
class MigrationRecord:
    """Remote-tracking record written when an asset is offloaded."""

    asset_id: str
    remote_url: str
    remote_path: str
    size_bytes: int = 0
    mime_type: str | None = None
    migrated_at: float = 0.0
    variant_urls: dict[str, str] = field(default_factory=dict)
