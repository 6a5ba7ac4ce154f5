"""
Directory-backed asset repository.

Treats every file under a media root as an asset and keeps remote-tracking and
optimization records in a JSON manifest next to it:

    {
        "version": 1,
        "assets": {
            "2024/05/logo.svg": {
                "remote_url": "https://zone.b-cdn.net/2024/05/logo.svg?v=3fa",
                "remote_path": "2024/05/logo.svg",
                "migrated_at": 1715000000.0,
                "variant_urls": {...},
                "last_optimized_at": 1715000000.0,
                "optimization": {...}
            }
        }
    }

Thumbnail variants follow the ``{stem}-{width}x{height}{suffix}`` naming
convention and are attached to their original instead of being listed as
assets of their own.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..storage.file_ops import read_json, remove_file, write_json_atomic
from .repository import AssetRepository
from .types import JobKind, MigrationRecord, SelectionCriteria, WorkItem

if TYPE_CHECKING:
    from ..clients.types import Optimized

logger = logging.getLogger(__name__)

MANIFEST_VERSION = 1
DEFAULT_MANIFEST_NAME = ".media-offload.json"

_VARIANT_PATTERN = re.compile(r"^(?P<stem>.+)-(?P<width>\d+)x(?P<height>\d+)$")

_MIGRATION_FIELDS = ("remote_url", "remote_path", "size_bytes", "mime_type", "migrated_at", "variant_urls")

# Types missing from older mime registries
for _mime, _ext in (
    ("image/avif", ".avif"),
    ("image/heic", ".heic"),
    ("image/webp", ".webp"),
    ("image/svg+xml", ".svg"),
):
    mimetypes.add_type(_mime, _ext)


def guess_mime_type(path: Path) -> str | None:
    mime, _ = mimetypes.guess_type(path.name)
    return mime


class DirectoryAssetRepository(AssetRepository):
    """
    Asset repository over a plain media directory.

    Asset ids are POSIX paths relative to the root, which doubles as the
    remote path on upload.
    """

    def __init__(
        self,
        root: Path | str,
        manifest_path: Path | str | None = None,
        public_base_url: str | None = None,
    ) -> None:
        """
        Args:
            root: Media directory to scan
            manifest_path: Where remote-tracking records live (default: inside root)
            public_base_url: Base URL the optimizer can fetch local assets from
        """
        self.root = Path(root)
        self.manifest_path = Path(manifest_path) if manifest_path else self.root / DEFAULT_MANIFEST_NAME
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Manifest
    # -------------------------------------------------------------------------

    async def _load_manifest(self) -> dict[str, Any]:
        document = await read_json(self.manifest_path)
        if not document:
            return {"version": MANIFEST_VERSION, "assets": {}}
        document.setdefault("assets", {})
        return document

    async def _update_record(self, asset_id: str, changes: dict[str, Any]) -> None:
        async with self._lock:
            manifest = await self._load_manifest()
            record = manifest["assets"].setdefault(asset_id, {})
            record.update(changes)
            await write_json_atomic(self.manifest_path, manifest)

    async def records(self) -> dict[str, dict[str, Any]]:
        """All remote-tracking records keyed by asset id."""
        manifest = await self._load_manifest()
        return manifest["assets"]

    # -------------------------------------------------------------------------
    # Scanning
    # -------------------------------------------------------------------------

    def _scan(self) -> tuple[list[Path], dict[Path, list[Path]]]:
        """Walk the root and split files into originals and thumbnail variants."""
        files: list[Path] = []
        if self.root.is_dir():
            for dirpath, dirnames, filenames in os.walk(self.root):
                dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
                for name in sorted(filenames):
                    if name.startswith("."):
                        continue
                    files.append(Path(dirpath) / name)

        present = set(files)
        originals: list[Path] = []
        variants: dict[Path, list[Path]] = {}
        for path in files:
            match = _VARIANT_PATTERN.match(path.stem)
            if match:
                parent = path.with_name(f"{match.group('stem')}{path.suffix}")
                if parent in present:
                    variants.setdefault(parent, []).append(path)
                    continue
            originals.append(path)
        return originals, variants

    def _asset_id(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def _build_item(self, path: Path, variants: list[Path], record: dict[str, Any] | None) -> WorkItem:
        asset_id = self._asset_id(path)
        record = record or {}
        try:
            size = path.stat().st_size
            exists = True
        except FileNotFoundError:
            size = 0
            exists = False
        return WorkItem(
            asset_id=asset_id,
            local_path=path,
            size_bytes=size,
            mime_type=guess_mime_type(path),
            exists=exists,
            readable=exists and os.access(path, os.R_OK),
            is_remote=bool(record.get("remote_url")),
            remote_url=record.get("remote_url"),
            last_optimized_at=record.get("last_optimized_at"),
            title=path.stem,
            source_url=f"{self.public_base_url}/{asset_id}" if self.public_base_url else None,
            variants=tuple(variants),
        )

    # -------------------------------------------------------------------------
    # AssetRepository
    # -------------------------------------------------------------------------

    async def list_candidates(
        self,
        kind: JobKind,
        mime_types: tuple[str, ...],
        criteria: SelectionCriteria | None = None,
    ) -> list[WorkItem]:
        criteria = criteria or SelectionCriteria()
        wanted = set(criteria.mime_types or mime_types)

        originals, variants = await asyncio.to_thread(self._scan)
        records = await self.records()

        items = []
        for path in originals:
            if guess_mime_type(path) not in wanted:
                continue
            asset_id = self._asset_id(path)
            if criteria.path_prefix and not asset_id.startswith(criteria.path_prefix):
                continue
            # Migration candidates are local-only; remote ones are still listed
            # for optimization so diagnostics can report them
            if kind is JobKind.MIGRATION and records.get(asset_id, {}).get("remote_url"):
                continue
            items.append(self._build_item(path, variants.get(path, []), records.get(asset_id)))

        logger.debug(f"Listed {len(items)} {kind.value} candidates under {self.root}")
        return items

    async def get(self, asset_id: str) -> WorkItem | None:
        path = self.root / asset_id
        records = await self.records()
        record = records.get(asset_id)
        if not path.exists() and record is None:
            return None
        variants = await asyncio.to_thread(self._variants_of, path)
        return self._build_item(path, variants, record)

    def _variants_of(self, path: Path) -> list[Path]:
        if not path.parent.is_dir():
            return []
        found = []
        for sibling in sorted(path.parent.iterdir()):
            match = _VARIANT_PATTERN.match(sibling.stem)
            if match and match.group("stem") == path.stem and sibling.suffix == path.suffix:
                found.append(sibling)
        return found

    async def mark_migrated(self, record: MigrationRecord) -> None:
        await self._update_record(
            record.asset_id,
            {
                "remote_url": record.remote_url,
                "remote_path": record.remote_path,
                "size_bytes": record.size_bytes,
                "mime_type": record.mime_type,
                "migrated_at": record.migrated_at,
                "variant_urls": dict(record.variant_urls),
            },
        )
        logger.debug(f"Recorded migration of {record.asset_id} -> {record.remote_url}")

    async def mark_optimized(self, asset_id: str, result: Optimized | None, optimized_at: float) -> None:
        if result is None:
            optimization: dict[str, Any] = {"status": "skipped"}
        else:
            optimization = {
                "status": "optimized",
                "original_size": result.original_size,
                "compressed_size": result.compressed_size,
                "bytes_saved": result.bytes_saved,
                "compression_ratio": result.compression_ratio,
                "format": result.format,
            }
        await self._update_record(
            asset_id,
            {"last_optimized_at": optimized_at, "optimization": optimization},
        )

    async def remove_local_copy(self, asset_id: str) -> int:
        item = await self.get(asset_id)
        if item is None:
            return 0
        removed = 0
        for path in (item.local_path, *item.variants):
            if await remove_file(path):
                removed += 1
        logger.info(f"Removed {removed} local file(s) for {asset_id}")
        return removed

    async def migration_records(self) -> list[MigrationRecord]:
        records = await self.records()
        return [
            MigrationRecord(
                asset_id=asset_id,
                remote_url=record["remote_url"],
                remote_path=record.get("remote_path") or asset_id,
                size_bytes=record.get("size_bytes", 0),
                mime_type=record.get("mime_type"),
                migrated_at=record.get("migrated_at", 0.0),
                variant_urls=dict(record.get("variant_urls") or {}),
            )
            for asset_id, record in sorted(records.items())
            if record.get("remote_url")
        ]

    async def clear_migration(self, asset_id: str) -> None:
        async with self._lock:
            manifest = await self._load_manifest()
            record = manifest["assets"].get(asset_id)
            if record is None:
                return
            for key in _MIGRATION_FIELDS:
                record.pop(key, None)
            if not record:
                del manifest["assets"][asset_id]
            await write_json_atomic(self.manifest_path, manifest)
        logger.debug(f"Cleared migration record of {asset_id}")
