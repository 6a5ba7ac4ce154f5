"""
Remote copy maintenance for offloaded assets.

Two operations work off the repository's remote-tracking records:

- restore: download an offloaded asset (and its thumbnail variants) back to
  its local path, then clear the migration record so the asset is local-only
  again. The remote copy is kept unless ``delete_remote`` is set.
- verify: check every offloaded asset for a local file and a served remote
  copy, and classify it.

Downloads and existence checks go through the same retry policy as session
chunks.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..assets.repository import AssetRepository
from ..assets.types import MigrationRecord
from ..clients.base import RemoteStorageClient
from ..exceptions import (
    AssetNotMigratedError,
    AuthenticationError,
    ConfigurationError,
    OffloadError,
    StorageIOError,
    TransportError,
)
from .retry import RetryConfig, retry_with_backoff

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    """Where copies of an offloaded asset currently exist."""

    SYNCED = "synced"
    MISSING_LOCAL = "missing_local"
    MISSING_REMOTE = "missing_remote"
    MISSING_BOTH = "missing_both"
    UNKNOWN = "unknown"

    @classmethod
    def classify(cls, local_exists: bool, remote_exists: bool) -> SyncStatus:
        if local_exists and remote_exists:
            return cls.SYNCED
        if remote_exists:
            return cls.MISSING_LOCAL
        if local_exists:
            return cls.MISSING_REMOTE
        return cls.MISSING_BOTH


@dataclass
class FileCheck:
    """Verification result for one offloaded asset."""

    asset_id: str
    status: SyncStatus
    local_exists: bool
    remote_exists: bool | None
    remote_url: str
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "asset_id": self.asset_id,
            "status": self.status.value,
            "local_exists": self.local_exists,
            "remote_exists": self.remote_exists,
            "remote_url": self.remote_url,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class VerifyReport:
    checks: list[FileCheck] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.checks)

    def counts(self) -> dict[str, int]:
        tally = {status.value: 0 for status in SyncStatus}
        for check in self.checks:
            tally[check.status.value] += 1
        return tally

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            **self.counts(),
            "details": [check.to_dict() for check in self.checks],
        }


@dataclass
class RestoreReport:
    total: int = 0
    successful: int = 0
    failed: int = 0
    errors: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "errors": dict(self.errors),
        }


class RemoteSync:
    """Restores offloaded assets and verifies their remote copies."""

    def __init__(
        self,
        client: RemoteStorageClient,
        repository: AssetRepository,
        retry: RetryConfig | None = None,
    ) -> None:
        self.client = client
        self.repository = repository
        self.retry = retry or RetryConfig()

    def _require_configured(self) -> None:
        errors = self.client.validate_configuration()
        if errors:
            raise ConfigurationError("remote storage", errors)

    async def _download(self, remote_path: str, local_path) -> None:
        await retry_with_backoff(
            self.client.download,
            remote_path,
            local_path,
            config=self.retry,
            context_msg=f"restore {remote_path}",
        )

    async def _restore_variants(self, record: MigrationRecord, local_dir) -> None:
        """Best effort, like variant uploads."""
        for remote_path in record.variant_urls:
            try:
                await self._download(remote_path, local_dir / posixpath.basename(remote_path))
            except AuthenticationError:
                raise
            except (TransportError, StorageIOError, OSError) as e:
                logger.warning(f"Variant restore failed for {remote_path}: {e}")

    async def restore(self, asset_id: str, delete_remote: bool = False) -> MigrationRecord:
        """
        Bring one offloaded asset back to local storage.

        A local file that is still present is kept as is; only the record is
        cleared.

        Returns:
            The migration record that was cleared

        Raises:
            AssetNotMigratedError: The asset has no remote counterpart
            ConfigurationError: The storage client is not configured
            TransportError: The download failed (after retries)
            StorageIOError: The local file could not be written
        """
        self._require_configured()
        record = await self.repository.get_migration(asset_id)
        if record is None:
            raise AssetNotMigratedError(asset_id)
        item = await self.repository.get(asset_id)
        if item is None:
            raise AssetNotMigratedError(asset_id)

        if item.exists:
            logger.info(f"Local copy of {asset_id} is present; clearing remote record only")
        else:
            await self._download(record.remote_path, item.local_path)
            await self._restore_variants(record, item.local_path.parent)

        await self.repository.clear_migration(asset_id)

        if delete_remote:
            for remote_path in (record.remote_path, *record.variant_urls):
                await self.client.delete(remote_path)

        logger.info(f"Restored {asset_id} from {record.remote_url}")
        return record

    async def restore_all(self, asset_ids: list[str] | None = None, delete_remote: bool = False) -> RestoreReport:
        """
        Restore every offloaded asset, or only ``asset_ids``.

        Per-asset failures are collected in the report. Rejected credentials
        abort the run.
        """
        self._require_configured()
        if asset_ids is None:
            targets = [record.asset_id for record in await self.repository.migration_records()]
        else:
            targets = list(asset_ids)

        report = RestoreReport(total=len(targets))
        for asset_id in targets:
            try:
                await self.restore(asset_id, delete_remote=delete_remote)
            except AuthenticationError:
                raise
            except (OffloadError, OSError) as e:
                logger.error(f"Restore of {asset_id} failed: {e}")
                report.failed += 1
                report.errors[asset_id] = str(e)
            else:
                report.successful += 1

        logger.info(f"Restore finished: {report.successful} restored, {report.failed} failed")
        return report

    async def verify(self) -> VerifyReport:
        """Check local and remote presence of every offloaded asset."""
        self._require_configured()
        report = VerifyReport()
        for record in await self.repository.migration_records():
            item = await self.repository.get(record.asset_id)
            local_exists = item is not None and item.exists
            try:
                remote_exists = await retry_with_backoff(
                    self.client.exists,
                    record.remote_path,
                    config=self.retry,
                    context_msg=f"verify {record.remote_path}",
                )
            except AuthenticationError:
                raise
            except TransportError as e:
                report.checks.append(
                    FileCheck(record.asset_id, SyncStatus.UNKNOWN, local_exists, None, record.remote_url, str(e))
                )
                continue
            report.checks.append(
                FileCheck(
                    record.asset_id,
                    SyncStatus.classify(local_exists, remote_exists),
                    local_exists,
                    remote_exists,
                    record.remote_url,
                )
            )

        counts = report.counts()
        logger.info(
            f"Verified {report.total} offloaded asset(s): {counts['synced']} synced, "
            f"{report.total - counts['synced']} need attention"
        )
        return report

    async def remote_only(self) -> list[MigrationRecord]:
        """Offloaded assets whose local file is gone."""
        remote_only = []
        for record in await self.repository.migration_records():
            item = await self.repository.get(record.asset_id)
            if item is None or not item.exists:
                remote_only.append(record)
        return remote_only
