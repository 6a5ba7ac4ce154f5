"""
Migration and optimization pipelines.

A pipeline knows how to push one chunk of work items through its remote
service (``dispatch``) and how to record a finished item in the asset
repository (``commit``). Dispatch may be retried, so it must not touch the
repository; commit runs once, after the session store has accepted the tick.
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

from ..assets.repository import AssetRepository
from ..assets.types import JobKind, MigrationRecord, WorkItem
from ..clients.base import OptimizationClient, RemoteStorageClient
from ..clients.types import Failed, Optimized, Skipped
from ..config import OrchestratorConfig
from ..exceptions import (
    AuthenticationError,
    StorageIOError,
    TransientTransportError,
    TransportError,
)
from ..utils import add_version_to_url, format_file_size
from .types import ItemOutcome, OutcomeState

logger = logging.getLogger(__name__)

_TRANSIENT = (TransientTransportError, ConnectionError, TimeoutError)


class Pipeline(ABC):
    """Remote work for one job kind."""

    kind: JobKind
    service_label: str

    def __init__(self, repository: AssetRepository, concurrency_limit: int) -> None:
        if concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be >= 1, got {concurrency_limit}")
        self.repository = repository
        self.concurrency_limit = concurrency_limit

    @property
    def chunk_size(self) -> int:
        """Largest number of items dispatched together."""
        return self.concurrency_limit

    @abstractmethod
    def validate_configuration(self) -> list[str]:
        pass

    @abstractmethod
    async def dispatch(self, chunk: list[WorkItem]) -> list[ItemOutcome]:
        """
        Process a chunk concurrently.

        Returns one outcome per item, in chunk order.

        Raises:
            TransientTransportError: The chunk as a whole should be retried
            AuthenticationError: Credentials were rejected; abort the tick
        """
        pass

    @abstractmethod
    async def commit(self, item: WorkItem, outcome: ItemOutcome) -> None:
        """Record a finished item in the asset repository."""
        pass


class MigrationPipeline(Pipeline):
    """Uploads local assets (and their thumbnail variants) to CDN storage."""

    kind = JobKind.MIGRATION
    service_label = "remote storage"

    def __init__(
        self,
        client: RemoteStorageClient,
        repository: AssetRepository,
        config: OrchestratorConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        config = config or OrchestratorConfig()
        super().__init__(repository, config.migration_concurrency)
        self.client = client
        self.file_versioning = config.file_versioning
        self.delete_local = config.delete_local
        self._clock = clock

    def validate_configuration(self) -> list[str]:
        return self.client.validate_configuration()

    async def _upload_variants(self, item: WorkItem) -> dict[str, str]:
        """Best effort: a failed thumbnail never fails its original."""
        urls: dict[str, str] = {}
        base_dir = posixpath.dirname(item.asset_id)
        for variant in item.variants:
            remote_path = posixpath.join(base_dir, variant.name) if base_dir else variant.name
            try:
                urls[remote_path] = await self.client.upload(variant, remote_path)
            except AuthenticationError:
                raise
            except (TransportError, StorageIOError, OSError) as e:
                logger.warning(f"Variant upload failed for {remote_path}: {e}")
        return urls

    async def _migrate(self, item: WorkItem) -> ItemOutcome:
        remote_path = item.asset_id
        url = await self.client.upload(item.local_path, remote_path)
        if self.file_versioning:
            url = add_version_to_url(url, self._clock())
        variant_urls = await self._upload_variants(item)
        return ItemOutcome(
            asset_id=item.asset_id,
            state=OutcomeState.SUCCEEDED,
            action="Migrated to CDN",
            remote_url=url,
            remote_path=remote_path,
            variant_urls=variant_urls,
            size_bytes=item.size_bytes,
            display_name=item.display_name,
        )

    async def dispatch(self, chunk: list[WorkItem]) -> list[ItemOutcome]:
        results = await asyncio.gather(*(self._migrate(item) for item in chunk), return_exceptions=True)

        outcomes: list[ItemOutcome] = []
        transient: BaseException | None = None
        for item, result in zip(chunk, results):
            if isinstance(result, AuthenticationError):
                raise result
            if isinstance(result, ItemOutcome):
                outcomes.append(result)
            elif isinstance(result, _TRANSIENT):
                # Re-raised once every result is inspected; transient errors retry the chunk
                transient = transient or result
            elif isinstance(result, Exception):
                outcomes.append(
                    ItemOutcome.failure(item.asset_id, str(result), item.size_bytes, item.display_name)
                )
            else:
                raise result
        if transient is not None:
            raise transient
        return outcomes

    async def commit(self, item: WorkItem, outcome: ItemOutcome) -> None:
        if outcome.state is not OutcomeState.SUCCEEDED or not outcome.remote_url:
            return
        await self.repository.mark_migrated(
            MigrationRecord(
                asset_id=item.asset_id,
                remote_url=outcome.remote_url,
                remote_path=outcome.remote_path or item.asset_id,
                size_bytes=item.size_bytes,
                mime_type=item.mime_type,
                migrated_at=self._clock(),
                variant_urls=dict(outcome.variant_urls),
            )
        )
        if self.delete_local:
            await self.repository.remove_local_copy(item.asset_id)


class OptimizationPipeline(Pipeline):
    """Submits images to the optimization service, one request per chunk."""

    kind = JobKind.OPTIMIZATION
    service_label = "image optimizer"

    def __init__(
        self,
        client: OptimizationClient,
        repository: AssetRepository,
        config: OrchestratorConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        config = config or OrchestratorConfig()
        super().__init__(repository, config.optimization_concurrency)
        self.client = client
        self._clock = clock

    @property
    def chunk_size(self) -> int:
        # The service rejects batches above its limit
        return max(1, min(self.concurrency_limit, self.client.max_batch_size))

    def validate_configuration(self) -> list[str]:
        return self.client.validate_configuration()

    async def dispatch(self, chunk: list[WorkItem]) -> list[ItemOutcome]:
        outcomes: dict[str, ItemOutcome] = {}
        submitted = []
        for item in chunk:
            if item.source_url:
                submitted.append(item)
            else:
                outcomes[item.asset_id] = ItemOutcome.failure(
                    item.asset_id,
                    "asset has no public URL for the optimizer to fetch",
                    item.size_bytes,
                    item.display_name,
                )

        if submitted:
            try:
                results = await self.client.optimize([item.source_url for item in submitted])  # type: ignore[misc]
            except (AuthenticationError, *_TRANSIENT):
                raise
            except Exception as e:
                results = [Failed(str(e))] * len(submitted)
            for item, result in zip(submitted, results):
                outcomes[item.asset_id] = self._to_outcome(item, result)

        return [outcomes[item.asset_id] for item in chunk]

    @staticmethod
    def _to_outcome(item: WorkItem, result: Optimized | Skipped | Failed) -> ItemOutcome:
        if isinstance(result, Optimized):
            return ItemOutcome(
                asset_id=item.asset_id,
                state=OutcomeState.SUCCEEDED,
                action=(
                    f"Optimized to {result.format}, saved {format_file_size(result.bytes_saved)} "
                    f"({result.compression_ratio}%)"
                ),
                optimization=result,
                size_bytes=item.size_bytes,
                display_name=item.display_name,
            )
        if isinstance(result, Skipped):
            return ItemOutcome(
                asset_id=item.asset_id,
                state=OutcomeState.SKIPPED,
                action=f"Skipped: {result.reason}",
                optimization=result,
                size_bytes=item.size_bytes,
                display_name=item.display_name,
            )
        return ItemOutcome.failure(item.asset_id, result.error, item.size_bytes, item.display_name)

    async def commit(self, item: WorkItem, outcome: ItemOutcome) -> None:
        if outcome.state is OutcomeState.FAILED:
            return
        optimized = outcome.optimization if isinstance(outcome.optimization, Optimized) else None
        await self.repository.mark_optimized(item.asset_id, optimized, self._clock())
