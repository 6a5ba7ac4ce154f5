"""
Media Offload

Resumable batch jobs that move media files to CDN object storage and run
images through an external optimization service.

Provides:
- Eligibility filter shared by every entry point
- TTL-bounded session store over pluggable key/value engines
- Batch processor with concurrency-limited chunks and chunk-level retry
- Session controller (start / tick / cancel / progress)
- Durable optimization queue with a background worker
- Restore and verification of offloaded files

Usage:

    >>> from media_offload import OffloadConfig, JobKind, build_controller
    >>> controller = build_controller(OffloadConfig.from_env(), media_root="uploads")
    >>> handle = await controller.start(JobKind.MIGRATION)
    >>> report = await controller.tick(handle.session_id)
    >>> while not report.completed:
    ...     report = await controller.tick(handle.session_id)
"""

from __future__ import annotations

from pathlib import Path

__version__ = "0.1.0"

# Assets
from .assets import (
    AssetRepository,
    DirectoryAssetRepository,
    JobKind,
    MigrationRecord,
    SelectionCriteria,
    WorkItem,
)

# Remote service clients
from .clients import (
    CdnStorageClient,
    Failed,
    ImageOptimizerClient,
    OptimizationClient,
    OptimizationResult,
    Optimized,
    RemoteStorageClient,
    Skipped,
)

# Configuration
from .config import (
    CriteriaConfig,
    OffloadConfig,
    OptimizerClientConfig,
    OrchestratorConfig,
    StorageClientConfig,
)

# Eligibility
from .eligibility import EligibilityFilter, EligibilityVerdict, IneligibleReason

# Exceptions
from .exceptions import (
    AssetNotMigratedError,
    AuthenticationError,
    ConfigurationError,
    EligibilityEmptyError,
    OffloadError,
    PermanentTransportError,
    QueueError,
    SessionNotFoundError,
    SessionStateError,
    StorageIOError,
    StoreUnavailableError,
    TransientTransportError,
    TransportError,
)

# Orchestration
from .orchestrator import (
    BatchProcessor,
    ItemOutcome,
    MigrationPipeline,
    OptimizationPipeline,
    OutcomeState,
    RetryConfig,
    RemoteSync,
    SessionController,
    StatsAggregator,
    TickResult,
)

# Durable queue
from .queue import OptimizationQueue, QueueConfig, QueueEntry, QueuePriority, QueueStatus, QueueWorker

# Sessions
from .sessions import ProgressReport, Session, SessionHandle, SessionStatus, SessionStore

# Key/value storage
from .storage import FileKeyValueStore, KeyValueStore, MemoryKeyValueStore


def build_controller(
    config: OffloadConfig,
    media_root: Path | str,
    kv: KeyValueStore | None = None,
    public_base_url: str | None = None,
) -> SessionController:
    """
    Wire a SessionController over a media directory with the default clients.

    Sessions are kept in memory unless a KeyValueStore is supplied.
    """
    repository = DirectoryAssetRepository(media_root, public_base_url=public_base_url)
    kv = kv or MemoryKeyValueStore()
    processor = BatchProcessor(
        store=SessionStore(kv, config.orchestrator),
        repository=repository,
        eligibility=EligibilityFilter(config.criteria),
        pipelines={
            JobKind.MIGRATION: MigrationPipeline(CdnStorageClient(config.storage), repository, config.orchestrator),
            JobKind.OPTIMIZATION: OptimizationPipeline(
                ImageOptimizerClient(config.optimizer), repository, config.orchestrator
            ),
        },
        config=config.orchestrator,
        stats=StatsAggregator(kv),
    )
    return SessionController(processor)


__all__ = [
    "__version__",
    "build_controller",
    # Assets
    "AssetRepository",
    "DirectoryAssetRepository",
    "JobKind",
    "MigrationRecord",
    "SelectionCriteria",
    "WorkItem",
    # Clients
    "RemoteStorageClient",
    "OptimizationClient",
    "CdnStorageClient",
    "ImageOptimizerClient",
    "OptimizationResult",
    "Optimized",
    "Skipped",
    "Failed",
    # Config
    "OffloadConfig",
    "StorageClientConfig",
    "OptimizerClientConfig",
    "CriteriaConfig",
    "OrchestratorConfig",
    # Eligibility
    "EligibilityFilter",
    "EligibilityVerdict",
    "IneligibleReason",
    # Exceptions
    "OffloadError",
    "SessionNotFoundError",
    "SessionStateError",
    "StoreUnavailableError",
    "EligibilityEmptyError",
    "AssetNotMigratedError",
    "ConfigurationError",
    "TransportError",
    "TransientTransportError",
    "PermanentTransportError",
    "AuthenticationError",
    "StorageIOError",
    "QueueError",
    # Orchestration
    "BatchProcessor",
    "SessionController",
    "MigrationPipeline",
    "OptimizationPipeline",
    "RetryConfig",
    "StatsAggregator",
    "RemoteSync",
    "ItemOutcome",
    "OutcomeState",
    "TickResult",
    # Queue
    "OptimizationQueue",
    "QueueConfig",
    "QueueEntry",
    "QueuePriority",
    "QueueStatus",
    "QueueWorker",
    # Sessions
    "Session",
    "SessionStatus",
    "SessionHandle",
    "ProgressReport",
    "SessionStore",
    # Storage
    "KeyValueStore",
    "MemoryKeyValueStore",
    "FileKeyValueStore",
]
