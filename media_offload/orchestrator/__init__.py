"""
Batch job orchestration: retry policy, chunk runner, pipelines, the Batch
Processor, the Session Controller, the Stats Aggregator and remote sync.
"""

from .chunks import ChunkRunner
from .controller import SessionController
from .pipelines import MigrationPipeline, OptimizationPipeline, Pipeline
from .processor import BatchProcessor
from .retry import RetryConfig, retry_with_backoff
from .stats import StatsAggregator
from .sync import FileCheck, RemoteSync, RestoreReport, SyncStatus, VerifyReport
from .types import VALIDATION_FAILURE_PREFIX, ItemOutcome, OutcomeState, TickResult

__all__ = [
    "BatchProcessor",
    "SessionController",
    "Pipeline",
    "MigrationPipeline",
    "OptimizationPipeline",
    "ChunkRunner",
    "RetryConfig",
    "retry_with_backoff",
    "StatsAggregator",
    "RemoteSync",
    "RestoreReport",
    "VerifyReport",
    "FileCheck",
    "SyncStatus",
    "ItemOutcome",
    "OutcomeState",
    "TickResult",
    "VALIDATION_FAILURE_PREFIX",
]
