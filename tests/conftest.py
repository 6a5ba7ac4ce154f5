"""
Shared test configuration and fixtures.

Wires the orchestrator over the in-memory fakes in ``fakes.py`` with a
manually advanced clock and zero retry delay.
"""

import pytest

from media_offload.assets import JobKind
from media_offload.config import CriteriaConfig, OrchestratorConfig
from media_offload.eligibility import EligibilityFilter
from media_offload.orchestrator import (
    BatchProcessor,
    MigrationPipeline,
    OptimizationPipeline,
    SessionController,
    StatsAggregator,
)
from media_offload.sessions import SessionStore
from media_offload.storage import MemoryKeyValueStore

from .fakes import FakeClock, FakeOptimizer, FakeRepository, FakeStorageClient


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv(clock):
    return MemoryKeyValueStore(clock=clock)


@pytest.fixture
def orchestrator_config():
    return OrchestratorConfig(
        migration_batch_size=4,
        migration_concurrency=2,
        optimization_batch_size=9,
        optimization_concurrency=3,
        retry_delay=0.0,
    )


@pytest.fixture
def eligibility(clock):
    return EligibilityFilter(CriteriaConfig(), clock=clock)


@pytest.fixture
def repository():
    return FakeRepository()


@pytest.fixture
def storage_client():
    return FakeStorageClient()


@pytest.fixture
def optimizer():
    return FakeOptimizer()


@pytest.fixture
def store(kv, orchestrator_config, clock):
    return SessionStore(kv, orchestrator_config, clock=clock)


@pytest.fixture
def stats(kv, clock):
    return StatsAggregator(kv, clock=clock)


@pytest.fixture
def processor(store, repository, eligibility, storage_client, optimizer, orchestrator_config, stats, clock):
    return BatchProcessor(
        store=store,
        repository=repository,
        eligibility=eligibility,
        pipelines={
            JobKind.MIGRATION: MigrationPipeline(storage_client, repository, orchestrator_config, clock=clock),
            JobKind.OPTIMIZATION: OptimizationPipeline(optimizer, repository, orchestrator_config, clock=clock),
        },
        config=orchestrator_config,
        stats=stats,
        clock=clock,
    )


@pytest.fixture
def controller(processor):
    return SessionController(processor)
