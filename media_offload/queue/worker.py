"""
Background optimization worker.

Drains the durable queue one optimizer batch at a time, with the same
eligibility rules, chunk runner and retry policy as interactive sessions.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass

from ..assets.repository import AssetRepository
from ..assets.types import WorkItem
from ..eligibility.criteria import EligibilityFilter
from ..exceptions import AuthenticationError
from ..orchestrator.chunks import ChunkRunner
from ..orchestrator.pipelines import OptimizationPipeline
from ..orchestrator.retry import RetryConfig
from ..orchestrator.stats import StatsAggregator
from ..orchestrator.types import ItemOutcome, OutcomeState
from ..utils import chunked
from .store import OptimizationQueue
from .types import QueueEntry

logger = logging.getLogger(__name__)


@dataclass
class QueueRunResult:
    """Counts from one worker pass."""

    claimed: int = 0
    completed: int = 0
    skipped: int = 0
    failed: int = 0

    def merge(self, other: QueueRunResult) -> None:
        self.claimed += other.claimed
        self.completed += other.completed
        self.skipped += other.skipped
        self.failed += other.failed

    def to_dict(self) -> dict[str, int]:
        return {
            "claimed": self.claimed,
            "completed": self.completed,
            "skipped": self.skipped,
            "failed": self.failed,
        }


class QueueWorker:
    """Claims queue entries and pushes them through the optimization pipeline."""

    def __init__(
        self,
        queue: OptimizationQueue,
        repository: AssetRepository,
        eligibility: EligibilityFilter,
        pipeline: OptimizationPipeline,
        retry: RetryConfig | None = None,
        stats: StatsAggregator | None = None,
        worker_id: str | None = None,
    ) -> None:
        self.queue = queue
        self.repository = repository
        self.eligibility = eligibility
        self.pipeline = pipeline
        self.runner = ChunkRunner(retry)
        self.stats = stats
        self.worker_id = worker_id or f"worker-{secrets.token_hex(4)}"

    async def _prepare(
        self, entries: list[QueueEntry], result: QueueRunResult
    ) -> list[tuple[QueueEntry, WorkItem]]:
        """Re-validate claimed assets; skip the ones that no longer qualify."""
        found: list[tuple[QueueEntry, WorkItem]] = []
        for entry in entries:
            item = await self.repository.get(entry.asset_id)
            if item is None:
                await self.queue.skip(entry.entry_id, "asset no longer exists")
                result.skipped += 1
                continue
            found.append((entry, item))

        # Our own claims are active entries; they must not count as "already queued"
        annotated = await self.queue.annotate(
            [item for _, item in found],
            exclude=[entry.asset_id for entry in entries],
        )

        ready = []
        for (entry, _), item in zip(found, annotated):
            verdict = self.eligibility.check_optimization(item)
            if verdict.eligible:
                ready.append((entry, item))
            else:
                await self.queue.skip(entry.entry_id, verdict.describe())
                result.skipped += 1
        return ready

    async def _finish(self, entry: QueueEntry, outcome: ItemOutcome, result: QueueRunResult) -> None:
        if outcome.state is OutcomeState.SUCCEEDED:
            await self.queue.complete(entry.entry_id, outcome.action)
            result.completed += 1
        elif outcome.state is OutcomeState.SKIPPED:
            await self.queue.skip(entry.entry_id, outcome.action)
            result.skipped += 1
        else:
            await self.queue.fail(entry.entry_id, outcome.error or "optimization failed")
            result.failed += 1

    async def run_once(self, limit: int | None = None) -> QueueRunResult:
        """
        Claim and process one batch.

        Raises:
            AuthenticationError: The optimizer rejected the API key. The
                claimed entries are failed first, so nothing is left stuck in
                ``processing``.
        """
        result = QueueRunResult()
        entries = await self.queue.claim(limit or self.pipeline.chunk_size, self.worker_id)
        if not entries:
            return result
        result.claimed = len(entries)

        ready = await self._prepare(entries, result)
        pending = {item.asset_id: entry for entry, item in ready}

        recorded: list[ItemOutcome] = []
        try:
            for chunk in chunked([item for _, item in ready], self.pipeline.chunk_size):
                outcomes = await self.runner.run(self.pipeline, chunk, context_msg=self.worker_id)
                for item, outcome in zip(chunk, outcomes):
                    entry = pending.pop(item.asset_id)
                    if outcome.counts_as_success:
                        try:
                            await self.pipeline.commit(item, outcome)
                        except Exception as e:
                            logger.error(f"Failed to record result for {item.asset_id}: {e}", exc_info=True)
                        else:
                            recorded.append(outcome)
                    await self._finish(entry, outcome, result)
        except AuthenticationError as e:
            for entry in pending.values():
                await self.queue.fail(entry.entry_id, str(e))
                result.failed += 1
            raise
        finally:
            if self.stats is not None and recorded:
                await self.stats.record(self.pipeline.kind, recorded)

        logger.info(
            f"Worker {self.worker_id} pass: {result.completed} optimized, "
            f"{result.skipped} skipped, {result.failed} failed"
        )
        return result

    async def run(self, max_batches: int | None = None) -> QueueRunResult:
        """Process batches until the queue is empty or ``max_batches`` is reached."""
        total = QueueRunResult()
        batches = 0
        while max_batches is None or batches < max_batches:
            batch = await self.run_once()
            if batch.claimed == 0:
                break
            total.merge(batch)
            batches += 1
        return total
