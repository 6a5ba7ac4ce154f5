"""
Batch processor.

Advances one session by one bounded slice of work:

1. Take the next ``batch_size`` item IDs after the ``processed`` cursor
2. Re-read each item from the repository and re-check eligibility; items that
   no longer qualify fail without a remote call or a retry
3. Split the valid items into chunks of at most the pipeline's chunk size
4. Dispatch each chunk concurrently; chunks run one after another
5. Commit cursor, counters and errors to the session store in one update
6. Only then record repository side effects and statistics

Nothing counts as consumed until step 5 succeeds, so a store outage loses no
items: the next tick re-processes the same slice.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from ..assets.repository import AssetRepository
from ..assets.types import JobKind, WorkItem
from ..config import OrchestratorConfig
from ..eligibility.criteria import EligibilityFilter, IneligibleReason
from ..exceptions import SessionNotFoundError, SessionStateError
from ..logging_utils import SessionLoggerAdapter
from ..sessions.store import SessionStore
from ..sessions.types import Session, SessionStatus
from ..utils import chunked
from .chunks import ChunkRunner
from .pipelines import Pipeline
from .retry import RetryConfig
from .stats import StatsAggregator
from .types import ItemOutcome, TickResult

if TYPE_CHECKING:
    from ..queue.store import OptimizationQueue

logger = logging.getLogger(__name__)


class BatchProcessor:
    """Runs single ticks of migration and optimization sessions."""

    def __init__(
        self,
        store: SessionStore,
        repository: AssetRepository,
        eligibility: EligibilityFilter,
        pipelines: dict[JobKind, Pipeline],
        config: OrchestratorConfig | None = None,
        stats: StatsAggregator | None = None,
        queue: OptimizationQueue | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.repository = repository
        self.eligibility = eligibility
        self.pipelines = pipelines
        self.config = config or OrchestratorConfig()
        self.stats = stats
        self.queue = queue
        self.runner = ChunkRunner(RetryConfig.from_orchestrator(self.config))
        self._clock = clock

    def batch_size_for(self, kind: JobKind) -> int:
        if kind is JobKind.MIGRATION:
            return self.config.migration_batch_size
        return self.config.optimization_batch_size

    def pipeline_for(self, kind: JobKind) -> Pipeline:
        try:
            return self.pipelines[kind]
        except KeyError:
            raise ValueError(f"No pipeline configured for {kind.value}") from None

    async def _revalidate(
        self, kind: JobKind, asset_ids: list[str]
    ) -> tuple[dict[str, WorkItem], dict[str, ItemOutcome]]:
        """Fresh snapshots for still-eligible items, validation failures for the rest."""
        snapshots: list[WorkItem] = []
        rejected: dict[str, ItemOutcome] = {}
        for asset_id in asset_ids:
            item = await self.repository.get(asset_id)
            if item is None:
                rejected[asset_id] = ItemOutcome.validation_failure(
                    asset_id, f"{IneligibleReason.FILE_MISSING.value}: asset no longer exists"
                )
            else:
                snapshots.append(item)

        if kind is JobKind.OPTIMIZATION and self.queue is not None:
            snapshots = await self.queue.annotate(snapshots)

        valid: dict[str, WorkItem] = {}
        for item in snapshots:
            verdict = self.eligibility.check(kind, item)
            if verdict.eligible:
                valid[item.asset_id] = item
            else:
                rejected[item.asset_id] = ItemOutcome.validation_failure(
                    item.asset_id, verdict.describe(), item.display_name
                )
        return valid, rejected

    async def process(self, session_id: str) -> TickResult:
        """
        Run one tick.

        Raises:
            SessionNotFoundError: The session does not exist or expired
            StoreUnavailableError: The store could not be read or written;
                the tick can be retried later
            AuthenticationError: Remote credentials were rejected
        """
        session = await self.store.require(session_id)
        log = SessionLoggerAdapter(logger, {"session_id": session_id, "kind": session.kind.value})

        if session.status.is_terminal:
            return TickResult(
                session_id,
                session.kind,
                completed=session.status is SessionStatus.COMPLETED,
                cancelled=session.status is SessionStatus.CANCELLED,
            )

        if session.is_exhausted:
            return await self._complete_empty(session)

        batch_ids = session.remaining[: self.batch_size_for(session.kind)]
        pipeline = self.pipeline_for(session.kind)

        valid, rejected = await self._revalidate(session.kind, batch_ids)
        if rejected:
            log.info(f"{len(rejected)} item(s) failed execution-time validation")

        dispatched: dict[str, ItemOutcome] = {}
        for index, chunk in enumerate(chunked(list(valid.values()), pipeline.chunk_size)):
            context = f"{session_id} chunk {index + 1}"
            for outcome in await self.runner.run(pipeline, chunk, context_msg=context):
                dispatched[outcome.asset_id] = outcome

        outcomes = [rejected.get(asset_id) or dispatched[asset_id] for asset_id in batch_ids]
        result = TickResult(session_id, session.kind, outcomes=outcomes)
        result.completed = session.processed + len(batch_ids) >= len(session.items)

        try:
            result.committed = await self._commit(session, result)
        except SessionNotFoundError:
            log.error("Session expired during tick; recording finished work before failing")
            await self._apply_side_effects(pipeline, valid, result, log)
            raise
        if not result.committed:
            result.cancelled = True
            result.completed = False

        await self._apply_side_effects(pipeline, valid, result, log)

        log.info(
            f"Tick processed {result.processed} item(s): "
            f"{result.successful} successful, {result.failed} failed"
            + (" (session complete)" if result.completed else "")
        )
        return result

    async def _commit(self, session: Session, result: TickResult) -> bool:
        """
        Write the tick to the session store in a single update.

        Returns:
            False if the session was cancelled while the tick ran (counters
            are discarded)

        Raises:
            SessionNotFoundError: The session expired mid-tick
        """
        now = self._clock()
        changes = {
            "processed": session.processed + result.processed,
            "successful": session.successful + result.successful,
            "failed": session.failed + result.failed,
            "errors": session.errors + result.errors,
            "last_tick": [o.to_dict() for o in result.outcomes],
            "updated_at": now,
        }
        if result.completed:
            changes["status"] = SessionStatus.COMPLETED
            changes["completed_at"] = now

        try:
            written = await self.store.update(session.session_id, changes)
        except SessionStateError as e:
            logger.info(f"Session {session.session_id} became {e.status} during tick; counters discarded")
            return False
        if not written:
            raise SessionNotFoundError(session.session_id)
        return True

    async def _complete_empty(self, session: Session) -> TickResult:
        now = self._clock()
        try:
            written = await self.store.update(
                session.session_id,
                {"status": SessionStatus.COMPLETED, "completed_at": now, "last_tick": []},
            )
        except SessionStateError:
            return TickResult(session.session_id, session.kind, cancelled=True)
        if not written:
            raise SessionNotFoundError(session.session_id)
        return TickResult(session.session_id, session.kind, completed=True, committed=True)

    async def _apply_side_effects(
        self,
        pipeline: Pipeline,
        items: dict[str, WorkItem],
        result: TickResult,
        log: logging.LoggerAdapter,
    ) -> None:
        """Record finished items in the repository and the statistics.

        Runs even when the session was cancelled mid-tick: work that reached
        the remote service is real regardless of the session's fate.
        """
        recorded = []
        for outcome in result.outcomes:
            item = items.get(outcome.asset_id)
            if item is None or not outcome.counts_as_success:
                continue
            try:
                await pipeline.commit(item, outcome)
            except Exception as e:
                log.error(f"Failed to record result for {outcome.asset_id}: {e}", exc_info=True)
                continue
            recorded.append(outcome)

        if self.stats is not None and recorded:
            try:
                await self.stats.record(pipeline.kind, recorded)
            except Exception as e:
                log.warning(f"Failed to update statistics: {e}")
