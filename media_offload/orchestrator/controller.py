"""
Session controller.

Public entry points for front ends:

    handle = await controller.start(JobKind.MIGRATION)
    while not (report := await controller.tick(handle.session_id)).completed:
        ...

State machine shared by both job kinds:

    running --tick (items left)--> running
    running --tick (no items left)--> completed
    running --cancel--> cancelled

``completed`` and ``cancelled`` are terminal.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from ..assets.types import JobKind, SelectionCriteria, WorkItem
from ..exceptions import ConfigurationError, EligibilityEmptyError, OffloadError
from ..queue.types import QueuePriority
from ..sessions.types import ProgressReport, SessionHandle
from .processor import BatchProcessor

if TYPE_CHECKING:
    from ..queue.store import OptimizationQueue

logger = logging.getLogger(__name__)


class SessionController:
    """Drives sessions end to end on top of the Batch Processor."""

    def __init__(self, processor: BatchProcessor, queue: OptimizationQueue | None = None) -> None:
        self.processor = processor
        self.store = processor.store
        self.repository = processor.repository
        self.eligibility = processor.eligibility
        self.queue = queue if queue is not None else processor.queue
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def _require_configured(self, kind: JobKind) -> None:
        pipeline = self.processor.pipeline_for(kind)
        errors = pipeline.validate_configuration()
        if errors:
            raise ConfigurationError(pipeline.service_label, errors)

    async def _eligible_items(
        self, kind: JobKind, criteria: SelectionCriteria | None
    ) -> tuple[list[WorkItem], int]:
        """Eligible candidates in repository order, plus the number examined."""
        candidates = await self.repository.list_candidates(kind, self.eligibility.mime_types_for(kind), criteria)
        if kind is JobKind.OPTIMIZATION and self.queue is not None:
            candidates = await self.queue.annotate(candidates)
        eligible = [item for item in candidates if self.eligibility.check(kind, item).eligible]
        if criteria is not None and criteria.limit:
            eligible = eligible[: criteria.limit]
        return eligible, len(candidates)

    async def start(self, kind: JobKind, criteria: SelectionCriteria | None = None) -> SessionHandle:
        """
        Enumerate eligible assets and open a session over them.

        Raises:
            ConfigurationError: The remote service for this kind is not configured
            EligibilityEmptyError: No asset qualifies; no session is created
            StoreUnavailableError: The session could not be persisted
        """
        self._require_configured(kind)

        eligible, examined = await self._eligible_items(kind, criteria)
        if not eligible:
            logger.info(f"No assets eligible for {kind.value} ({examined} examined)")
            raise EligibilityEmptyError(kind.value, examined)

        session = await self.store.create(kind, [item.asset_id for item in eligible], criteria)
        pipeline = self.processor.pipeline_for(kind)
        return SessionHandle(
            session_id=session.session_id,
            kind=kind,
            total=session.total,
            batch_size=self.processor.batch_size_for(kind),
            concurrency_limit=pipeline.chunk_size,
            message=f"Started {kind.value} of {session.total} files",
        )

    async def tick(self, session_id: str) -> ProgressReport:
        """
        Advance a session by one batch and report progress.

        Terminal sessions are reported as they are, without processing, so
        polling a finished session any number of times is harmless. Ticks on
        the same session are serialized.
        """
        async with self._lock_for(session_id):
            session = await self.store.require(session_id)
            if session.status.is_terminal:
                return ProgressReport.from_session(session)
            await self.processor.process(session_id)
            return await self.progress(session_id)

    async def progress(self, session_id: str) -> ProgressReport:
        """Read-only progress projection."""
        return ProgressReport.from_session(await self.store.require(session_id))

    async def cancel(self, session_id: str) -> bool:
        """Cancel a session. Returns False only if the session does not exist."""
        return await self.store.cancel(session_id)

    async def sweep_expired(self) -> int:
        removed = await self.store.sweep_expired()
        for session_id in list(self._locks):
            lock = self._locks[session_id]
            if not lock.locked() and await self.store.get(session_id) is None:
                self._locks.pop(session_id, None)
        return removed

    async def list_sessions(self, kind: JobKind | None = None) -> list[ProgressReport]:
        return [ProgressReport.from_session(s) for s in await self.store.list_sessions(kind)]

    async def diagnose(self, kind: JobKind, criteria: SelectionCriteria | None = None) -> dict[str, int]:
        """Count candidates per eligibility outcome (``eligible`` or a reason code)."""
        candidates = await self.repository.list_candidates(kind, self.eligibility.mime_types_for(kind), criteria)
        if kind is JobKind.OPTIMIZATION and self.queue is not None:
            candidates = await self.queue.annotate(candidates)
        return self.eligibility.diagnose(kind, candidates)

    async def enqueue_backlog(
        self,
        priority: QueuePriority | None = None,
        criteria: SelectionCriteria | None = None,
    ) -> int:
        """
        Queue every currently optimization-eligible asset for the background worker.

        Returns:
            Number of new queue entries
        """
        if self.queue is None:
            raise OffloadError("No optimization queue configured")

        eligible, examined = await self._eligible_items(JobKind.OPTIMIZATION, criteria)
        added = await self.queue.enqueue(
            [item.asset_id for item in eligible],
            priority or QueuePriority.NORMAL,
        )
        logger.info(f"Enqueued {added} of {examined} optimization candidates")
        return added
