"""
SQLite-backed optimization queue.

Entries move pending -> processing -> {completed, failed, skipped} and are
never reused; re-queuing an asset creates a new row. A partial unique index
allows at most one active (pending or processing) row per asset, so enqueue
is an ``INSERT OR IGNORE``.

Claims are conditional updates (``... WHERE id = ? AND status = 'pending'``),
so two workers sharing the database file can never claim the same row.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from pathlib import Path

import aiosqlite

from ..assets.types import WorkItem
from ..exceptions import QueueError
from .types import QueueEntry, QueuePriority, QueueStatus

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS optimization_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    asset_id TEXT NOT NULL,
    priority TEXT NOT NULL,
    priority_rank INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    worker_id TEXT,
    error_message TEXT,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    claimed_at REAL,
    completed_at REAL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_queue_active_asset
    ON optimization_queue(asset_id)
    WHERE status IN ('pending', 'processing');

CREATE INDEX IF NOT EXISTS idx_queue_claim_order
    ON optimization_queue(status, priority_rank, id);
"""

_ACTIVE_STATUSES = ("pending", "processing")


@dataclass
class QueueConfig:
    """Configuration for the optimization queue database."""

    db_path: str | Path = ":memory:"


class OptimizationQueue:
    """
    Durable queue of assets awaiting background optimization.

    Example:
        >>> queue = OptimizationQueue(QueueConfig(db_path="queue.db"))
        >>> await queue.initialize()
        >>> await queue.enqueue(["2024/05/hero.jpg"], QueuePriority.HIGH)
        >>> entries = await queue.claim(3, worker_id="worker-1")
    """

    def __init__(self, config: QueueConfig | None = None, clock: Callable[[], float] = time.time) -> None:
        self.config = config or QueueConfig()
        self.conn: aiosqlite.Connection | None = None
        self._clock = clock
        self._initialized = False

    async def initialize(self) -> None:
        """Open the database and create the schema."""
        if self._initialized:
            return
        try:
            self.conn = await aiosqlite.connect(str(self.config.db_path))
            self.conn.row_factory = aiosqlite.Row
            await self.conn.executescript(_SCHEMA_SQL)
            await self.conn.commit()
        except aiosqlite.Error as e:
            raise QueueError("initialize", e) from e
        self._initialized = True
        logger.info(f"Optimization queue initialized: {self.config.db_path}")

    async def close(self) -> None:
        if self.conn:
            await self.conn.close()
            self.conn = None
        self._initialized = False

    async def __aenter__(self) -> OptimizationQueue:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _require_conn(self) -> aiosqlite.Connection:
        if self.conn is None:
            raise QueueError("use", RuntimeError("queue is not initialized"))
        return self.conn

    # =========================================================================
    # Producers
    # =========================================================================

    async def enqueue(
        self,
        asset_ids: Iterable[str],
        priority: QueuePriority = QueuePriority.NORMAL,
    ) -> int:
        """
        Queue assets for optimization.

        Assets that already have a pending or processing entry are ignored.

        Returns:
            Number of new entries created
        """
        conn = self._require_conn()
        now = self._clock()
        added = 0
        try:
            for asset_id in asset_ids:
                cursor = await conn.execute(
                    """
                    INSERT OR IGNORE INTO optimization_queue
                        (asset_id, priority, priority_rank, status, created_at, updated_at)
                    VALUES (?, ?, ?, 'pending', ?, ?)
                    """,
                    (asset_id, priority.value, priority.rank, now, now),
                )
                added += cursor.rowcount
            await conn.commit()
        except aiosqlite.Error as e:
            raise QueueError("enqueue", e) from e
        if added:
            logger.info(f"Queued {added} asset(s) for optimization at {priority.value} priority")
        return added

    # =========================================================================
    # Workers
    # =========================================================================

    async def claim(self, limit: int, worker_id: str) -> list[QueueEntry]:
        """
        Claim up to ``limit`` pending entries, highest priority first, then FIFO.
        """
        if limit < 1:
            return []
        conn = self._require_conn()
        now = self._clock()
        claimed: list[int] = []
        try:
            async with conn.execute(
                """
                SELECT id FROM optimization_queue
                WHERE status = 'pending'
                ORDER BY priority_rank, id
                LIMIT ?
                """,
                (limit,),
            ) as cursor:
                candidates = [row["id"] for row in await cursor.fetchall()]

            for entry_id in candidates:
                cursor = await conn.execute(
                    """
                    UPDATE optimization_queue
                    SET status = 'processing', worker_id = ?, claimed_at = ?, updated_at = ?
                    WHERE id = ? AND status = 'pending'
                    """,
                    (worker_id, now, now, entry_id),
                )
                # rowcount 0: another worker claimed it first
                if cursor.rowcount == 1:
                    claimed.append(entry_id)
            await conn.commit()
        except aiosqlite.Error as e:
            raise QueueError("claim", e) from e

        entries = await self._get_many(claimed)
        if entries:
            logger.debug(f"Worker {worker_id} claimed {len(entries)} queue entries")
        return entries

    async def _finish(self, entry_id: int, status: QueueStatus, message: str | None) -> bool:
        conn = self._require_conn()
        now = self._clock()
        try:
            cursor = await conn.execute(
                """
                UPDATE optimization_queue
                SET status = ?, error_message = ?, completed_at = ?, updated_at = ?
                WHERE id = ? AND status = 'processing'
                """,
                (status.value, message, now, now, entry_id),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise QueueError(f"mark_{status.value}", e) from e
        if cursor.rowcount != 1:
            logger.warning(f"Queue entry {entry_id} was not processing; left unchanged")
            return False
        return True

    async def complete(self, entry_id: int, note: str | None = None) -> bool:
        return await self._finish(entry_id, QueueStatus.COMPLETED, note)

    async def fail(self, entry_id: int, error_message: str) -> bool:
        return await self._finish(entry_id, QueueStatus.FAILED, error_message)

    async def skip(self, entry_id: int, reason: str) -> bool:
        return await self._finish(entry_id, QueueStatus.SKIPPED, reason)

    async def fail_stale(self, max_age_seconds: float) -> int:
        """
        Fail entries stuck in processing longer than ``max_age_seconds``
        (a worker died mid-batch). The asset can be re-queued afterwards.
        """
        conn = self._require_conn()
        now = self._clock()
        try:
            cursor = await conn.execute(
                """
                UPDATE optimization_queue
                SET status = 'failed', error_message = ?, completed_at = ?, updated_at = ?
                WHERE status = 'processing' AND claimed_at <= ?
                """,
                ("abandoned by worker", now, now, now - max_age_seconds),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise QueueError("fail_stale", e) from e
        if cursor.rowcount:
            logger.warning(f"Failed {cursor.rowcount} stale queue entries")
        return cursor.rowcount

    # =========================================================================
    # Queries
    # =========================================================================

    async def get(self, entry_id: int) -> QueueEntry | None:
        entries = await self._get_many([entry_id])
        return entries[0] if entries else None

    async def _get_many(self, entry_ids: list[int]) -> list[QueueEntry]:
        if not entry_ids:
            return []
        conn = self._require_conn()
        placeholders = ",".join("?" for _ in entry_ids)
        try:
            async with conn.execute(
                f"SELECT * FROM optimization_queue WHERE id IN ({placeholders}) ORDER BY priority_rank, id",
                entry_ids,
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise QueueError("get", e) from e
        return [QueueEntry.from_row(row) for row in rows]

    async def entries_for(self, asset_id: str) -> list[QueueEntry]:
        """Full history of an asset's queue entries, oldest first."""
        conn = self._require_conn()
        try:
            async with conn.execute(
                "SELECT * FROM optimization_queue WHERE asset_id = ? ORDER BY id",
                (asset_id,),
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise QueueError("entries_for", e) from e
        return [QueueEntry.from_row(row) for row in rows]

    async def counts(self) -> dict[str, int]:
        """Number of entries per status (every status present, zero if none)."""
        conn = self._require_conn()
        counts = {status.value: 0 for status in QueueStatus}
        try:
            async with conn.execute(
                "SELECT status, COUNT(*) AS n FROM optimization_queue GROUP BY status"
            ) as cursor:
                for row in await cursor.fetchall():
                    counts[row["status"]] = row["n"]
        except aiosqlite.Error as e:
            raise QueueError("counts", e) from e
        return counts

    async def active_asset_ids(self) -> set[str]:
        """Assets with a pending or processing entry."""
        conn = self._require_conn()
        try:
            async with conn.execute(
                "SELECT asset_id FROM optimization_queue WHERE status IN (?, ?)",
                _ACTIVE_STATUSES,
            ) as cursor:
                return {row["asset_id"] for row in await cursor.fetchall()}
        except aiosqlite.Error as e:
            raise QueueError("active_asset_ids", e) from e

    async def annotate(self, items: list[WorkItem], exclude: Iterable[str] = ()) -> list[WorkItem]:
        """
        Return copies of ``items`` with ``in_queue`` reflecting active entries.

        Args:
            items: Fresh work item snapshots
            exclude: Asset IDs to treat as not queued (a worker's own claims)
        """
        active = await self.active_asset_ids() - set(exclude)
        return [replace(item, in_queue=item.asset_id in active) for item in items]
