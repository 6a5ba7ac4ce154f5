"""
Stats aggregator.

Running totals for migration and optimization, persisted in a KeyValueStore
without expiry. The batch processor reports each committed tick here; nothing
else writes the totals.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from typing import Any

from ..assets.types import JobKind
from ..clients.types import Optimized
from ..storage.base import KeyValueStore
from ..utils import format_file_size
from .types import ItemOutcome, OutcomeState

logger = logging.getLogger(__name__)

STATS_KEY = "stats:totals"


def _empty_totals() -> dict[str, Any]:
    return {
        "migration": {
            "files_offloaded": 0,
            "bytes_offloaded": 0,
            "last_sync": None,
        },
        "optimization": {
            "total_optimized": 0,
            "total_savings": 0,
            "total_original_size": 0,
            "total_optimized_size": 0,
            "last_optimized": None,
        },
    }


class StatsAggregator:
    """Accumulates per-tick outcomes into persisted totals."""

    def __init__(self, kv: KeyValueStore, clock: Callable[[], float] = time.time) -> None:
        self.kv = kv
        self._clock = clock
        self._lock = asyncio.Lock()

    async def _load(self) -> dict[str, Any]:
        totals = _empty_totals()
        stored = await self.kv.get(STATS_KEY)
        if stored:
            for section, values in stored.items():
                totals.setdefault(section, {}).update(values)
        return totals

    async def record(self, kind: JobKind, outcomes: Iterable[ItemOutcome]) -> None:
        """Add a tick's committed outcomes to the totals."""
        outcomes = list(outcomes)
        async with self._lock:
            totals = await self._load()
            now = self._clock()

            if kind is JobKind.MIGRATION:
                migrated = [o for o in outcomes if o.state is OutcomeState.SUCCEEDED]
                if not migrated:
                    return
                section = totals["migration"]
                section["files_offloaded"] += len(migrated)
                section["bytes_offloaded"] += sum(o.size_bytes for o in migrated)
                section["last_sync"] = now
            else:
                optimized = [o.optimization for o in outcomes if isinstance(o.optimization, Optimized)]
                if not optimized:
                    return
                section = totals["optimization"]
                section["total_optimized"] += len(optimized)
                section["total_savings"] += sum(r.bytes_saved for r in optimized)
                section["total_original_size"] += sum(r.original_size for r in optimized)
                section["total_optimized_size"] += sum(r.compressed_size for r in optimized)
                section["last_optimized"] = now

            await self.kv.set(STATS_KEY, totals)

    async def snapshot(self) -> dict[str, Any]:
        """Current totals with derived ratios and human readable sizes."""
        totals = await self._load()
        migration = totals["migration"]
        migration["bytes_offloaded_formatted"] = format_file_size(migration["bytes_offloaded"])

        optimization = totals["optimization"]
        original = optimization["total_original_size"]
        optimization["compression_ratio"] = (
            round((original - optimization["total_optimized_size"]) / original * 100, 2) if original else 0
        )
        optimization["total_savings_formatted"] = format_file_size(optimization["total_savings"])
        optimization["total_original_size_formatted"] = format_file_size(original)
        optimization["total_optimized_size_formatted"] = format_file_size(optimization["total_optimized_size"])
        return totals

    async def reset(self) -> None:
        async with self._lock:
            await self.kv.delete(STATS_KEY)
        logger.info("Statistics reset")
