"""
Chunk execution with chunk-level retry.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..assets.types import WorkItem
from .retry import RetryConfig, retry_with_backoff
from .types import ItemOutcome

if TYPE_CHECKING:
    from .pipelines import Pipeline

logger = logging.getLogger(__name__)


class ChunkRunner:
    """
    Runs one chunk through a pipeline, retrying the whole chunk on transient
    failure.

    After the last attempt every item in the chunk is recorded as failed with
    the final error. Permanent errors (rejected credentials) are not caught
    here: they abort the tick.
    """

    def __init__(self, retry: RetryConfig | None = None) -> None:
        self.retry = retry or RetryConfig()

    async def run(self, pipeline: Pipeline, chunk: list[WorkItem], context_msg: str = "") -> list[ItemOutcome]:
        if not chunk:
            return []
        try:
            return await retry_with_backoff(
                pipeline.dispatch,
                chunk,
                config=self.retry,
                context_msg=context_msg,
            )
        except self.retry.retryable_exceptions as e:
            logger.warning(f"Chunk of {len(chunk)} item(s) failed after {self.retry.max_attempts} attempts: {e}")
            return [
                ItemOutcome.failure(
                    item.asset_id,
                    str(e),
                    size_bytes=item.size_bytes,
                    display_name=item.display_name,
                )
                for item in chunk
            ]
