"""
Durable optimization queue and its background worker.
"""

from .store import OptimizationQueue, QueueConfig
from .types import QueueEntry, QueuePriority, QueueStatus
from .worker import QueueRunResult, QueueWorker

__all__ = [
    "OptimizationQueue",
    "QueueConfig",
    "QueueEntry",
    "QueuePriority",
    "QueueStatus",
    "QueueWorker",
    "QueueRunResult",
]
