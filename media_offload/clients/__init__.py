"""
Remote service clients: CDN object storage and image optimization.
"""

from .base import OptimizationClient, RemoteStorageClient
from .cdn_storage import CdnStorageClient
from .optimizer import ImageOptimizerClient
from .types import Failed, OptimizationResult, Optimized, Skipped, decode_result, result_from_dict

__all__ = [
    "RemoteStorageClient",
    "OptimizationClient",
    "CdnStorageClient",
    "ImageOptimizerClient",
    "OptimizationResult",
    "Optimized",
    "Skipped",
    "Failed",
    "decode_result",
    "result_from_dict",
]
