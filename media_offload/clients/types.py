"""
Typed per-item results from the image optimization service.

The service answers with loosely shaped JSON; it is decoded exactly once,
at the client boundary, into one of three variants.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Optimized:
    """The service produced a smaller image."""

    original_size: int
    compressed_size: int
    compression_ratio: float
    format: str

    @property
    def bytes_saved(self) -> int:
        return max(self.original_size - self.compressed_size, 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "result": "optimized",
            "original_size": self.original_size,
            "compressed_size": self.compressed_size,
            "compression_ratio": self.compression_ratio,
            "format": self.format,
            "bytes_saved": self.bytes_saved,
        }


@dataclass(frozen=True)
class Skipped:
    """The service declined to change the image (already optimal, below threshold)."""

    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"result": "skipped", "reason": self.reason}


@dataclass(frozen=True)
class Failed:
    """The service rejected this particular image."""

    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"result": "failed", "error": self.error}


OptimizationResult = Optimized | Skipped | Failed


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def decode_result(raw: Any) -> OptimizationResult:
    """
    Decode one entry of the service's ``results`` array.

    Anything that is not recognisably a success or a skip is a failure, so a
    malformed entry can never be counted as optimized.
    """
    if not isinstance(raw, dict):
        return Failed("malformed result from optimization service")

    if raw.get("skipped"):
        reason = raw.get("reason") or raw.get("message") or "already optimized"
        return Skipped(str(reason))

    if not raw.get("success"):
        error = raw.get("error") or raw.get("message") or "optimization failed"
        return Failed(str(error))

    data = raw.get("data")
    if not isinstance(data, dict):
        return Failed("optimization succeeded but returned no data")

    original = _as_int(data.get("originalSize"))
    compressed = _as_int(data.get("compressedSize"))
    ratio = data.get("compressionRatio")
    if ratio is None:
        ratio = round((original - compressed) / original * 100, 1) if original else 0.0
    return Optimized(
        original_size=original,
        compressed_size=compressed,
        compression_ratio=_as_float(ratio),
        format=str(data.get("format") or "unknown"),
    )


def result_from_dict(data: dict[str, Any] | None) -> OptimizationResult | None:
    """Rebuild a result persisted with ``to_dict`` (used by the session record)."""
    if not data:
        return None
    kind = data.get("result")
    if kind == "optimized":
        return Optimized(
            original_size=_as_int(data.get("original_size")),
            compressed_size=_as_int(data.get("compressed_size")),
            compression_ratio=_as_float(data.get("compression_ratio")),
            format=str(data.get("format") or "unknown"),
        )
    if kind == "skipped":
        return Skipped(str(data.get("reason") or ""))
    if kind == "failed":
        return Failed(str(data.get("error") or ""))
    return None
