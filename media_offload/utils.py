"""Shared utility functions for the offload orchestrator."""

from __future__ import annotations

import hashlib
import time

_SIZE_UNITS = (
    (1024**3, "GB"),
    (1024**2, "MB"),
    (1024, "KB"),
)


def format_file_size(size_bytes: int | float) -> str:
    """Format a byte count for display.

    Examples:
        >>> format_file_size(0)
        '0 bytes'
        >>> format_file_size(1536)
        '1.50 KB'
    """
    size_bytes = max(size_bytes, 0)
    for threshold, unit in _SIZE_UNITS:
        if size_bytes >= threshold:
            return f"{size_bytes / threshold:,.2f} {unit}"
    if size_bytes == 1:
        return "1 byte"
    return f"{int(size_bytes)} bytes"


def progress_percentage(processed: int, total: int) -> float:
    """Percentage of ``total`` covered by ``processed``, rounded to 2 places.

    Returns 0 when total is 0.
    """
    if total <= 0:
        return 0
    return round(100 * processed / total, 2)


def add_version_to_url(url: str, now: float | None = None) -> str:
    """Append a short cache-busting version parameter to a URL."""
    stamp = str(int(now if now is not None else time.time()))
    version = hashlib.md5(stamp.encode("utf-8")).hexdigest()[:3]
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}v={version}"


def chunked(items: list, size: int) -> list[list]:
    """Split ``items`` into consecutive lists of at most ``size`` elements."""
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got {size}")
    return [items[i : i + size] for i in range(0, len(items), size)]
