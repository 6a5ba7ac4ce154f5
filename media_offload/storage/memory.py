"""
In-process key/value store with expiry.

Values are kept as serialized JSON so every reader gets an independent copy
and a value can never be observed half-updated.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from typing import Any

from .base import KeyValueStore


class MemoryKeyValueStore(KeyValueStore):
    """Dictionary-backed store. Suitable for a single process and for tests."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        # key -> (expires_at or None, serialized value)
        self._entries: dict[str, tuple[float | None, str]] = {}

    def _is_expired(self, expires_at: float | None) -> bool:
        return expires_at is not None and expires_at <= self._clock()

    async def get(self, key: str) -> dict[str, Any] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, payload = entry
        if self._is_expired(expires_at):
            self._entries.pop(key, None)
            return None
        return json.loads(payload)

    async def set(self, key: str, value: dict[str, Any], ttl_seconds: float | None = None) -> None:
        expires_at = None if ttl_seconds is None else self._clock() + ttl_seconds
        self._entries[key] = (expires_at, json.dumps(value, default=str))

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> list[str]:
        return [
            key
            for key, (expires_at, _) in list(self._entries.items())
            if key.startswith(prefix) and not self._is_expired(expires_at)
        ]

    async def purge_expired(self) -> int:
        expired = [k for k, (exp, _) in list(self._entries.items()) if self._is_expired(exp)]
        for key in expired:
            self._entries.pop(key, None)
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
