"""
Abstract key/value store with per-key expiry.

The session store depends only on this interface, so any engine with
expiry (in-process dict, JSON files, Redis, ...) can back it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class KeyValueStore(ABC):
    """
    Abstract base class for TTL-bounded key/value storage.

    Values are JSON-compatible mappings. Implementations must guarantee that
    a reader never observes a partially written value, and that an expired
    key behaves exactly like a missing key.
    """

    @abstractmethod
    async def get(self, key: str) -> dict[str, Any] | None:
        """
        Get the value stored under a key.

        Args:
            key: Key to look up

        Returns:
            A private copy of the stored value, or None if missing or expired
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: dict[str, Any], ttl_seconds: float | None = None) -> None:
        """
        Store a value, replacing any previous one.

        Args:
            key: Key to write
            value: JSON-compatible mapping
            ttl_seconds: Seconds until the key expires; None keeps it forever
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Remove a key.

        Returns:
            True if the key existed
        """
        pass

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """
        List live (non-expired) keys starting with ``prefix``.
        """
        pass

    async def purge_expired(self) -> int:
        """Eagerly drop expired keys. Returns the number removed."""
        return 0

    async def close(self) -> None:
        """Release resources held by the store."""
        return None

    async def __aenter__(self) -> KeyValueStore:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
