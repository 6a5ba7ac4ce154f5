"""
File-backed key/value store with expiry.

Each key is one JSON document in a directory:

    {directory}/{quoted-key}.json  ->  {"key": ..., "expires_at": ..., "value": {...}}

Writes go through temp file + rename, so concurrent readers (including other
processes polling the same session) see either the old or the new record,
never a mix.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote

import aiofiles.os

from ..exceptions import StorageIOError
from .base import KeyValueStore
from .file_ops import ensure_directory, read_json, remove_file, write_json_atomic

logger = logging.getLogger(__name__)

_SUFFIX = ".json"


class FileKeyValueStore(KeyValueStore):
    """Directory of JSON documents, one per key."""

    def __init__(self, directory: Path | str, clock: Callable[[], float] = time.time) -> None:
        self.directory = Path(directory)
        self._clock = clock

    def _path_for(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}{_SUFFIX}"

    def _is_expired(self, expires_at: float | None) -> bool:
        return expires_at is not None and expires_at <= self._clock()

    async def get(self, key: str) -> dict[str, Any] | None:
        path = self._path_for(key)
        document = await read_json(path)
        if document is None:
            return None
        if self._is_expired(document.get("expires_at")):
            await remove_file(path)
            return None
        return document.get("value")

    async def set(self, key: str, value: dict[str, Any], ttl_seconds: float | None = None) -> None:
        await ensure_directory(self.directory)
        expires_at = None if ttl_seconds is None else self._clock() + ttl_seconds
        await write_json_atomic(
            self._path_for(key),
            {"key": key, "expires_at": expires_at, "value": value},
        )

    async def delete(self, key: str) -> bool:
        return await remove_file(self._path_for(key))

    async def _list_keys(self) -> list[str]:
        try:
            if not await aiofiles.os.path.exists(self.directory):
                return []
            names = await aiofiles.os.listdir(self.directory)
        except OSError as e:
            raise StorageIOError("list_keys", str(self.directory), e) from e
        return [
            unquote(name[: -len(_SUFFIX)])
            for name in sorted(names)
            if name.endswith(_SUFFIX) and not name.startswith(".tmp_")
        ]

    async def keys(self, prefix: str = "") -> list[str]:
        live = []
        for key in await self._list_keys():
            if key.startswith(prefix) and await self.get(key) is not None:
                live.append(key)
        return live

    async def purge_expired(self) -> int:
        removed = 0
        for key in await self._list_keys():
            path = self._path_for(key)
            try:
                document = await read_json(path)
            except StorageIOError as e:
                # Unreadable leftovers are removed rather than retried forever
                logger.warning(f"Removing unreadable state file {path}: {e}")
                await remove_file(path)
                removed += 1
                continue
            if document is not None and self._is_expired(document.get("expires_at")):
                if await remove_file(path):
                    removed += 1
        return removed
