"""
Session store.

Namespaced, TTL-bounded persistence of Session records on top of any
KeyValueStore. Every record lives under ``session:{session_id}``.

Expiry is a fixed window measured from ``started_at``: each write re-sets the
key's TTL to whatever is left of that window, so activity never extends a
session's life.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Callable
from typing import Any

from ..assets.types import JobKind, SelectionCriteria
from ..config import OrchestratorConfig
from ..exceptions import SessionNotFoundError, SessionStateError, StorageIOError, StoreUnavailableError
from ..storage.base import KeyValueStore
from .types import Session, SessionStatus, new_session_id

logger = logging.getLogger(__name__)

KEY_PREFIX = "session:"

# Fields fixed at creation
_IMMUTABLE_FIELDS = frozenset({"session_id", "kind", "total", "items", "started_at"})
_FIELDS = frozenset(f.name for f in dataclasses.fields(Session))


def _key(session_id: str) -> str:
    return f"{KEY_PREFIX}{session_id}"


class SessionStore:
    """
    Durable storage of Session records with kind-specific TTLs.

    Read-modify-write operations on one session are serialized by a
    per-session lock, and the backing store guarantees whole-record
    visibility, so a reader never sees half an update.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        config: OrchestratorConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.kv = kv
        config = config or OrchestratorConfig()
        self._ttls = {
            JobKind.MIGRATION: float(config.migration_ttl_seconds),
            JobKind.OPTIMIZATION: float(config.optimization_ttl_seconds),
        }
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    def ttl_for(self, kind: JobKind) -> float:
        return self._ttls[kind]

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def _remaining_ttl(self, session: Session) -> float:
        return session.started_at + self.ttl_for(session.kind) - self._clock()

    # -------------------------------------------------------------------------
    # Raw access, with backend failures mapped to StoreUnavailableError
    # -------------------------------------------------------------------------

    async def _read(self, session_id: str) -> Session | None:
        try:
            data = await self.kv.get(_key(session_id))
        except (StorageIOError, OSError) as e:
            raise StoreUnavailableError("read", e) from e
        if data is None:
            return None
        try:
            return Session.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise StoreUnavailableError("decode", e) from e

    async def _write(self, session: Session, operation: str) -> bool:
        remaining = self._remaining_ttl(session)
        if remaining <= 0:
            return False
        try:
            await self.kv.set(_key(session.session_id), session.to_dict(), ttl_seconds=remaining)
        except (StorageIOError, OSError) as e:
            raise StoreUnavailableError(operation, e) from e
        return True

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def create(
        self,
        kind: JobKind,
        items: list[str],
        criteria: SelectionCriteria | None = None,
    ) -> Session:
        """
        Create a running session over a frozen list of item IDs.

        Raises:
            StoreUnavailableError: If the record could not be written. The job
                must be treated as not started.
            ValueError: The session TTL for this kind is not positive
        """
        now = self._clock()
        session = Session(
            session_id=new_session_id(kind, now),
            kind=kind,
            status=SessionStatus.RUNNING,
            total=len(items),
            items=list(items),
            started_at=now,
            criteria=criteria.to_dict() if criteria else {},
            updated_at=now,
        )
        if not await self._write(session, "create"):
            raise ValueError(f"{kind.value} session TTL must be positive, got {self.ttl_for(kind)}")
        logger.info(f"Created {kind.value} session {session.session_id} with {session.total} items")
        return session

    async def get(self, session_id: str) -> Session | None:
        return await self._read(session_id)

    async def require(self, session_id: str) -> Session:
        """Get a session or raise SessionNotFoundError."""
        session = await self._read(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def update(self, session_id: str, changes: dict[str, Any]) -> bool:
        """
        Merge named fields into a running session.

        Args:
            session_id: Session to update
            changes: Field name -> new value (Session attribute types)

        Returns:
            False if the session no longer exists (expired or swept). Callers
            must treat that as "session lost" and not recreate it.

        Raises:
            SessionStateError: If the session is completed or cancelled
            ValueError: For unknown or immutable fields, or counter regressions
        """
        unknown = set(changes) - _FIELDS
        if unknown:
            raise ValueError(f"Unknown session fields: {sorted(unknown)}")
        frozen = set(changes) & _IMMUTABLE_FIELDS
        if frozen:
            raise ValueError(f"Session fields are immutable: {sorted(frozen)}")

        async with self._lock_for(session_id):
            session = await self._read(session_id)
            if session is None:
                return False
            if session.status.is_terminal:
                raise SessionStateError(session_id, session.status.value)

            updated = dataclasses.replace(session, **changes)
            if updated.processed < session.processed:
                raise ValueError("processed count cannot decrease")
            if updated.processed > updated.total:
                raise ValueError(f"processed {updated.processed} exceeds total {updated.total}")
            if updated.successful + updated.failed > updated.processed:
                raise ValueError("successful + failed cannot exceed processed")

            if "updated_at" not in changes:
                updated.updated_at = self._clock()
            return await self._write(updated, "update")

    async def cancel(self, session_id: str) -> bool:
        """
        Mark a session cancelled.

        Returns:
            True if the session is now terminal (including when it already
            was), False if it does not exist.
        """
        async with self._lock_for(session_id):
            session = await self._read(session_id)
            if session is None:
                return False
            if session.status.is_terminal:
                return True
            now = self._clock()
            session.status = SessionStatus.CANCELLED
            session.updated_at = now
            session.completed_at = now
            written = await self._write(session, "cancel")
        if written:
            logger.info(f"Cancelled session {session_id} at {session.processed}/{session.total}")
        return written

    async def delete(self, session_id: str) -> bool:
        async with self._lock_for(session_id):
            try:
                removed = await self.kv.delete(_key(session_id))
            except (StorageIOError, OSError) as e:
                raise StoreUnavailableError("delete", e) from e
        self._locks.pop(session_id, None)
        return removed

    async def list_sessions(self, kind: JobKind | None = None) -> list[Session]:
        """All live sessions, oldest first."""
        try:
            keys = await self.kv.keys(KEY_PREFIX)
        except (StorageIOError, OSError) as e:
            raise StoreUnavailableError("list", e) from e
        sessions = []
        for key in keys:
            session = await self._read(key[len(KEY_PREFIX) :])
            if session is not None and (kind is None or session.kind is kind):
                sessions.append(session)
        return sorted(sessions, key=lambda s: s.started_at)

    async def sweep_expired(self) -> int:
        """
        Remove every session whose window has elapsed.

        Safe to run alongside other operations: each removal takes the same
        per-session lock as updates.

        Returns:
            Number of records removed
        """
        try:
            removed = await self.kv.purge_expired()
            keys = await self.kv.keys(KEY_PREFIX)
        except (StorageIOError, OSError) as e:
            raise StoreUnavailableError("sweep", e) from e

        for key in keys:
            session_id = key[len(KEY_PREFIX) :]
            async with self._lock_for(session_id):
                try:
                    session = await self._read(session_id)
                except StoreUnavailableError as e:
                    logger.warning(f"Skipping unreadable session {session_id} during sweep: {e}")
                    continue
                if session is None or self._remaining_ttl(session) > 0:
                    continue
                try:
                    await self.kv.delete(key)
                except (StorageIOError, OSError) as e:
                    raise StoreUnavailableError("sweep", e) from e
            self._locks.pop(session_id, None)
            removed += 1

        if removed:
            logger.info(f"Swept {removed} expired session record(s)")
        return removed
