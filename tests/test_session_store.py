"""
Tests for SessionStore.

Covers creation, guarded updates, fixed-window expiry, cancellation and
sweeping, plus backend failures surfacing as StoreUnavailableError.
"""

import asyncio

import pytest

from media_offload.assets import JobKind, SelectionCriteria
from media_offload.config import OrchestratorConfig
from media_offload.exceptions import SessionNotFoundError, SessionStateError, StorageIOError, StoreUnavailableError
from media_offload.sessions import SessionStatus, SessionStore
from media_offload.sessions.types import ProgressReport, parse_session_kind
from media_offload.storage import MemoryKeyValueStore


class BrokenKeyValueStore(MemoryKeyValueStore):
    """Store whose writes fail once ``broken`` is set."""

    def __init__(self, clock):
        super().__init__(clock=clock)
        self.broken = False

    async def set(self, key, value, ttl_seconds=None):
        if self.broken:
            raise StorageIOError("write_json", key, OSError("disk full"))
        await super().set(key, value, ttl_seconds)

    async def get(self, key):
        if self.broken:
            raise OSError("read failed")
        return await super().get(key)


class TestCreate:
    """Tests for session creation."""

    @pytest.mark.asyncio
    async def test_create_freezes_items(self, store):
        session = await store.create(JobKind.MIGRATION, ["a", "b", "c"])

        assert session.status is SessionStatus.RUNNING
        assert session.total == 3
        assert session.processed == session.successful == session.failed == 0
        assert (await store.require(session.session_id)).items == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_session_id_shape(self, store, clock):
        migration = await store.create(JobKind.MIGRATION, ["a"])
        optimization = await store.create(JobKind.OPTIMIZATION, ["a"])

        assert migration.session_id.startswith(f"migration_{int(clock.now)}_")
        assert optimization.session_id.startswith(f"opt_{int(clock.now)}_")
        assert parse_session_kind(optimization.session_id) is JobKind.OPTIMIZATION
        assert migration.session_id != (await store.create(JobKind.MIGRATION, ["a"])).session_id

    @pytest.mark.asyncio
    async def test_criteria_are_recorded(self, store):
        session = await store.create(JobKind.MIGRATION, ["a"], SelectionCriteria(path_prefix="2024/", limit=5))
        stored = await store.require(session.session_id)
        assert stored.criteria == {"mime_types": None, "path_prefix": "2024/", "limit": 5}
        assert SelectionCriteria.from_dict(stored.criteria).limit == 5

    @pytest.mark.asyncio
    async def test_create_fails_when_store_is_down(self, clock):
        kv = BrokenKeyValueStore(clock)
        kv.broken = True
        store = SessionStore(kv, clock=clock)
        with pytest.raises(StoreUnavailableError):
            await store.create(JobKind.MIGRATION, ["a"])

    @pytest.mark.asyncio
    async def test_create_rejects_non_positive_ttl(self, clock):
        kv = MemoryKeyValueStore(clock=clock)
        store = SessionStore(kv, OrchestratorConfig(optimization_ttl_seconds=0), clock=clock)

        with pytest.raises(ValueError, match="TTL must be positive"):
            await store.create(JobKind.OPTIMIZATION, ["a"])
        assert await store.list_sessions() == []

class TestUpdate:
    """Tests for guarded updates."""

    @pytest.mark.asyncio
    async def test_update_merges_fields(self, store):
        session = await store.create(JobKind.MIGRATION, ["a", "b"])
        assert await store.update(session.session_id, {"processed": 1, "successful": 1}) is True

        stored = await store.require(session.session_id)
        assert (stored.processed, stored.successful, stored.failed) == (1, 1, 0)
        assert stored.remaining == ["b"]

    @pytest.mark.asyncio
    async def test_missing_session_returns_false(self, store):
        assert await store.update("migration_1_deadbeef", {"processed": 1}) is False

    @pytest.mark.asyncio
    async def test_processed_cannot_go_backwards(self, store):
        session = await store.create(JobKind.MIGRATION, ["a", "b"])
        await store.update(session.session_id, {"processed": 2, "successful": 2})
        with pytest.raises(ValueError):
            await store.update(session.session_id, {"processed": 1})

    @pytest.mark.asyncio
    async def test_processed_cannot_exceed_total(self, store):
        session = await store.create(JobKind.MIGRATION, ["a"])
        with pytest.raises(ValueError):
            await store.update(session.session_id, {"processed": 2})

    @pytest.mark.asyncio
    async def test_outcomes_cannot_exceed_processed(self, store):
        session = await store.create(JobKind.MIGRATION, ["a", "b"])
        with pytest.raises(ValueError):
            await store.update(session.session_id, {"processed": 1, "successful": 1, "failed": 1})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["items", "total", "kind", "started_at"])
    async def test_immutable_fields(self, store, field):
        session = await store.create(JobKind.MIGRATION, ["a"])
        with pytest.raises(ValueError):
            await store.update(session.session_id, {field: None})

    @pytest.mark.asyncio
    async def test_unknown_field(self, store):
        session = await store.create(JobKind.MIGRATION, ["a"])
        with pytest.raises(ValueError):
            await store.update(session.session_id, {"colour": "blue"})

    @pytest.mark.asyncio
    async def test_terminal_session_rejects_updates(self, store):
        session = await store.create(JobKind.MIGRATION, ["a"])
        await store.cancel(session.session_id)
        with pytest.raises(SessionStateError):
            await store.update(session.session_id, {"processed": 1})

    @pytest.mark.asyncio
    async def test_concurrent_updates_are_serialized(self, store):
        """Concurrent writers of different fields do not overwrite each other."""
        session = await store.create(JobKind.MIGRATION, [str(i) for i in range(10)])

        await asyncio.gather(
            store.update(session.session_id, {"processed": 3, "successful": 3}),
            store.update(session.session_id, {"errors": ["x: boom"]}),
            store.update(session.session_id, {"last_tick": [{"name": "x"}]}),
        )

        stored = await store.require(session.session_id)
        assert stored.processed == 3
        assert stored.errors == ["x: boom"]
        assert stored.last_tick == [{"name": "x"}]


class TestExpiry:
    """Fixed-window TTLs per job kind."""

    @pytest.mark.asyncio
    async def test_optimization_sessions_expire_after_two_hours(self, store, clock):
        session = await store.create(JobKind.OPTIMIZATION, ["a"])
        clock.advance(2 * 3600 - 1)
        assert await store.get(session.session_id) is not None
        clock.advance(1)
        assert await store.get(session.session_id) is None

    @pytest.mark.asyncio
    async def test_migration_sessions_live_a_day(self, store, clock):
        session = await store.create(JobKind.MIGRATION, ["a"])
        clock.advance(23 * 3600)
        assert await store.get(session.session_id) is not None
        clock.advance(3600)
        assert await store.get(session.session_id) is None

    @pytest.mark.asyncio
    async def test_updates_do_not_extend_the_window(self, store, clock):
        session = await store.create(JobKind.OPTIMIZATION, ["a", "b"])
        clock.advance(3600)
        await store.update(session.session_id, {"processed": 1, "successful": 1})
        clock.advance(3600)
        assert await store.get(session.session_id) is None

    @pytest.mark.asyncio
    async def test_expired_session_is_not_recreated(self, store, clock):
        session = await store.create(JobKind.OPTIMIZATION, ["a"])
        clock.advance(3 * 3600)
        assert await store.update(session.session_id, {"processed": 1}) is False
        assert await store.get(session.session_id) is None

    @pytest.mark.asyncio
    async def test_require_raises_when_expired(self, store, clock):
        session = await store.create(JobKind.OPTIMIZATION, ["a"])
        clock.advance(3 * 3600)
        with pytest.raises(SessionNotFoundError):
            await store.require(session.session_id)

    @pytest.mark.asyncio
    async def test_custom_ttls(self, kv, clock):
        store = SessionStore(kv, OrchestratorConfig(migration_ttl_seconds=60), clock=clock)
        session = await store.create(JobKind.MIGRATION, ["a"])
        clock.advance(60)
        assert await store.get(session.session_id) is None


class TestCancel:
    """Tests for cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, store):
        session = await store.create(JobKind.MIGRATION, ["a", "b"])
        await store.update(session.session_id, {"processed": 1, "successful": 1})

        assert await store.cancel(session.session_id) is True
        assert await store.cancel(session.session_id) is True

        stored = await store.require(session.session_id)
        assert stored.status is SessionStatus.CANCELLED
        assert stored.processed == 1
        assert stored.completed_at is not None

    @pytest.mark.asyncio
    async def test_cancel_unknown_session(self, store):
        assert await store.cancel("opt_1_00000000") is False

    @pytest.mark.asyncio
    async def test_cancelled_report_message(self, store):
        session = await store.create(JobKind.MIGRATION, ["a", "b"])
        await store.cancel(session.session_id)
        report = ProgressReport.from_session(await store.require(session.session_id))
        assert report.completed is False
        assert report.message == "Migration cancelled after 0 of 2 files."


class TestListAndSweep:
    """Tests for listing and sweeping."""

    @pytest.mark.asyncio
    async def test_list_sessions_by_kind(self, store, clock):
        first = await store.create(JobKind.MIGRATION, ["a"])
        clock.advance(1)
        await store.create(JobKind.OPTIMIZATION, ["b"])
        clock.advance(1)
        third = await store.create(JobKind.MIGRATION, ["c"])

        migrations = await store.list_sessions(JobKind.MIGRATION)
        assert [s.session_id for s in migrations] == [first.session_id, third.session_id]
        assert len(await store.list_sessions()) == 3

    @pytest.mark.asyncio
    async def test_sweep_removes_only_expired(self, store, kv, clock):
        await store.create(JobKind.OPTIMIZATION, ["a"])
        keep = await store.create(JobKind.MIGRATION, ["b"])
        clock.advance(3 * 3600)

        assert await store.sweep_expired() == 1
        assert len(kv) == 1
        assert await store.get(keep.session_id) is not None

    @pytest.mark.asyncio
    async def test_delete(self, store):
        session = await store.create(JobKind.MIGRATION, ["a"])
        assert await store.delete(session.session_id) is True
        assert await store.get(session.session_id) is None

    @pytest.mark.asyncio
    async def test_read_failure_is_store_unavailable(self, clock):
        kv = BrokenKeyValueStore(clock)
        store = SessionStore(kv, clock=clock)
        session = await store.create(JobKind.MIGRATION, ["a"])
        kv.broken = True
        with pytest.raises(StoreUnavailableError):
            await store.get(session.session_id)
