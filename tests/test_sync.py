"""
Tests for restoring offloaded assets and verifying their remote copies.
"""

import pytest

from media_offload.assets import MigrationRecord
from media_offload.exceptions import (
    AssetNotMigratedError,
    AuthenticationError,
    ConfigurationError,
    PermanentTransportError,
    TransientTransportError,
)
from media_offload.orchestrator import RemoteSync, RetryConfig, SyncStatus

from .fakes import FakeStorageClient, make_item


@pytest.fixture
def sync(storage_client, repository):
    return RemoteSync(storage_client, repository, RetryConfig(max_retries=1, backoff_base=0.0))


async def offload(repository, storage_client, item, variants=(), local=True):
    """Add an asset that was already uploaded, optionally with its local file gone."""
    repository.add(item)
    remote_path = item.asset_id
    storage_client.stored.add(remote_path)
    storage_client.stored.update(variants)
    await repository.mark_migrated(
        MigrationRecord(
            asset_id=item.asset_id,
            remote_url=storage_client.public_url(remote_path),
            remote_path=remote_path,
            size_bytes=item.size_bytes,
            mime_type=item.mime_type,
            variant_urls={path: storage_client.public_url(path) for path in variants},
        )
    )
    if not local:
        repository.vanish(item.asset_id)


class TestRestore:
    @pytest.mark.asyncio
    async def test_downloads_missing_file_and_clears_record(self, sync, repository, storage_client):
        await offload(repository, storage_client, make_item("2024/05/logo.svg"), local=False)

        record = await sync.restore("2024/05/logo.svg")

        assert record.remote_path == "2024/05/logo.svg"
        assert storage_client.downloads == [("2024/05/logo.svg", repository.items["2024/05/logo.svg"].local_path)]
        assert repository.cleared == ["2024/05/logo.svg"]
        assert await repository.get_migration("2024/05/logo.svg") is None
        item = await repository.get("2024/05/logo.svg")
        assert item.is_remote is False
        assert item.remote_url is None
        assert storage_client.deleted == []

    @pytest.mark.asyncio
    async def test_restores_variants_beside_original(self, sync, repository, storage_client):
        item = make_item("2024/05/photo.jpg", mime_type="image/jpeg")
        await offload(repository, storage_client, item, variants=("2024/05/photo-150x150.jpg",), local=False)

        await sync.restore("2024/05/photo.jpg")

        downloaded = dict(storage_client.downloads)
        assert downloaded["2024/05/photo-150x150.jpg"] == item.local_path.parent / "photo-150x150.jpg"

    @pytest.mark.asyncio
    async def test_missing_variant_does_not_block_restore(self, sync, repository, storage_client):
        item = make_item("2024/05/photo.jpg", mime_type="image/jpeg")
        await offload(repository, storage_client, item, variants=("2024/05/photo-150x150.jpg",), local=False)
        storage_client.stored.discard("2024/05/photo-150x150.jpg")

        await sync.restore("2024/05/photo.jpg")

        assert [path for path, _ in storage_client.downloads] == ["2024/05/photo.jpg"]
        assert repository.cleared == ["2024/05/photo.jpg"]

    @pytest.mark.asyncio
    async def test_present_local_file_is_not_downloaded(self, sync, repository, storage_client):
        await offload(repository, storage_client, make_item("a.svg"))

        await sync.restore("a.svg")

        assert storage_client.downloads == []
        assert repository.cleared == ["a.svg"]

    @pytest.mark.asyncio
    async def test_delete_remote_removes_all_copies(self, sync, repository, storage_client):
        item = make_item("2024/05/photo.jpg", mime_type="image/jpeg")
        await offload(repository, storage_client, item, variants=("2024/05/photo-150x150.jpg",), local=False)

        await sync.restore("2024/05/photo.jpg", delete_remote=True)

        assert storage_client.deleted == ["2024/05/photo.jpg", "2024/05/photo-150x150.jpg"]
        assert storage_client.stored == set()

    @pytest.mark.asyncio
    async def test_asset_never_offloaded(self, sync, repository):
        repository.add(make_item("a.svg"))

        with pytest.raises(AssetNotMigratedError) as exc_info:
            await sync.restore("a.svg")

        assert exc_info.value.asset_id == "a.svg"
        assert repository.cleared == []

    @pytest.mark.asyncio
    async def test_failed_download_keeps_record(self, sync, repository, storage_client):
        await offload(repository, storage_client, make_item("a.svg"), local=False)
        storage_client.stored.discard("a.svg")

        with pytest.raises(PermanentTransportError):
            await sync.restore("a.svg")

        assert repository.cleared == []
        assert await repository.get_migration("a.svg") is not None

    @pytest.mark.asyncio
    async def test_transient_download_failure_is_retried(self, sync, repository, storage_client):
        await offload(repository, storage_client, make_item("a.svg"), local=False)
        attempts = []
        original = storage_client.download

        async def flaky_download(remote_path, local_path):
            attempts.append(remote_path)
            if len(attempts) == 1:
                raise TransientTransportError("remote storage", "connection reset")
            await original(remote_path, local_path)

        storage_client.download = flaky_download

        await sync.restore("a.svg")

        assert attempts == ["a.svg", "a.svg"]
        assert repository.cleared == ["a.svg"]


class TestRestoreAll:
    @pytest.mark.asyncio
    async def test_collects_per_asset_failures(self, sync, repository, storage_client):
        await offload(repository, storage_client, make_item("a.svg"), local=False)
        await offload(repository, storage_client, make_item("b.svg"), local=False)
        storage_client.stored.discard("a.svg")

        report = await sync.restore_all()

        assert report.total == 2
        assert report.successful == 1
        assert report.failed == 1
        assert "404" in report.errors["a.svg"]
        assert repository.cleared == ["b.svg"]

    @pytest.mark.asyncio
    async def test_explicit_ids_include_unknown_assets(self, sync, repository, storage_client):
        await offload(repository, storage_client, make_item("a.svg"), local=False)

        report = await sync.restore_all(["a.svg", "never.svg"])

        assert report.to_dict() == {
            "total": 2,
            "successful": 1,
            "failed": 1,
            "errors": {"never.svg": "Asset is not offloaded to remote storage: never.svg"},
        }

    @pytest.mark.asyncio
    async def test_rejected_credentials_abort_run(self, sync, repository, storage_client):
        await offload(repository, storage_client, make_item("a.svg"), local=False)
        await offload(repository, storage_client, make_item("b.svg"), local=False)
        storage_client.errors["a.svg"] = AuthenticationError("remote storage", status_code=401)

        with pytest.raises(AuthenticationError):
            await sync.restore_all()

        assert repository.cleared == []

    @pytest.mark.asyncio
    async def test_unconfigured_storage_is_rejected_up_front(self, repository, storage_client):
        await offload(repository, storage_client, make_item("a.svg"), local=False)
        sync = RemoteSync(FakeStorageClient(configured=False), repository)

        with pytest.raises(ConfigurationError):
            await sync.restore_all()

        assert repository.cleared == []


class TestVerify:
    @pytest.mark.asyncio
    async def test_classifies_every_offloaded_asset(self, sync, repository, storage_client):
        await offload(repository, storage_client, make_item("a.svg"))
        await offload(repository, storage_client, make_item("b.svg"), local=False)
        await offload(repository, storage_client, make_item("c.svg"))
        await offload(repository, storage_client, make_item("d.svg"), local=False)
        storage_client.stored -= {"c.svg", "d.svg"}
        repository.add(make_item("local-only.svg"))

        report = await sync.verify()

        statuses = {check.asset_id: check.status for check in report.checks}
        assert statuses == {
            "a.svg": SyncStatus.SYNCED,
            "b.svg": SyncStatus.MISSING_LOCAL,
            "c.svg": SyncStatus.MISSING_REMOTE,
            "d.svg": SyncStatus.MISSING_BOTH,
        }
        assert report.counts() == {
            "synced": 1,
            "missing_local": 1,
            "missing_remote": 1,
            "missing_both": 1,
            "unknown": 0,
        }

    @pytest.mark.asyncio
    async def test_unreachable_remote_is_unknown(self, sync, repository, storage_client):
        await offload(repository, storage_client, make_item("a.svg"))
        await offload(repository, storage_client, make_item("b.svg"))
        storage_client.errors["a.svg"] = TransientTransportError("remote storage", "timed out")

        report = await sync.verify()

        check = report.checks[0]
        assert check.status is SyncStatus.UNKNOWN
        assert check.remote_exists is None
        assert "timed out" in check.error
        assert report.checks[1].status is SyncStatus.SYNCED
        assert report.to_dict()["unknown"] == 1

    @pytest.mark.asyncio
    async def test_rejected_credentials_abort_verify(self, sync, repository, storage_client):
        await offload(repository, storage_client, make_item("a.svg"))
        storage_client.errors["a.svg"] = AuthenticationError("remote storage", status_code=401)

        with pytest.raises(AuthenticationError):
            await sync.verify()

    @pytest.mark.asyncio
    async def test_remote_only_lists_assets_without_local_file(self, sync, repository, storage_client):
        await offload(repository, storage_client, make_item("a.svg"))
        await offload(repository, storage_client, make_item("b.svg"), local=False)

        records = await sync.remote_only()

        assert [record.asset_id for record in records] == ["b.svg"]
