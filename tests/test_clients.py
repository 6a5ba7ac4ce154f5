"""
Tests for the CDN storage and image optimizer clients.

Both clients talk to a local aiohttp application standing in for the real
services.
"""

import json

import pytest
from aiohttp import test_utils, web

from media_offload.clients import CdnStorageClient, Failed, ImageOptimizerClient, Optimized, Skipped
from media_offload.clients.http import classify_status
from media_offload.clients.types import decode_result, result_from_dict
from media_offload.config import OptimizerClientConfig, StorageClientConfig
from media_offload.exceptions import (
    AuthenticationError,
    PermanentTransportError,
    StorageIOError,
    TransientTransportError,
)

API_KEY = "secret-key"


class FakeService:
    """Records requests and answers with scripted statuses and bodies."""

    def __init__(self):
        self.requests: list[dict] = []
        self.status: int | None = None
        self.body: object = None
        self.stored: dict[str, bytes] = {}

    def _reply(self, default_status: int, default_body: object = None) -> web.Response:
        status = self.status or default_status
        body = self.body if self.body is not None else default_body
        if body is None:
            return web.Response(status=status)
        return web.json_response(body, status=status)

    async def put_file(self, request: web.Request) -> web.Response:
        payload = await request.read()
        self.requests.append({"method": "PUT", "path": request.path, "headers": dict(request.headers)})
        if request.headers.get("AccessKey") != API_KEY:
            return web.json_response({"Message": "Unauthorized"}, status=401)
        self.stored[request.match_info["path"]] = payload
        return self._reply(201)

    async def delete_file(self, request: web.Request) -> web.Response:
        self.requests.append({"method": "DELETE", "path": request.path})
        path = request.match_info["path"]
        if path not in self.stored:
            return self._reply(404)
        del self.stored[path]
        return self._reply(200)

    async def list_zone(self, request: web.Request) -> web.Response:
        if request.headers.get("AccessKey") != API_KEY:
            return web.json_response({"Message": "Unauthorized"}, status=401)
        return self._reply(200, [{"ObjectName": name, "IsDirectory": False} for name in sorted(self.stored)])

    async def public_file(self, request: web.Request) -> web.Response:
        path = request.match_info["path"]
        if self.status:
            return web.Response(status=self.status)
        if path not in self.stored:
            return web.Response(status=404, text="Not Found")
        return web.Response(body=self.stored[path])

    async def optimize(self, request: web.Request) -> web.Response:
        self.requests.append({"method": "POST", "json": await request.json(), "headers": dict(request.headers)})
        return self._reply(200, {"success": True, "results": []})

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_put("/zone/{path:.*}", self.put_file)
        app.router.add_delete("/zone/{path:.*}", self.delete_file)
        app.router.add_get("/zone/", self.list_zone)
        app.router.add_get("/files/{path:.*}", self.public_file)
        app.router.add_post("/v1/images/wp/optimize", self.optimize)
        return app


@pytest.fixture
async def service():
    fake = FakeService()
    async with test_utils.TestServer(fake.app()) as server:
        fake.base_url = str(server.make_url("/")).rstrip("/")
        yield fake


@pytest.fixture
async def storage(service):
    client = CdnStorageClient(
        StorageClientConfig(
            api_key=API_KEY,
            storage_zone="zone",
            base_url=service.base_url,
            custom_hostname=f"{service.base_url}/files",
        )
    )
    yield client
    await client.close()


@pytest.fixture
async def optimizer_client(service):
    client = ImageOptimizerClient(
        OptimizerClientConfig(api_key=API_KEY, quality=80),
        endpoint=f"{service.base_url}/v1/images/wp/optimize",
    )
    yield client
    await client.close()


class TestStatusClassification:
    """Tests for classify_status."""

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth(self, status):
        assert isinstance(classify_status("svc", status, ""), AuthenticationError)

    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504, 599])
    def test_transient(self, status):
        assert isinstance(classify_status("svc", status, "x"), TransientTransportError)

    @pytest.mark.parametrize("status", [400, 404, 413, 422])
    def test_permanent(self, status):
        error = classify_status("svc", status, "x")
        assert isinstance(error, PermanentTransportError)
        assert not isinstance(error, AuthenticationError)
        assert error.status_code == status


class TestCdnStorageClient:
    """Tests for the storage zone client."""

    def test_public_url_default_host(self):
        client = CdnStorageClient(StorageClientConfig(api_key="k", storage_zone="media"))
        assert client.public_url("/2024/logo.svg") == "https://media.b-cdn.net/2024/logo.svg"

    def test_public_url_custom_hostname(self):
        config = StorageClientConfig(api_key="k", storage_zone="media", custom_hostname="cdn.example.com/")
        client = CdnStorageClient(config)
        assert client.public_url("logo.svg") == "https://cdn.example.com/logo.svg"

    def test_validate_configuration(self):
        assert CdnStorageClient(StorageClientConfig()).validate_configuration() == [
            "storage API key is required",
            "storage zone is required",
        ]

    @pytest.mark.asyncio
    async def test_upload(self, service, storage, tmp_path):
        source = tmp_path / "logo.svg"
        source.write_bytes(b"<svg/>")

        url = await storage.upload(source, "2024/logo.svg")

        assert url == f"{service.base_url}/files/2024/logo.svg"
        assert service.stored == {"2024/logo.svg": b"<svg/>"}
        assert service.requests[0]["headers"]["AccessKey"] == API_KEY

    @pytest.mark.asyncio
    async def test_upload_with_bad_key(self, service, tmp_path):
        source = tmp_path / "logo.svg"
        source.write_bytes(b"<svg/>")
        client = CdnStorageClient(StorageClientConfig(api_key="wrong", storage_zone="zone", base_url=service.base_url))
        try:
            with pytest.raises(AuthenticationError) as exc_info:
                await client.upload(source, "logo.svg")
        finally:
            await client.close()
        assert exc_info.value.status_code == 401
        assert exc_info.value.reason == "Unauthorized"

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self, service, storage, tmp_path):
        source = tmp_path / "logo.svg"
        source.write_bytes(b"<svg/>")
        service.status = 503

        with pytest.raises(TransientTransportError):
            await storage.upload(source, "logo.svg")

    @pytest.mark.asyncio
    async def test_rejected_upload_is_permanent(self, service, storage, tmp_path):
        source = tmp_path / "logo.svg"
        source.write_bytes(b"<svg/>")
        service.status = 400
        service.body = {"Message": "Invalid path"}

        with pytest.raises(PermanentTransportError) as exc_info:
            await storage.upload(source, "logo.svg")
        assert exc_info.value.reason == "Invalid path"

    @pytest.mark.asyncio
    async def test_missing_local_file(self, storage, tmp_path):
        with pytest.raises(StorageIOError):
            await storage.upload(tmp_path / "nope.svg", "nope.svg")

    @pytest.mark.asyncio
    async def test_unreachable_host_is_transient(self, tmp_path):
        source = tmp_path / "logo.svg"
        source.write_bytes(b"<svg/>")
        client = CdnStorageClient(
            StorageClientConfig(api_key=API_KEY, storage_zone="zone", base_url="http://127.0.0.1:9", timeout=5)
        )
        try:
            with pytest.raises(TransientTransportError):
                await client.upload(source, "logo.svg")
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_delete_missing_file_succeeds(self, storage):
        assert await storage.delete("never-uploaded.svg") is True

    @pytest.mark.asyncio
    async def test_list_download_and_delete(self, service, storage, tmp_path):
        source = tmp_path / "a.svg"
        source.write_bytes(b"<svg>a</svg>")
        await storage.upload(source, "a.svg")

        listing = await storage.list_files()
        assert [entry["ObjectName"] for entry in listing] == ["a.svg"]

        target = tmp_path / "out" / "a.svg"
        await storage.download("a.svg", target)
        assert target.read_bytes() == b"<svg>a</svg>"

        assert await storage.delete("a.svg") is True
        assert service.stored == {}

    @pytest.mark.asyncio
    async def test_exists_checks_public_url(self, service, storage):
        service.stored["2024/logo.svg"] = b"<svg/>"

        assert await storage.exists("2024/logo.svg") is True
        assert await storage.exists("2024/missing.svg") is False

    @pytest.mark.asyncio
    async def test_exists_server_error_is_transient(self, service, storage):
        service.status = 503

        with pytest.raises(TransientTransportError):
            await storage.exists("2024/logo.svg")

    @pytest.mark.asyncio
    async def test_connection_check(self, service, storage):
        assert await storage.test_connection() is True

        bad = CdnStorageClient(StorageClientConfig(api_key="wrong", storage_zone="zone", base_url=service.base_url))
        try:
            assert await bad.test_connection() is False
        finally:
            await bad.close()
        assert await CdnStorageClient(StorageClientConfig()).test_connection() is False


class TestImageOptimizerClient:
    """Tests for the optimization service client."""

    @pytest.mark.asyncio
    async def test_request_shape_and_decoding(self, service, optimizer_client):
        service.body = {
            "success": True,
            "processed": 2,
            "creditsRemaining": 98,
            "results": [
                {
                    "success": True,
                    "data": {"originalSize": 200000, "compressedSize": 50000, "compressionRatio": 75, "format": "avif"},
                },
                {"success": True, "skipped": True, "reason": "already optimal"},
            ],
        }

        results = await optimizer_client.optimize(["https://site.test/a.jpg", "https://site.test/b.png"])

        assert results == [Optimized(200000, 50000, 75.0, "avif"), Skipped("already optimal")]
        request = service.requests[0]
        assert request["headers"]["x-api-key"] == API_KEY
        assert request["json"] == {
            "images": [
                {"imageUrl": "https://site.test/a.jpg", "quality": 80},
                {"imageUrl": "https://site.test/b.png", "quality": 80},
            ],
            "batch": True,
            "supportsAVIF": True,
            "userThresholdKb": 150,
            "format": "auto",
            "quality": 80,
        }

    @pytest.mark.asyncio
    async def test_batch_over_limit_is_rejected_locally(self, service, optimizer_client):
        with pytest.raises(ValueError):
            await optimizer_client.optimize([f"https://site.test/{i}.jpg" for i in range(4)])
        assert service.requests == []

    @pytest.mark.asyncio
    async def test_missing_results_become_failures(self, service, optimizer_client):
        service.body = {"success": True, "results": [{"success": False, "error": "unsupported format"}]}

        results = await optimizer_client.optimize(["https://site.test/a.jpg", "https://site.test/b.jpg"])

        assert results == [Failed("unsupported format"), Failed("no result returned for image")]

    @pytest.mark.asyncio
    async def test_service_level_failure_is_transient(self, service, optimizer_client):
        service.body = {"success": False, "error": "queue full"}
        with pytest.raises(TransientTransportError) as exc_info:
            await optimizer_client.optimize(["https://site.test/a.jpg"])
        assert exc_info.value.reason == "queue full"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "error_type"),
        [
            (429, TransientTransportError),
            (502, TransientTransportError),
            (403, AuthenticationError),
            (422, PermanentTransportError),
        ],
    )
    async def test_http_errors(self, service, optimizer_client, status, error_type):
        service.status = status
        service.body = {"error": "nope"}
        with pytest.raises(error_type):
            await optimizer_client.optimize(["https://site.test/a.jpg"])

    @pytest.mark.asyncio
    async def test_empty_batch_makes_no_request(self, service, optimizer_client):
        assert await optimizer_client.optimize([]) == []
        assert service.requests == []

    def test_region_endpoints(self):
        assert ImageOptimizerClient(OptimizerClientConfig(region="eu")).endpoint.startswith("https://api-eu.")
        assert ImageOptimizerClient(OptimizerClientConfig()).endpoint.startswith("https://api-us.")


class TestResultDecoding:
    """Tests for decode_result and result_from_dict."""

    def test_ratio_computed_when_missing(self):
        data = {"originalSize": 1000, "compressedSize": 250, "format": "webp"}
        result = decode_result({"success": True, "data": data})
        assert result == Optimized(1000, 250, 75.0, "webp")
        assert result.bytes_saved == 750

    @pytest.mark.parametrize("raw", [None, "oops", {"success": True}, {"success": False}])
    def test_malformed_entries_are_failures(self, raw):
        assert isinstance(decode_result(raw), Failed)

    def test_persisted_form(self):
        result = Optimized(1000, 400, 60.0, "avif")
        assert result_from_dict(json.loads(json.dumps(result.to_dict()))) == result
        assert result_from_dict(Skipped("fine").to_dict()) == Skipped("fine")
        assert result_from_dict(None) is None
