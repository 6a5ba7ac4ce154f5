"""
CDN object storage client.

Speaks the storage zone HTTP API:

    PUT    {base_url}/{zone}/{path}   upload (201 on success)
    DELETE {base_url}/{zone}/{path}   delete (200, or 404 if already gone)
    GET    {base_url}/{zone}/{dir}/   list a directory (JSON array)

Every call authenticates with the ``AccessKey`` header. Downloads and
existence checks (HEAD) go through the public pull-zone URL instead of the
storage API.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any
from urllib.parse import quote

import aiofiles
import aiohttp

from ..config import StorageClientConfig
from ..exceptions import PermanentTransportError, StorageIOError, TransportError
from ..storage.file_ops import ensure_directory
from .base import RemoteStorageClient
from .http import HttpClientMixin, classify_status, error_reason

logger = logging.getLogger(__name__)


class CdnStorageClient(HttpClientMixin, RemoteStorageClient):
    """
    aiohttp client for CDN storage zones.

    Example:
        >>> async with CdnStorageClient(StorageClientConfig.from_env()) as client:
        ...     url = await client.upload(Path("logo.svg"), "2024/05/logo.svg")
    """

    service_name = "remote storage"

    def __init__(self, config: StorageClientConfig) -> None:
        self.config = config
        self._timeout_seconds = config.timeout
        self._session = None

    def validate_configuration(self) -> list[str]:
        return self.config.validate()

    def _api_url(self, remote_path: str) -> str:
        base = self.config.base_url.rstrip("/")
        return f"{base}/{self.config.storage_zone}/{quote(remote_path.lstrip('/'))}"

    def _headers(self, **extra: str) -> dict[str, str]:
        return {"AccessKey": self.config.api_key or "", **extra}

    def public_url(self, remote_path: str) -> str:
        """
        Public URL of a stored file.

        Uses the custom hostname when configured (a bare host gets https://),
        otherwise the zone's default pull-zone host.
        """
        path = remote_path.lstrip("/")
        hostname = self.config.custom_hostname
        if hostname:
            base = hostname.rstrip("/") if "://" in hostname else f"https://{hostname.rstrip('/')}"
        else:
            base = f"https://{self.config.storage_zone}.b-cdn.net"
        return f"{base}/{path}"

    async def upload(self, local_path: Path, remote_path: str) -> str:
        try:
            async with aiofiles.open(local_path, "rb") as f:
                payload = await f.read()
        except OSError as e:
            raise StorageIOError("read_upload", str(local_path), e) from e

        url = self._api_url(remote_path)
        try:
            async with self._get_session().put(
                url,
                data=payload,
                headers=self._headers(**{"Content-Type": "application/octet-stream"}),
            ) as response:
                if response.status != 201:
                    raise classify_status(self.service_name, response.status, await error_reason(response))
        except TransportError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise self._wrap_client_error(e, f"upload of {remote_path}") from e

        logger.info(f"Uploaded {local_path} -> {remote_path} ({len(payload)} bytes)")
        return self.public_url(remote_path)

    async def delete(self, remote_path: str) -> bool:
        try:
            async with self._get_session().delete(
                self._api_url(remote_path),
                headers=self._headers(),
            ) as response:
                if response.status not in (200, 404):
                    raise classify_status(self.service_name, response.status, await error_reason(response))
        except TransportError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise self._wrap_client_error(e, f"delete of {remote_path}") from e

        logger.info(f"Deleted remote file {remote_path}")
        return True

    async def download(self, remote_path: str, local_path: Path) -> None:
        try:
            async with self._get_session().get(self.public_url(remote_path)) as response:
                if response.status != 200:
                    raise classify_status(self.service_name, response.status, await error_reason(response))
                content = await response.read()
        except TransportError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise self._wrap_client_error(e, f"download of {remote_path}") from e

        await ensure_directory(local_path.parent)
        try:
            async with aiofiles.open(local_path, "wb") as f:
                await f.write(content)
        except OSError as e:
            raise StorageIOError("write_download", str(local_path), e) from e
        logger.info(f"Downloaded {remote_path} -> {local_path} ({len(content)} bytes)")

    async def exists(self, remote_path: str) -> bool:
        try:
            async with self._get_session().head(self.public_url(remote_path)) as response:
                if response.status in (404, 410):
                    return False
                if response.status != 200:
                    raise classify_status(self.service_name, response.status, response.reason or "")
        except TransportError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise self._wrap_client_error(e, f"existence check of {remote_path}") from e
        return True

    async def list_files(self, path: str = "") -> list[dict[str, Any]]:
        directory = path.strip("/")
        url = self._api_url(f"{directory}/" if directory else "")
        if not url.endswith("/"):
            url += "/"
        try:
            async with self._get_session().get(url, headers=self._headers(Accept="application/json")) as response:
                if response.status != 200:
                    raise classify_status(self.service_name, response.status, await error_reason(response))
                try:
                    entries = await response.json(content_type=None)
                except ValueError as e:
                    raise PermanentTransportError(self.service_name, "invalid JSON listing", response.status) from e
        except TransportError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise self._wrap_client_error(e, f"listing of /{directory}") from e

        if not isinstance(entries, list):
            raise PermanentTransportError(self.service_name, "listing is not an array")
        return entries

    async def test_connection(self) -> bool:
        """
        Check that the zone is reachable with the configured key.

        Returns False (and logs why) instead of raising, so it can back a
        health check.
        """
        errors = self.validate_configuration()
        if errors:
            logger.error(f"Storage connection test skipped: {'; '.join(errors)}")
            return False
        try:
            await self.list_files("")
        except TransportError as e:
            logger.error(f"Storage connection test failed: {e}")
            return False
        logger.info(f"Storage connection test succeeded for zone {self.config.storage_zone}")
        return True
