"""
Remote service client contracts.

Implementations must raise:
- TransientTransportError for network failures, timeouts, throttling and 5xx
  responses (the orchestrator retries the whole chunk)
- AuthenticationError for rejected credentials
- PermanentTransportError for any other request the service refuses

so the retry policy can tell a blip from a misconfiguration.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from .types import OptimizationResult


class RemoteStorageClient(ABC):
    """Object storage / CDN file operations."""

    @abstractmethod
    def validate_configuration(self) -> list[str]:
        """Human readable configuration problems; empty when usable."""
        pass

    @abstractmethod
    def public_url(self, remote_path: str) -> str:
        """Public URL a stored file is served from."""
        pass

    @abstractmethod
    async def upload(self, local_path: Path, remote_path: str) -> str:
        """
        Upload a local file.

        Args:
            local_path: File to read
            remote_path: Destination path inside the storage zone

        Returns:
            Public URL of the uploaded file
        """
        pass

    @abstractmethod
    async def delete(self, remote_path: str) -> bool:
        """Delete a remote file. Deleting a missing file is a success."""
        pass

    @abstractmethod
    async def download(self, remote_path: str, local_path: Path) -> None:
        """Fetch a remote file into ``local_path``."""
        pass

    @abstractmethod
    async def exists(self, remote_path: str) -> bool:
        """Whether the file is served from its public URL."""
        pass

    @abstractmethod
    async def list_files(self, path: str = "") -> list[dict[str, Any]]:
        """List entries under a remote directory."""
        pass

    async def test_connection(self) -> bool:
        """Check credentials and reachability."""
        await self.list_files("")
        return True

    async def close(self) -> None:
        return None

    async def __aenter__(self) -> RemoteStorageClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


class OptimizationClient(ABC):
    """Batch image optimization service."""

    @property
    @abstractmethod
    def max_batch_size(self) -> int:
        """Hard upper bound on images per ``optimize`` call."""
        pass

    @abstractmethod
    def validate_configuration(self) -> list[str]:
        """Human readable configuration problems; empty when usable."""
        pass

    @abstractmethod
    async def optimize(self, image_urls: list[str]) -> list[OptimizationResult]:
        """
        Submit one batch of images.

        Args:
            image_urls: Publicly fetchable image URLs, at most ``max_batch_size``

        Returns:
            One result per input URL, in input order

        Raises:
            ValueError: If more than ``max_batch_size`` images are submitted
        """
        pass

    async def close(self) -> None:
        return None

    async def __aenter__(self) -> OptimizationClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
