"""
Image optimization service client.

One POST per batch to the regional endpoint:

    {
        "images": [{"imageUrl": "...", "quality": 85}, ...],
        "batch": true,
        "supportsAVIF": true,
        "userThresholdKb": 150,
        "format": "auto",
        "quality": 85
    }

A 200 response carries ``success`` plus a ``results`` array aligned with the
submitted images. ``success: false`` is a service-level failure even with a
200 status.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from ..config import OptimizerClientConfig
from ..exceptions import PermanentTransportError, TransientTransportError, TransportError
from .base import OptimizationClient
from .http import HttpClientMixin, classify_status, error_reason
from .types import Failed, OptimizationResult, decode_result

logger = logging.getLogger(__name__)


class ImageOptimizerClient(HttpClientMixin, OptimizationClient):
    """aiohttp client for the batch optimization API."""

    service_name = "image optimizer"

    def __init__(self, config: OptimizerClientConfig, endpoint: str | None = None) -> None:
        """
        Args:
            config: API key, region, quality and batch limit
            endpoint: Override of the regional endpoint URL
        """
        self.config = config
        self.endpoint = endpoint or config.endpoint
        self._timeout_seconds = config.timeout
        self._session = None

    @property
    def max_batch_size(self) -> int:
        return self.config.max_batch_size

    def validate_configuration(self) -> list[str]:
        return self.config.validate()

    def _build_request(self, image_urls: list[str]) -> dict[str, Any]:
        return {
            "images": [{"imageUrl": url, "quality": self.config.quality} for url in image_urls],
            "batch": len(image_urls) > 1,
            "supportsAVIF": True,
            "userThresholdKb": self.config.threshold_kb,
            "format": self.config.format,
            "quality": self.config.quality,
        }

    async def optimize(self, image_urls: list[str]) -> list[OptimizationResult]:
        if not image_urls:
            return []
        if len(image_urls) > self.max_batch_size:
            raise ValueError(
                f"batch of {len(image_urls)} images exceeds the service limit of {self.max_batch_size}"
            )

        headers = {
            "x-api-key": self.config.api_key or "",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        try:
            async with self._get_session().post(
                self.endpoint,
                json=self._build_request(image_urls),
                headers=headers,
            ) as response:
                if response.status != 200:
                    raise classify_status(self.service_name, response.status, await error_reason(response))
                try:
                    body = await response.json(content_type=None)
                except ValueError as e:
                    raise TransientTransportError(self.service_name, "invalid JSON response") from e
        except TransportError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise self._wrap_client_error(e, f"optimization of {len(image_urls)} image(s)") from e

        if not isinstance(body, dict):
            raise PermanentTransportError(self.service_name, "response is not an object")
        if not body.get("success"):
            raise TransientTransportError(self.service_name, str(body.get("error") or "optimization failed"))

        logger.info(
            f"Optimizer processed {body.get('processed', len(image_urls))} image(s), "
            f"credits remaining: {body.get('creditsRemaining', 'unknown')}"
        )
        return self._decode_results(body.get("results"), len(image_urls))

    @staticmethod
    def _decode_results(raw_results: Any, expected: int) -> list[OptimizationResult]:
        """Map results back to inputs by index; missing entries become failures."""
        raw_list = raw_results if isinstance(raw_results, list) else []
        decoded: list[OptimizationResult] = []
        for index in range(expected):
            if index < len(raw_list):
                decoded.append(decode_result(raw_list[index]))
            else:
                decoded.append(Failed("no result returned for image"))
        return decoded
