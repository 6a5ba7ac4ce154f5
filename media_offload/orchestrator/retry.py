"""Retry policy for remote service calls.

Chunks are retried as a unit with a fixed delay between attempts. Only
transient failures are retried: rejected credentials and other permanent
errors surface on the first attempt.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any, TypeVar

from ..config import OrchestratorConfig
from ..exceptions import TransientTransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry with backoff."""

    max_retries: int = 2
    backoff_base: float = 2.0  # seconds
    backoff_max: float = 60.0  # cap
    backoff_multiplier: float = 1.0  # 1.0 = fixed delay
    retryable_exceptions: tuple[type[BaseException], ...] = (
        TransientTransportError,
        ConnectionError,
        TimeoutError,
    )

    @classmethod
    def from_orchestrator(cls, config: OrchestratorConfig) -> RetryConfig:
        return cls(max_retries=config.max_retries, backoff_base=config.retry_delay)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int) -> float:
        return min(self.backoff_base * (self.backoff_multiplier**attempt), self.backoff_max)


async def retry_with_backoff(
    fn: Callable[..., Coroutine[Any, Any, T]],
    *args: Any,
    config: RetryConfig | None = None,
    context_msg: str = "",
    **kwargs: Any,
) -> T:
    """Execute an async function, retrying transient failures.

    Args:
        fn: Async callable to execute
        *args: Positional args for fn
        config: Retry configuration (uses defaults if None)
        context_msg: Extra context for log messages (e.g. session id)
        **kwargs: Keyword args for fn

    Returns:
        Result of fn

    Raises:
        Exception: The first non-retryable exception, or the last retryable
            one once all attempts are used
    """
    cfg = config or RetryConfig()
    ctx = f" [{context_msg}]" if context_msg else ""

    for attempt in range(cfg.max_attempts):
        try:
            result = await fn(*args, **kwargs)
        except cfg.retryable_exceptions as exc:
            if attempt >= cfg.max_retries:
                logger.error(
                    "RETRY_EXHAUSTED: attempt=%d/%d%s: %s",
                    attempt + 1,
                    cfg.max_attempts,
                    ctx,
                    exc,
                )
                raise
            delay = cfg.delay_for(attempt)
            logger.warning(
                "RETRYING: attempt=%d/%d delay=%.1fs%s: %s",
                attempt + 1,
                cfg.max_attempts,
                delay,
                ctx,
                exc,
            )
            await asyncio.sleep(delay)
        else:
            if attempt > 0:
                logger.warning(
                    "RETRY_RECOVERED: succeeded on attempt %d/%d after %d retries%s",
                    attempt + 1,
                    cfg.max_attempts,
                    attempt,
                    ctx,
                )
            return result

    # Unreachable, but satisfies type checker
    raise RuntimeError("retry_with_backoff exhausted without raising")  # pragma: no cover
