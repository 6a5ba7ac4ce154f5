"""
Tests for retry_with_backoff and the chunk runner.
"""

import logging

import pytest

from media_offload.config import OrchestratorConfig
from media_offload.exceptions import AuthenticationError, TransientTransportError
from media_offload.orchestrator.chunks import ChunkRunner
from media_offload.orchestrator.retry import RetryConfig, retry_with_backoff
from media_offload.orchestrator.types import OutcomeState

from .fakes import make_item


class FlakyCall:
    """Fails ``failures`` times with ``error`` before returning ``value``."""

    def __init__(self, failures, error=None, value="ok"):
        self.failures = failures
        self.error = error or TransientTransportError("svc", "unavailable", 503)
        self.value = value
        self.calls = 0

    async def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.value


NO_DELAY = RetryConfig(backoff_base=0.0)


class TestRetryConfig:
    def test_from_orchestrator(self):
        config = RetryConfig.from_orchestrator(OrchestratorConfig(max_retries=4, retry_delay=1.5))
        assert config.max_attempts == 5
        assert config.delay_for(0) == config.delay_for(3) == 1.5

    def test_exponential_delay_is_capped(self):
        config = RetryConfig(backoff_base=1.0, backoff_multiplier=2.0, backoff_max=5.0)
        assert [config.delay_for(n) for n in range(4)] == [1.0, 2.0, 4.0, 5.0]


class TestRetryWithBackoff:
    @pytest.mark.asyncio
    async def test_succeeds_first_time(self):
        call = FlakyCall(0)
        assert await retry_with_backoff(call, config=NO_DELAY) == "ok"
        assert call.calls == 1

    @pytest.mark.asyncio
    async def test_recovers_and_logs(self, caplog):
        call = FlakyCall(2)
        with caplog.at_level(logging.WARNING, logger="media_offload.orchestrator.retry"):
            assert await retry_with_backoff(call, config=NO_DELAY, context_msg="s1") == "ok"
        assert call.calls == 3
        messages = [r.getMessage() for r in caplog.records]
        assert sum("RETRYING" in m for m in messages) == 2
        assert any("RETRY_RECOVERED" in m and "[s1]" in m for m in messages)

    @pytest.mark.asyncio
    async def test_exhausted(self, caplog):
        call = FlakyCall(5)
        with caplog.at_level(logging.ERROR, logger="media_offload.orchestrator.retry"):
            with pytest.raises(TransientTransportError):
                await retry_with_backoff(call, config=NO_DELAY)
        assert call.calls == 3
        assert any("RETRY_EXHAUSTED" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_permanent_errors_are_not_retried(self):
        call = FlakyCall(1, error=AuthenticationError("svc", "bad key", 401))
        with pytest.raises(AuthenticationError):
            await retry_with_backoff(call, config=NO_DELAY)
        assert call.calls == 1

    @pytest.mark.asyncio
    async def test_connection_errors_are_retried(self):
        call = FlakyCall(1, error=ConnectionResetError("reset"))
        assert await retry_with_backoff(call, config=NO_DELAY) == "ok"


class TestChunkRunner:
    @pytest.mark.asyncio
    async def test_exhaustion_fails_every_item(self):
        class AlwaysDown:
            async def dispatch(self, chunk):
                raise TransientTransportError("remote storage", "unavailable", 503)

        chunk = [make_item("a.svg"), make_item("b.svg")]
        outcomes = await ChunkRunner(NO_DELAY).run(AlwaysDown(), chunk)

        assert [o.state for o in outcomes] == [OutcomeState.FAILED, OutcomeState.FAILED]
        assert all("unavailable" in o.error for o in outcomes)
        assert outcomes[0].size_bytes == 10_000

    @pytest.mark.asyncio
    async def test_empty_chunk(self):
        assert await ChunkRunner(NO_DELAY).run(object(), []) == []
