"""Tests for the retry driver."""

from unittest.mock import AsyncMock

import pytest

from kb_service.core.errors import RpcTimeoutError, TransportError, UpstreamError
from kb_service.utils.retry import RetryConfig, RetryManager


class TestRetryConfig:
    def test_linear_delays(self):
        config = RetryConfig(base_delay=1.5)
        assert [config.delay_for(n) for n in (1, 2, 3)] == [1.5, 3.0, 4.5]

    def test_exponential_delays_are_capped(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0, backoff="exponential")
        assert [config.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]

    def test_retryable_errors(self):
        config = RetryConfig()
        assert config.is_retryable(TransportError("down"))
        assert config.is_retryable(RpcTimeoutError("slow"))
        assert not config.is_retryable(UpstreamError("bad params"))


class TestRetryManager:
    """Tests for execute_with_retry_async."""

    @pytest.mark.asyncio
    async def test_success_first_try(self):
        sleep = AsyncMock()
        func = AsyncMock(return_value="ok")

        assert await RetryManager(sleep=sleep).execute_with_retry_async(func) == "ok"
        func.assert_awaited_once()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retries_exactly_max_retries_times(self):
        sleep = AsyncMock()
        func = AsyncMock(side_effect=TransportError("down"))
        manager = RetryManager(RetryConfig(max_retries=3, base_delay=1.0), sleep=sleep)

        with pytest.raises(TransportError):
            await manager.execute_with_retry_async(func, description="test call")

        assert func.await_count == 4
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 3.0]

    @pytest.mark.asyncio
    async def test_recovers(self):
        func = AsyncMock(side_effect=[TransportError("down"), "ok"])
        manager = RetryManager(RetryConfig(max_retries=3), sleep=AsyncMock())

        assert await manager.execute_with_retry_async(func) == "ok"
        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_permanent_errors_are_not_retried(self):
        func = AsyncMock(side_effect=UpstreamError("bad params"))
        manager = RetryManager(RetryConfig(max_retries=3), sleep=AsyncMock())

        with pytest.raises(UpstreamError):
            await manager.execute_with_retry_async(func)

        func.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_zero_retries(self):
        func = AsyncMock(side_effect=TransportError("down"))
        manager = RetryManager(RetryConfig(max_retries=0), sleep=AsyncMock())

        with pytest.raises(TransportError):
            await manager.execute_with_retry_async(func)

        func.assert_awaited_once()
