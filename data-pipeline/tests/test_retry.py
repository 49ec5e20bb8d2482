"""Tests for the retry wrapper."""

import pytest
from unittest.mock import AsyncMock, patch

import aiohttp
from structlog.testing import capture_logs

from services.blocks.errors import ErrorKind, RpcFailureError, SearchInvariantError
from services.blocks.retry import (
    RetryOptions,
    call_rpc,
    compute_delay_ms,
    is_rate_limited,
    with_retry,
)


class TestWithRetry:
    """Test suite for with_retry."""

    @pytest.mark.asyncio
    async def test_returns_on_first_success_without_logging(self):
        operation = AsyncMock(return_value={"number": 100})

        with capture_logs() as logs:
            result = await with_retry(operation, RetryOptions(operation_name="getBlock"))

        assert result == {"number": 100}
        assert operation.call_count == 1
        assert logs == []

    @pytest.mark.asyncio
    async def test_awaits_lambda_returning_coroutine(self):
        operation = AsyncMock(return_value=5)

        result = await with_retry(lambda: operation(), RetryOptions(initial_delay=0))

        assert result == 5
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_lambda_returning_coroutine(self):
        operation = AsyncMock(side_effect=[ConnectionError("reset"), 7])

        result = await with_retry(lambda: operation(), RetryOptions(initial_delay=0))

        assert result == 7
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        operation = AsyncMock(
            side_effect=[ConnectionError("Network error"), TimeoutError("Timeout"), {"number": 100}]
        )

        with patch("services.blocks.retry.asyncio.sleep", new_callable=AsyncMock):
            with capture_logs() as logs:
                result = await with_retry(
                    operation, RetryOptions(max_retries=3, initial_delay=10, operation_name="getBlock")
                )

        assert result == {"number": 100}
        assert operation.call_count == 3
        assert [log["event"] for log in logs] == [
            "Retry attempt 1/3 for getBlock",
            "Retry attempt 2/3 for getBlock",
        ]
        assert logs[0]["error"] == "Network error"
        assert logs[0]["log_level"] == "warning"

    @pytest.mark.asyncio
    async def test_logs_without_operation_name(self):
        operation = AsyncMock(side_effect=[ConnectionError("Network error"), 1])

        with patch("services.blocks.retry.asyncio.sleep", new_callable=AsyncMock):
            with capture_logs() as logs:
                await with_retry(operation, RetryOptions(max_retries=2, initial_delay=10))

        assert len(logs) == 1
        assert logs[0]["event"] == "Retry attempt 1/2"

    @pytest.mark.asyncio
    async def test_raises_last_error_when_exhausted(self):
        operation = AsyncMock(
            side_effect=[ConnectionError("first"), ConnectionError("second"), ConnectionError("third")]
        )

        with patch("services.blocks.retry.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(ConnectionError, match="third"):
                await with_retry(operation, RetryOptions(max_retries=3))

        assert operation.call_count == 3

    @pytest.mark.asyncio
    async def test_should_retry_false_fails_immediately(self):
        operation = AsyncMock(side_effect=ValueError("invalid params"))
        options = RetryOptions(
            max_retries=5,
            should_retry=lambda error: not isinstance(error, ValueError),
        )

        with patch("services.blocks.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(ValueError, match="invalid params"):
                await with_retry(operation, options)

        assert operation.call_count == 1
        mock_sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_exponential_backoff_delays(self):
        operation = AsyncMock(side_effect=ConnectionError("down"))
        options = RetryOptions(max_retries=4, initial_delay=1000, backoff_multiplier=2)

        with patch("services.blocks.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(ConnectionError):
                await with_retry(operation, options)

        delays = [call.args[0] for call in mock_sleep.call_args_list]
        assert delays == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_rate_limit_uses_longer_delay(self):
        operation = AsyncMock(
            side_effect=[Exception("429, message='Too Many Requests'"), "ok"]
        )

        with patch("services.blocks.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with capture_logs() as logs:
                result = await with_retry(operation, RetryOptions(initial_delay=1000))

        assert result == "ok"
        mock_sleep.assert_called_once_with(30.0)
        assert logs[0]["rate_limited"] is True
        assert logs[0]["delay_ms"] == 30000

    @pytest.mark.asyncio
    async def test_custom_rate_limit_delay(self):
        operation = AsyncMock(side_effect=[Exception("HTTP 429"), "ok"])

        with patch("services.blocks.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await with_retry(operation, RetryOptions(rate_limit_delay=5000))

        mock_sleep.assert_called_once_with(5.0)


class TestDelayHelpers:

    def test_is_rate_limited(self):
        assert is_rate_limited(Exception("status 429"))
        assert not is_rate_limited(Exception("status 500"))

    def test_compute_delay_ms(self):
        options = RetryOptions(initial_delay=500, backoff_multiplier=3)

        assert compute_delay_ms(options, 0, Exception("boom")) == 500
        assert compute_delay_ms(options, 2, Exception("boom")) == 4500
        assert compute_delay_ms(options, 2, Exception("429")) == 30000


class TestCallRpc:

    @pytest.mark.asyncio
    async def test_exhausted_retries_become_rpc_failure(self):
        cause = aiohttp.ClientError("connection refused")
        operation = AsyncMock(side_effect=cause)

        with pytest.raises(RpcFailureError) as exc_info:
            await call_rpc(operation, RetryOptions(initial_delay=0, operation_name="getBlockNumber"))

        error = exc_info.value
        assert error.kind is ErrorKind.RPC_FAILURE
        assert error.operation == "getBlockNumber"
        assert error.cause is cause
        assert "failed after 3 retries" in str(error)
        assert "connection refused" in str(error)
        assert operation.call_count == 3

    @pytest.mark.asyncio
    async def test_domain_errors_are_not_retried(self):
        domain_error = SearchInvariantError("Block 5 not found", operation="getBlock")
        operation = AsyncMock(side_effect=domain_error)

        with pytest.raises(SearchInvariantError) as exc_info:
            await call_rpc(operation, RetryOptions(initial_delay=0))

        assert exc_info.value is domain_error
        assert operation.call_count == 1
