"""Tests for error classification and retry logic."""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from devworkspace.core.domain.workspace import FailureReason
from devworkspace.core.errors import (
    ConflictError,
    FailError,
    NotFoundError,
    RetryError,
    WarningError,
)
from devworkspace.core.retryable import (
    DEFAULT_RETRY_DELAY,
    Fail,
    Retry,
    Unclassified,
    Warn,
    backoff_delay,
    classify_error,
    is_httpx_retryable,
    is_retryable,
    with_retry,
)


def _status_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "http://test.com")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError("error", request=request, response=response)


class TestHttpxRetryable:
    """Tests for httpx error classification."""

    def test_connect_error_is_retryable(self) -> None:
        """ConnectError should be retryable."""
        exc = httpx.ConnectError("connection failed")
        assert is_httpx_retryable(exc) is True
        assert is_retryable(exc) is True

    def test_read_timeout_is_retryable(self) -> None:
        """ReadTimeout should be retryable."""
        assert is_httpx_retryable(httpx.ReadTimeout("read timeout")) is True

    def test_4xx_not_retryable(self) -> None:
        """4xx client errors should not be retryable."""
        assert is_httpx_retryable(_status_error(400)) is False

    def test_429_is_retryable(self) -> None:
        """429 rate limit should be retryable."""
        assert is_httpx_retryable(_status_error(429)) is True

    def test_5xx_is_retryable(self) -> None:
        """5xx server errors should be retryable."""
        assert is_httpx_retryable(_status_error(503)) is True

    def test_invalid_url_not_retryable(self) -> None:
        """InvalidURL should not be retryable."""
        assert is_retryable(httpx.InvalidURL("invalid url")) is False


class TestClassifyError:
    """Each exception maps to exactly one outcome."""

    def test_retry_error_keeps_delay(self) -> None:
        outcome = classify_error(RetryError("Waiting for PVC", requeue_after=5.0))
        assert outcome == Retry(delay=5.0, message="Waiting for PVC")

    def test_fail_error_keeps_reason(self) -> None:
        outcome = classify_error(FailError("bad devfile", FailureReason.BAD_REQUEST))
        assert outcome == Fail(message="bad devfile", reason=FailureReason.BAD_REQUEST)

    def test_warning_error(self) -> None:
        assert classify_error(WarningError("deprecated")) == Warn(message="deprecated")

    def test_conflict_retries_immediately(self) -> None:
        """A stale read is retried with no delay."""
        outcome = classify_error(ConflictError())
        assert isinstance(outcome, Retry)
        assert outcome.delay == 0.0

    def test_timeout_retries(self) -> None:
        outcome = classify_error(asyncio.TimeoutError())
        assert outcome == Retry(delay=DEFAULT_RETRY_DELAY, message="Timed out waiting for cluster")

    def test_transient_httpx_error_retries(self) -> None:
        outcome = classify_error(httpx.ConnectError("connection refused"))
        assert isinstance(outcome, Retry)
        assert outcome.delay == DEFAULT_RETRY_DELAY

    def test_permanent_httpx_error_is_unclassified(self) -> None:
        exc = _status_error(403)
        assert classify_error(exc) == Unclassified(error=exc)

    def test_not_found_is_unclassified(self) -> None:
        """NotFound is handled by the caller, not retried."""
        exc = NotFoundError()
        assert classify_error(exc) == Unclassified(error=exc)

    def test_generic_exception_is_unclassified(self) -> None:
        exc = RuntimeError("boom")
        outcome = classify_error(exc)
        assert isinstance(outcome, Unclassified)
        assert outcome.error is exc


class TestBackoffDelay:
    def test_doubles_per_attempt(self) -> None:
        assert [backoff_delay(n, 0.005, 1000.0) for n in range(4)] == [
            0.005,
            0.01,
            0.02,
            0.04,
        ]

    def test_capped_at_max(self) -> None:
        assert backoff_delay(30, 0.005, 1000.0) == 1000.0


class TestWithRetry:
    """Tests for with_retry function."""

    async def test_success_on_first_try(self) -> None:
        """Should return result on first successful call."""
        factory = AsyncMock(return_value="success")

        result = await with_retry(factory)

        assert result == "success"
        assert factory.call_count == 1

    async def test_retry_on_transient_error(self) -> None:
        """Should retry on transient errors."""
        factory = AsyncMock(side_effect=[httpx.ConnectError("failed"), "success"])

        with patch("devworkspace.core.retryable.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await with_retry(factory, max_retries=3, base_delay=0.01)

        assert result == "success"
        assert factory.call_count == 2
        sleep.assert_awaited_once()

    async def test_no_retry_on_permanent_error(self) -> None:
        """Should not retry on permanent errors."""
        factory = AsyncMock(side_effect=ValueError("permanent"))

        with pytest.raises(ValueError, match="permanent"):
            await with_retry(factory, max_retries=3)

        assert factory.call_count == 1

    async def test_max_retries_exceeded(self) -> None:
        """Should raise after max retries."""
        factory = AsyncMock(side_effect=RetryError("still waiting"))

        with patch("devworkspace.core.retryable.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(RetryError):
                await with_retry(factory, max_retries=2, base_delay=0.01)

        assert factory.call_count == 3
