"""Error classification with exponential backoff retry.

Every pipeline and finalizer step funnels failures through classify_error(),
which maps an exception to exactly one outcome:

- Retry: transient, re-run the pass after `delay` seconds
- Fail: terminal for this attempt, surfaced as a FailedStart/Error condition
- Warn: non-blocking, accumulated into status warnings
- Unclassified: anything else, propagated to the work queue for backoff

Usage:
    from devworkspace.core.retryable import Fail, Retry, classify_error

    match classify_error(exc):
        case Retry(delay=delay):
            ...
        case Fail(message=message, reason=reason):
            ...
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import httpx

from devworkspace.core.domain.workspace import FailureReason
from devworkspace.core.errors import (
    ConflictError,
    FailError,
    RetryError,
    WarningError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Delay used when a transient error does not carry its own
DEFAULT_RETRY_DELAY = 1.0


# =============================================================================
# Outcomes
# =============================================================================


@dataclass(frozen=True)
class Retry:
    delay: float = 0.0
    message: str = ""


@dataclass(frozen=True)
class Fail:
    message: str
    reason: FailureReason = FailureReason.UNKNOWN


@dataclass(frozen=True)
class Warn:
    """Warning outcome (named to avoid shadowing the builtin Warning)."""

    message: str


@dataclass(frozen=True)
class Unclassified:
    error: Exception


Outcome = Retry | Fail | Warn | Unclassified


# =============================================================================
# httpx error classification
# =============================================================================

HTTPX_RETRYABLE = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
    httpx.WriteTimeout,
    httpx.PoolTimeout,
)


def is_httpx_retryable(exc: Exception) -> bool:
    """Check if httpx exception is retryable."""
    if isinstance(exc, HTTPX_RETRYABLE):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        # 429 Rate limit - retryable
        if status == 429:
            return True
        # 5xx server errors - retryable, other 4xx are not
        return status >= 500
    return False


# =============================================================================
# Unified classification
# =============================================================================


def classify_error(exc: Exception) -> Outcome:
    """Classify an exception into Retry / Fail / Warn / Unclassified.

    Args:
        exc: Exception raised by a collaborator

    Returns:
        The tagged outcome for the step
    """
    match exc:
        case RetryError():
            return Retry(delay=exc.requeue_after, message=exc.message)
        case FailError():
            return Fail(message=exc.message, reason=exc.reason)
        case WarningError():
            return Warn(message=exc.message)
        case ConflictError():
            # Stale read; re-read fresh state immediately
            return Retry(delay=0.0, message=exc.message)
        case asyncio.TimeoutError():
            return Retry(delay=DEFAULT_RETRY_DELAY, message="Timed out waiting for cluster")
        case httpx.HTTPError() if is_httpx_retryable(exc):
            return Retry(delay=DEFAULT_RETRY_DELAY, message=str(exc))
        case _:
            return Unclassified(error=exc)


def is_retryable(exc: Exception) -> bool:
    """Check if error is transient and the operation can be retried."""
    return isinstance(classify_error(exc), Retry)


# =============================================================================
# Retry utility
# =============================================================================


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential backoff delay for the given (zero-based) attempt."""
    return min(base_delay * (2**attempt), max_delay)


async def with_retry(
    coro_factory: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
) -> T:
    """Execute async operation with exponential backoff retry.

    Only retries for errors classified as Retry (transient failures).
    Other errors are raised immediately.

    Args:
        coro_factory: Factory function that creates new coroutine for each attempt
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 30.0)

    Returns:
        Result of successful operation

    Raises:
        Exception: The last exception if all retries fail, or immediately
                   for non-retryable errors
    """
    for attempt in range(max_retries + 1):
        try:
            return await coro_factory()
        except Exception as exc:
            if not is_retryable(exc):
                raise

            if attempt == max_retries:
                logger.error(
                    "Max retries exceeded (%d attempts): %s",
                    max_retries + 1,
                    exc,
                    extra={"attempt": attempt + 1},
                )
                raise

            # Jitter: 50% ~ 150% of delay (prevents thundering herd)
            delay = backoff_delay(attempt, base_delay, max_delay) * (0.5 + random.random())
            logger.warning(
                "Retryable error (attempt %d/%d, retry in %.1fs): %s",
                attempt + 1,
                max_retries + 1,
                delay,
                exc,
                extra={"attempt": attempt + 1, "delay": delay},
            )
            await asyncio.sleep(delay)

    raise RuntimeError("Unexpected state in with_retry")
