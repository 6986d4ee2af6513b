import asyncio
import random
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, TypeVar

import shared.logger_factory as logger_factory

from .errors import BlockedError, TransientFetchError

T = TypeVar("T")


class FailureKind(Enum):
    Retryable = "Retryable"
    Blocking = "Blocking"
    Fatal = "Fatal"


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    base_delay_ms: int = 1500
    jitter_min_ms: int = 100
    jitter_max_ms: int = 600
    # Blocking responses consume the same retry budget unless disabled
    retry_blocked: bool = True

    def backoff_seconds(self, attempt: int) -> float:
        """Wait before the retry that follows attempt (0-based)."""
        low, high = sorted((max(0, self.jitter_min_ms), max(0, self.jitter_max_ms)))
        jitter = random.randint(low, high)
        return (self.base_delay_ms * (1.5 ** attempt) + jitter) / 1000

    def should_retry(self, kind: FailureKind) -> bool:
        if kind is FailureKind.Retryable:
            return True
        if kind is FailureKind.Blocking:
            return self.retry_blocked
        return False


def classify_failure(error: BaseException) -> FailureKind:
    if isinstance(error, BlockedError):
        return FailureKind.Blocking
    if isinstance(error, (TransientFetchError, asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return FailureKind.Retryable
    return FailureKind.Fatal


async def request_with_retry(
        operation: Callable[[int], Awaitable[T]],
        *,
        label: str,
        policy: RetryPolicy,
        classify: Callable[[BaseException], FailureKind] = classify_failure,
        ) -> T:
    """
    Run operation with bounded retries and exponential backoff.

    Args:
        operation: Coroutine factory receiving the 1-based attempt number
        label: Name used in log lines
        policy: Retry budget and backoff parameters
        classify: Maps a failure to retryable, blocking or fatal

    Returns:
        The first successful result

    Raises:
        The last failure once the budget is spent, or a non-retryable failure immediately
    """
    logger = logger_factory.get_logger(__name__)
    total_attempts = max(0, policy.max_retries) + 1

    attempt = 0
    while True:
        try:
            return await operation(attempt + 1)
        except Exception as error:
            kind = classify(error)
            if attempt + 1 >= total_attempts or not policy.should_retry(kind):
                raise
            wait = policy.backoff_seconds(attempt)
            logger.warning(
                f"{label} failed (attempt {attempt + 1}/{total_attempts}, {kind.value}): {error}. "
                f"Retrying in {round(wait * 1000)} ms"
            )
            await asyncio.sleep(wait)
        attempt += 1
