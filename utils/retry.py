"""Bounded retry wrapper for async provider calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from utils.errors import AnalysisError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable_analysis_error(exc: BaseException) -> bool:
    """Only timeouts and provider outages are worth a second attempt."""
    return isinstance(exc, AnalysisError) and exc.retryable


@dataclass(frozen=True)
class RetryPolicy:
    """How many attempts to make and how long to wait between them.

    Attributes:
        max_attempts: Total attempts including the first one.
        backoff_seconds: Delay before the second attempt; doubled for each later attempt.
        retryable: Predicate deciding whether an exception should be retried.
    """

    max_attempts: int = 2
    backoff_seconds: float = 1.0
    retryable: Callable[[BaseException], bool] = field(default=is_retryable_analysis_error)

    def delay_for(self, attempt: int) -> float:
        """Return the sleep before attempt number `attempt + 1`."""
        return self.backoff_seconds * (2 ** (attempt - 1))


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    description: str = "operation",
) -> T:
    """Run `operation` until it succeeds or the policy gives up.

    Non-retryable exceptions propagate immediately. The last retryable
    exception propagates once `policy.max_attempts` is exhausted.
    """
    attempts = max(1, int(policy.max_attempts))
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            if attempt >= attempts or not policy.retryable(exc):
                raise
            delay = policy.delay_for(attempt)
            LOGGER.warning(
                "%s failed on attempt %d/%d (%s); retrying in %.2fs",
                description,
                attempt,
                attempts,
                exc,
                delay,
            )
            await asyncio.sleep(delay)
    raise RuntimeError("retry loop exited without a result")  # pragma: no cover
