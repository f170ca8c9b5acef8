"""Retry with exponential backoff for upstream calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from screener.errors import is_rate_limited

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryClassifier = Callable[[BaseException], bool]


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters.

    ``max_attempts`` counts every call, including the first one.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    def delay_for(self, attempt: int, exc: BaseException) -> float:
        """Delay before the next attempt (``attempt`` is 0-indexed)."""
        retry_after = getattr(exc, "retry_after", None)
        if retry_after is not None:
            return min(float(retry_after), self.max_delay)
        return min(self.base_delay * (2**attempt), self.max_delay)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    should_retry: RetryClassifier = is_rate_limited,
    label: str = "request",
) -> T:
    """Run ``operation`` until it succeeds or the policy gives up.

    Errors rejected by ``should_retry`` propagate immediately; the last
    retryable error propagates once attempts are exhausted.
    """
    if policy.max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {policy.max_attempts}")

    for attempt in range(policy.max_attempts):
        try:
            return await operation()
        except Exception as exc:
            if not should_retry(exc) or attempt >= policy.max_attempts - 1:
                raise
            delay = policy.delay_for(attempt, exc)
            logger.warning(
                "%s failed (attempt %d/%d): %s. Retrying in %.2fs",
                label,
                attempt + 1,
                policy.max_attempts,
                exc,
                delay,
            )
            await asyncio.sleep(delay)

    raise AssertionError("unreachable")
