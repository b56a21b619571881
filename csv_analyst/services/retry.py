# =============================================================================
# Bounded Retry - Exponential Backoff for Model Calls
# =============================================================================
#
# Every stage goes through ModelInvoker, and every ModelInvoker call goes
# through with_retry(). One combinator, one policy, configured in settings.
#
# Delay schedule for attempt k (1-indexed, before attempt k+1):
#   min(base_delay * factor ** (k - 1), max_delay)
# With defaults (1s, x2, cap 8s, 3 attempts): 1s, 2s, then give up.
#
# Only UpstreamError with `retryable=True` (empty response, transient
# network / 5xx) is retried. Auth, quota and rate-limit failures surface
# immediately, and so does every ValidationError.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from csv_analyst.config import settings
from csv_analyst.errors import UpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 8.0
    factor: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed `attempt` (1-indexed)."""
        return min(self.base_delay * self.factor ** (attempt - 1), self.max_delay)

    @classmethod
    def from_settings(cls) -> RetryPolicy:
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
        )


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str = "model call",
) -> T:
    """
    Await `fn()` until it succeeds or the policy is exhausted.

    Raises the last UpstreamError once attempts run out. Non-retryable
    errors propagate from the first attempt.
    """
    attempts = max(1, policy.max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except UpstreamError as exc:
            if not exc.retryable or attempt == attempts:
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (%s, attempt %d/%d): %s. Retrying in %.1fs",
                label, exc.kind.value, attempt, attempts, exc.message, delay,
            )
            await asyncio.sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover
