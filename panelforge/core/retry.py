"""
Retry policy with exponential backoff.

A RetryPolicy decides whether a failed external call is attempted again and
how long to wait first. retry_async_call drives an async callable under a
policy; sleep and clock are injectable so tests never wait in real time.
"""

import asyncio
import random
import time
from dataclasses import dataclass, asdict
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from panelforge.core.exceptions import (
    CircuitOpenError,
    UpstreamError,
    UpstreamRateLimitError,
)
from panelforge.core.logging_config import get_logger

logger = get_logger("core.retry")

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]
ClockFn = Callable[[], float]


@dataclass
class RetryPolicy:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    base_delay: float = 1.0  # Seconds before the first retry
    max_delay: float = 30.0  # Cap on the exponential part
    jitter_ratio: float = 0.3  # Jitter drawn from [0, ratio * delay]
    rate_limit_multiplier: float = 3.0
    max_total_seconds: float = 120.0  # Wall-clock ceiling across all attempts

    def compute_delay(
        self,
        attempt: int,
        error: Optional[BaseException] = None,
        rng: Optional[random.Random] = None,
    ) -> float:
        """
        Calculate the wait before the next attempt.

        Args:
            attempt: Attempt that just failed (1-indexed)
            error: The failure, used for rate-limit handling
            rng: Random source for jitter

        Returns:
            Delay in seconds
        """
        rng = rng or random
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        delay += rng.uniform(0, self.jitter_ratio * delay)

        if isinstance(error, UpstreamRateLimitError):
            delay *= self.rate_limit_multiplier
            if error.retry_after:
                delay = max(delay, error.retry_after)

        return delay

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """True when error is transient and attempts remain."""
        if attempt >= self.max_attempts:
            return False
        # Short-circuits surface at once; they are not a failed attempt
        if isinstance(error, CircuitOpenError):
            return False
        if isinstance(error, UpstreamError):
            return error.retryable
        return False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RetryPolicy":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


DEFAULT_RETRY_POLICY = RetryPolicy()


async def retry_async_call(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    sleep: SleepFn = asyncio.sleep,
    clock: ClockFn = time.monotonic,
    on_retry: Optional[Callable[[BaseException, int, float], None]] = None,
    rng: Optional[random.Random] = None,
    label: str = "call",
) -> T:
    """
    Call an async function with retry logic.

    Args:
        func: Zero-argument coroutine factory, one call per attempt
        policy: Retry policy
        sleep: Awaitable sleep used between attempts
        clock: Monotonic clock used for the wall-clock ceiling
        on_retry: Optional callback called with (error, attempt, delay)
        rng: Random source for jitter
        label: Name used in log messages

    Returns:
        Result of func

    Raises:
        The last error once it is terminal, attempts run out, or the
        next wait would cross the wall-clock ceiling.
    """
    started = clock()
    attempt = 0

    while True:
        attempt += 1
        try:
            return await func()
        except UpstreamError as e:
            if not policy.should_retry(e, attempt):
                if e.retryable and not isinstance(e, CircuitOpenError):
                    logger.error(f"{label}: all {attempt} attempts failed. Last error: {e}")
                raise

            delay = policy.compute_delay(attempt, e, rng)
            elapsed = clock() - started
            if elapsed + delay > policy.max_total_seconds:
                logger.error(
                    f"{label}: retry ceiling of {policy.max_total_seconds:.1f}s reached "
                    f"after {attempt} attempts. Last error: {e}"
                )
                raise

            logger.warning(
                f"{label}: attempt {attempt}/{policy.max_attempts} failed: {e}. "
                f"Retrying in {delay:.2f}s..."
            )
            if on_retry:
                on_retry(e, attempt, delay)
            await sleep(delay)
