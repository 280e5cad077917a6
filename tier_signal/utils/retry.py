"""
TIER SIGNAL — Retry with Exponential Backoff
Shared by every external call: market data, reasoning model, delivery.
"""
import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from tier_signal.utils.logger import get_logger

logger = get_logger("retry")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt ceiling and backoff curve for one external dependency."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 15.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (1-based): base * 2^(attempt-1), capped."""
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    event: str = "operation",
    **context,
) -> T:
    """
    Await `operation` until it succeeds or the policy's attempts run out.
    Only exceptions in `retry_on` are retried; the last one is re-raised.
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except retry_on as e:
            if attempt >= policy.max_attempts:
                logger.warning(f"{event}_retries_exhausted", attempts=attempt,
                               error=str(e), **context)
                raise
            delay = policy.delay_for(attempt)
            logger.info(f"{event}_retrying", attempt=attempt, delay=delay,
                        error=str(e), **context)
            await asyncio.sleep(delay)
    raise RuntimeError("unreachable")
