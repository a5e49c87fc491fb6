"""
Bounded retry policy with a fixed delay between attempts
"""

from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar
import asyncio
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """
    Retry an async operation a bounded number of times.

    Only exceptions listed in retry_on are retried; anything else propagates
    immediately. When attempts run out the last exception is re-raised.
    There is no backoff growth and no jitter.

    Attributes:
        max_attempts: Total attempts including the first one
        delay_seconds: Fixed sleep between attempts
        retry_on: Exception classes that are considered transient
        sleep: Awaitable sleep, replaceable for tests
    """

    def __init__(
        self,
        max_attempts: int = 3,
        delay_seconds: float = 1.0,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        sleep: Optional[Callable[[float], Awaitable[None]]] = None
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        self.max_attempts = max_attempts
        self.delay_seconds = delay_seconds
        self.retry_on = retry_on
        self.sleep = sleep or asyncio.sleep

    async def run(self, operation: Callable[[], Awaitable[T]], description: str = "operation") -> T:
        """
        Run operation until it succeeds or attempts are exhausted.

        Args:
            operation: Zero-argument coroutine function
            description: Name used in log messages

        Returns:
            Result of the first successful attempt
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except self.retry_on as e:
                if attempt >= self.max_attempts:
                    logger.error(f"Giving up on {description} after {attempt} attempts: {e}")
                    raise
                logger.error(
                    f"Got error trying to {description} "
                    f"(attempt {attempt}/{self.max_attempts}). "
                    f"Retrying after sleeping for {self.delay_seconds}s: {e}"
                )
                await self.sleep(self.delay_seconds)

        # Unreachable: the loop either returns or raises
        raise RuntimeError(f"Retry loop for {description} exited without a result")
