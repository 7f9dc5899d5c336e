"""Retry policy and driver for transient failures."""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from kb_service.core.errors import TransportError
from kb_service.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """How often and how patiently to retry.

    ``max_retries`` counts retries, not attempts: a call is attempted at most
    ``max_retries + 1`` times.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff: str = "linear"  # linear: attempt * base, exponential: base * 2^(attempt-1)
    retry_on: Tuple[Type[BaseException], ...] = field(default=(TransportError,))

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        if self.backoff == "exponential":
            delay = self.base_delay * (2 ** (attempt - 1))
        else:
            delay = self.base_delay * attempt
        return min(delay, self.max_delay)

    def is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, self.retry_on)


DEFAULT_RETRY_CONFIG = RetryConfig()


class RetryManager:
    """Single retry driver used by every transport."""

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or DEFAULT_RETRY_CONFIG
        self._sleep = sleep

    async def execute_with_retry_async(
        self,
        func: Callable[[], Awaitable[T]],
        description: str = "operation",
    ) -> T:
        """Run ``func`` until it succeeds, fails permanently, or retries run out.

        Raises:
            The last error raised by ``func``.
        """
        attempt = 0
        while True:
            try:
                return await func()
            except Exception as e:
                if not self.config.is_retryable(e) or attempt >= self.config.max_retries:
                    raise

                attempt += 1
                delay = self.config.delay_for(attempt)
                logger.warning(
                    "Retrying %s (attempt %d/%d) in %.1fs: %s",
                    description,
                    attempt,
                    self.config.max_retries,
                    delay,
                    e,
                )
                await self._sleep(delay)
