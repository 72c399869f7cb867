"""
Application-level retry policy for AI requests.

Retries the whole request cycle (request, parse, decode) on errors that are
marked retryable. Rate limiting and flaky connections are handled one layer
below, by the HTTP transport.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import ConnectorError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryCallback = Callable[[int, ConnectorError, float], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Constant backoff with random jitter.

    Attributes:
        max_attempts: Total number of attempts, including the first one
        delay_seconds: Constant wait between two attempts
        jitter_seconds: Upper bound of the random delay added to each wait
    """
    max_attempts: int = 3
    delay_seconds: float = 5.0
    jitter_seconds: float = 1.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        if self.jitter_seconds < 0:
            raise ValueError("jitter_seconds must be >= 0")

    def compute_delay(self) -> float:
        if not self.jitter_seconds:
            return self.delay_seconds
        return self.delay_seconds + random.uniform(0, self.jitter_seconds)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        on_retry: Optional[RetryCallback] = None
    ) -> T:
        """Run an operation, retrying retryable connector errors.

        ``on_retry`` is called with the attempt number that failed, the error
        and the upcoming delay before the policy sleeps.

        Raises:
            ConnectorError: The last error once attempts are exhausted, or
                the first non-retryable one
        """
        attempt = 1
        while True:
            try:
                return await operation()
            except ConnectorError as exc:
                if not exc.retryable or attempt >= self.max_attempts:
                    raise
                delay = self.compute_delay()
                logger.warning(
                    "Attempt %d/%d failed (%s), retrying in %.1fs",
                    attempt, self.max_attempts, exc, delay
                )
                if on_retry is not None:
                    on_retry(attempt, exc, delay)
                await asyncio.sleep(delay)
                attempt += 1
