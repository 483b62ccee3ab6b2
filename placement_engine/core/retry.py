# placement_engine/core/retry.py
"""Bounded retry with exponential backoff."""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry policy with exponential backoff.

    Default schedule is 10s, 30s, 90s (base * multiplier ** attempt),
    capped at ``max_delay``. ``max_attempts`` counts the first try.
    """

    max_attempts: int = 4
    base_delay: float = 10.0
    multiplier: float = 3.0
    max_delay: float = 300.0
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)

    def calculate_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        return min(self.base_delay * (self.multiplier ** attempt), self.max_delay)

    def run(
        self,
        operation: Callable[[], T],
        *,
        retry_on: Tuple[Type[BaseException], ...],
        description: str = "operation",
        before_retry: Callable[[BaseException], None] | None = None,
    ) -> T:
        """
        Run ``operation``, retrying on ``retry_on`` errors.

        Args:
            operation: Zero-argument callable
            retry_on: Exception types treated as transient
            description: Used in log lines
            before_retry: Called with the error before each backoff sleep

        Returns:
            The operation's result

        Raises:
            The last transient error once attempts are exhausted
        """
        attempt = 0
        while True:
            try:
                return operation()
            except retry_on as e:
                attempt += 1
                if attempt >= self.max_attempts:
                    logger.error(
                        f"[retry] {description} failed after {attempt} attempt(s): {e}"
                    )
                    raise

                delay = self.calculate_delay(attempt - 1)
                logger.warning(
                    f"[retry] {description} failed ({e}), "
                    f"retry {attempt}/{self.max_attempts - 1} in {delay:.1f}s"
                )
                if before_retry is not None:
                    before_retry(e)
                self.sleep(delay)
