"""
Resilience helpers for calls to external services.

Provides:
- RetryConfig: Configuration for retry behavior
- retry_with_backoff: exponential backoff with jitter for a callable
"""

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from timeblocker import config

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior with exponential backoff."""

    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0

    @classmethod
    def from_config(cls) -> "RetryConfig":
        """Retry policy for calendar sync from environment settings."""
        return cls(
            max_retries=config.SYNC_MAX_RETRIES,
            base_delay=config.SYNC_BASE_DELAY,
            max_delay=config.SYNC_MAX_DELAY,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before retrying after a failed attempt (0-based)."""
        delay = min(self.base_delay * (self.exponential_base**attempt), self.max_delay)
        # Jitter up to 10% of the delay
        return delay + random.uniform(0, delay * 0.1)  # noqa: S311


def retry_with_backoff(
    func: Callable[[], T],
    config: RetryConfig,
    logger_: logging.Logger | None = None,
    retry_on: tuple[type[BaseException], ...] = (OSError,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Execute a function with exponential backoff and jitter.

    Args:
        func: Callable to execute
        config: RetryConfig with max_retries, base_delay, max_delay, exponential_base
        logger_: Logger for retry attempts, defaults to this module's
        retry_on: Exception types worth another attempt; anything else
            propagates immediately
        sleep: Delay function (injectable for tests)

    Returns:
        Result of successful function call

    Raises:
        Last exception if all retries exhausted
    """
    log = logger_ or logger
    attempt = 0
    while True:
        try:
            return func()
        except retry_on as e:
            if attempt >= config.max_retries:
                log.error(f"All {config.max_retries + 1} attempts failed: {e}")
                raise

            delay = config.delay_for(attempt)
            log.warning(f"Attempt {attempt + 1} failed: {e}. Retrying in {delay:.1f}s")
            sleep(delay)
            attempt += 1
