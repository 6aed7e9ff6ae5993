"""
Resilience - Retry with exponential backoff for transient host failures

Only TRANSIENT failures (see errors.ErrorClassifier) are retried. Anything else
propagates immediately, with no sleep and no further attempt.
"""

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from .errors import ErrorCategory, ErrorClassifier

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    delays: List[float] = field(default_factory=lambda: [1.0, 2.0, 4.0])
    on_retry: Optional[Callable[[int, Exception, float], None]] = None

    def __post_init__(self):
        self.max_attempts = max(1, int(self.max_attempts))
        if not self.delays:
            self.delays = [1.0]


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Delay to wait after a failed attempt.

    Args:
        attempt: Failed attempt number (1-based)
        config: Retry configuration

    Returns:
        Delay in seconds (the last configured delay is reused past the end)
    """
    index = min(attempt - 1, len(config.delays) - 1)
    return float(config.delays[index])


class RetryPolicy:
    """
    Retries an async operation on transient failures.

    After the final attempt still fails the last exception is re-raised
    unchanged; callers treat that as persistent.

    Example:
        policy = RetryPolicy(RetryConfig(max_attempts=3))
        page = await policy.run(lambda: host.list_nodes(root, cursor, 200))
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        classifier: Optional[ErrorClassifier] = None,
        sleep: Optional[SleepFn] = None,
    ):
        self.config = config or RetryConfig()
        self.classifier = classifier or ErrorClassifier()
        self._sleep = sleep or asyncio.sleep

    async def run(self, operation: Callable[[], Awaitable[T]], label: str = "operation") -> T:
        """
        Invoke ``operation`` until it succeeds, fails non-transiently, or
        exhausts ``max_attempts``.
        """
        max_attempts = self.config.max_attempts

        for attempt in range(1, max_attempts + 1):
            try:
                return await operation()

            except Exception as e:
                category = self.classifier.classify(e)

                if category is not ErrorCategory.TRANSIENT:
                    logger.debug(f"Not retrying {label} ({category.value}): {e}")
                    raise

                if attempt >= max_attempts:
                    logger.warning(f"Max retries ({max_attempts}) exceeded for {label}: {e}")
                    raise

                delay = calculate_delay(attempt, self.config)
                logger.info(f"Retry {attempt}/{max_attempts} for {label} in {delay:.2f}s: {e}")

                if self.config.on_retry:
                    self.config.on_retry(attempt, e, delay)

                await self._sleep(delay)

        # max_attempts >= 1 guarantees the loop either returned or raised
        raise RuntimeError("unreachable")


def retry_async(
    config: Optional[RetryConfig] = None,
    classifier: Optional[ErrorClassifier] = None,
):
    """
    Decorator for retrying async functions on transient failures.

    Example:
        @retry_async(RetryConfig(max_attempts=5))
        async def fetch_catalog():
            ...
    """
    policy = RetryPolicy(config, classifier)

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await policy.run(lambda: func(*args, **kwargs), label=func.__name__)
        return wrapper

    return decorator
