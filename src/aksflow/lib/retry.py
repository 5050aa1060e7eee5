"""Exponential backoff for retryable stage errors.

Only exceptions whose ``retryable`` attribute is true are retried.
Authorization, quota and configuration errors surface on the first attempt.
"""

from __future__ import annotations

import functools
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from aksflow.lib.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def is_retryable(exc: BaseException) -> bool:
    """Return True if the exception is marked retryable."""
    return bool(getattr(exc, "retryable", False))


@dataclass
class RetryPolicy:
    """Bounded exponential backoff.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Delay in seconds before the second attempt
        max_delay: Upper bound for a single delay
        jitter: Fraction of the delay added at random (0 disables jitter)
        sleep: Sleep function, replaceable in tests
    """

    max_attempts: int = 5
    base_delay: float = 2.0
    max_delay: float = 60.0
    jitter: float = 0.2
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def delay(self, attempt: int) -> float:
        """Return the delay after the given failed attempt (1-based)."""
        backoff = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter:
            backoff += random.uniform(0, backoff * self.jitter)  # nosec B311
        return backoff

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call ``func`` and retry it while it raises retryable errors.

        Raises:
            The last exception once attempts are exhausted, or any
            non-retryable exception immediately.
        """
        name = getattr(func, "__name__", repr(func))
        for attempt in range(1, self.max_attempts + 1):
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                if not is_retryable(exc):
                    raise
                if attempt >= self.max_attempts:
                    logger.error(
                        f"All {self.max_attempts} attempts failed for {name}: {exc}"
                    )
                    raise
                wait_time = self.delay(attempt)
                logger.warning(
                    f"Attempt {attempt}/{self.max_attempts} failed for {name}: "
                    f"{exc}. Retrying in {wait_time:.1f}s..."
                )
                self.sleep(wait_time)
        # range() above always runs at least once
        raise AssertionError("unreachable")

    @classmethod
    def from_config(cls, config: Any, **overrides: Any) -> RetryPolicy:
        """Build a policy from a RetryConfig model."""
        values = {
            "max_attempts": config.max_attempts,
            "base_delay": config.base_delay,
            "max_delay": config.max_delay,
        }
        values.update(overrides)
        return cls(**values)


def with_retry(
    max_attempts: int = 3, base_delay: float = 1.0, max_delay: float = 60.0
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator form of RetryPolicy.

    Usage:
        @with_retry(max_attempts=3, base_delay=2)
        def push(self, image):
            ...
    """
    policy = RetryPolicy(
        max_attempts=max_attempts, base_delay=base_delay, max_delay=max_delay
    )

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            return policy.call(func, *args, **kwargs)

        return wrapper

    return decorator
