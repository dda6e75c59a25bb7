"""Retry policies shared by queue-level and execution-level retries."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Protocol, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Substrings that mark an error as fatal when only its text survived
# (e.g. a failed Result coming back from a worker).
FATAL_MARKERS = ("FATAL", "INVALID", "UNAUTHORIZED", "NOT_FOUND")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff shape. Delays are in seconds."""

    max_retries: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0


DEFAULT_RETRY_POLICY = RetryPolicy()


class RetryStrategy(Protocol):
    policy: RetryPolicy

    def should_retry(self, attempt: int, error: BaseException) -> bool: ...

    def get_delay(self, attempt: int) -> float: ...


def is_fatal(error: BaseException) -> bool:
    """True for errors that no amount of retrying can fix."""
    if getattr(error, "fatal", False):
        return True
    message = str(error)
    return any(marker in message for marker in FATAL_MARKERS)


class ExponentialBackoff:
    """Exponential backoff with up to 10% jitter, capped at ``max_delay``."""

    def __init__(self, policy: RetryPolicy | None = None, **overrides: Any) -> None:
        base = policy or DEFAULT_RETRY_POLICY
        if overrides:
            base = replace(base, **overrides)
        self.policy = base

    def should_retry(self, attempt: int, error: BaseException) -> bool:
        if is_fatal(error):
            return False
        return attempt < self.policy.max_retries

    def get_delay(self, attempt: int) -> float:
        p = self.policy
        delay = p.base_delay * p.multiplier**attempt
        jitter = random.uniform(0.0, 0.1)
        return min(delay * (1 + jitter), p.max_delay)

    def __repr__(self) -> str:
        return f"ExponentialBackoff({self.policy!r})"


class FixedDelay:
    """Same delay before every retry."""

    def __init__(self, delay: float = 1.0, max_retries: int = 3) -> None:
        self.policy = RetryPolicy(
            max_retries=max_retries,
            base_delay=delay,
            multiplier=1.0,
            max_delay=delay,
        )

    def should_retry(self, attempt: int, error: BaseException) -> bool:
        return attempt < self.policy.max_retries

    def get_delay(self, attempt: int) -> float:
        return self.policy.base_delay


class NoRetry:
    """Never retry."""

    policy = RetryPolicy(max_retries=0, base_delay=0.0, multiplier=0.0, max_delay=0.0)

    def should_retry(self, attempt: int, error: BaseException) -> bool:
        return False

    def get_delay(self, attempt: int) -> float:
        return 0.0


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    strategy: RetryStrategy,
    on_retry: Callable[[int, BaseException, float], Any] | None = None,
) -> T:
    """
    Await ``fn()`` until it succeeds or the strategy gives up.

    Args:
        fn: Zero-argument coroutine factory; called once per attempt.
        strategy: Decides whether and how long to wait between attempts.
        on_retry: Called with (attempt, error, delay) before each sleep.

    Raises:
        The last error once ``strategy.should_retry`` returns False.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            if not strategy.should_retry(attempt, e):
                raise
            delay = strategy.get_delay(attempt)
            logger.debug("Attempt %d failed (%s), retrying in %.2fs", attempt, e, delay)
            if on_retry is not None:
                on_retry(attempt, e, delay)
            await asyncio.sleep(delay)
            attempt += 1
