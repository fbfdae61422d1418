"""
Retry With Backoff

Boundary-layer retry helper for calls to external services and for the
background job layer. The generation pipeline never retries inline; callers
that own a request lifecycle (embedding calls, batch regeneration) wrap
their operation here.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from ..config import settings

logger = logging.getLogger("wiki.retry")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff parameters. Delays are in seconds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.1

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            factor=settings.retry_backoff_factor,
            max_delay=settings.retry_max_delay_seconds,
            jitter=settings.retry_jitter,
        )


def compute_delay(
    policy: RetryPolicy,
    attempt: int,
    rand: Callable[[], float] = random.random,
) -> float:
    """
    Delay before retrying after the given (1-based) failed attempt.

    ``base * factor ** (attempt - 1)``, capped at ``max_delay``, plus up to
    ``jitter`` of that value at random. The result never exceeds
    ``max_delay``.
    """
    delay = min(policy.base_delay * policy.factor ** (attempt - 1), policy.max_delay)
    delay += delay * policy.jitter * rand()
    return min(delay, policy.max_delay)


def is_retryable_error(exc: BaseException) -> bool:
    """Default predicate: honour a ``retryable`` attribute when present."""
    return bool(getattr(exc, "retryable", False))


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` until it succeeds or the policy is exhausted.

    Parameters
    ----------
    operation : Callable[[], Awaitable[T]]
        Zero-argument coroutine factory. Called once per attempt.

    policy : Optional[RetryPolicy]
        Backoff parameters. Defaults to ``RetryPolicy()``.

    is_retryable : Callable[[BaseException], bool]
        Decides whether a raised exception warrants another attempt.

    sleep : Callable[[float], Awaitable[None]]
        Injected for tests.

    Returns
    -------
    T
        The first successful result.

    Raises
    ------
    Exception
        The last error raised, when it is not retryable or attempts run out.
    """
    policy = policy or RetryPolicy()
    attempt = 1

    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= policy.max_attempts or not is_retryable(exc):
                raise

            delay = compute_delay(policy, attempt)
            logger.warning(
                "Attempt %d/%d failed (%s: %s); retrying in %.2fs",
                attempt,
                policy.max_attempts,
                type(exc).__name__,
                exc,
                delay,
            )
            await sleep(delay)
            attempt += 1
