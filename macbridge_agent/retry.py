"""
Bounded retry with exponential backoff.

Wraps fallible network and subprocess operations. Transient failures are
retried with exponential backoff; once the attempts are exhausted the last
error is re-raised unchanged so callers keep their own error handling.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar


logger = logging.getLogger("macbridge.agent.retry")

T = TypeVar("T")

MAX_RETRIES = 3
INITIAL_BACKOFF = 1.0  # seconds
BACKOFF_MULTIPLIER = 2.0
MAX_BACKOFF = 30.0  # seconds


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry parameters.

    Attributes:
        max_attempts: Total attempts including the first one
        initial_backoff: Delay before the second attempt, in seconds
        backoff_multiplier: Growth factor applied after each failure
        max_backoff: Upper bound for any single delay
        retry_on: Exception types considered transient
    """
    max_attempts: int = MAX_RETRIES
    initial_backoff: float = INITIAL_BACKOFF
    backoff_multiplier: float = BACKOFF_MULTIPLIER
    max_backoff: float = MAX_BACKOFF
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)

    def backoff_for(self, attempt: int) -> float:
        """Delay after the given zero-based failed attempt."""
        delay = self.initial_backoff * (self.backoff_multiplier ** attempt)
        return min(delay, self.max_backoff)

    def with_attempts(self, max_attempts: int) -> "RetryPolicy":
        return replace(self, max_attempts=max_attempts)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    description: str = "operation",
    log: Optional[logging.LoggerAdapter] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run an async operation, retrying transient failures.

    Args:
        operation: Zero-argument coroutine function to run
        policy: Retry parameters (defaults to RetryPolicy())
        description: Human-readable name used in log lines
        log: Logger or adapter to use (defaults to this module's logger)
        sleep: Sleep function, replaceable in tests

    Returns:
        The operation's result

    Raises:
        The last exception raised by the operation once attempts are
        exhausted, or any exception not listed in policy.retry_on
    """
    policy = policy or RetryPolicy()
    log = log or logger
    attempts = max(1, policy.max_attempts)

    for attempt in range(attempts):
        try:
            return await operation()
        except policy.retry_on as e:
            if attempt >= attempts - 1:
                if attempts > 1:
                    log.error(f"{description} failed after {attempts} attempts: {e}")
                raise

            backoff = policy.backoff_for(attempt)
            log.warning(
                f"{description} attempt {attempt + 1}/{attempts} failed, "
                f"retrying in {backoff:.1f}s: {e}"
            )
            await sleep(backoff)

    # Unreachable: the loop either returns or raises
    raise RuntimeError(f"{description} exhausted retries")
