"""
Bounded retry with a fixed delay for remote generation calls.

Every ``Exception`` is retried the same way, whatever its cause; the caller
gets the last failure back unchanged once the attempt budget is spent.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_DELAY_SECONDS = 2.0

Operation = Callable[[int], Awaitable[T]]
Sleep = Callable[[float], Awaitable[object]]


@dataclass(frozen=True)
class RetrySucceeded(Generic[T]):
    value: T
    attempts: int


@dataclass(frozen=True)
class RetryExhausted:
    last_error: Exception
    attempts: int


RetryOutcome = Union[RetrySucceeded[T], RetryExhausted]


def _log(level: int, message: str, *args: object) -> None:
    # A broken handler or unprintable exception must not replace the real error.
    try:
        logger.log(level, message, *args)
    except Exception:
        pass


async def attempt_with_retry(
    operation: Operation[T],
    operation_name: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    delay_seconds: float = DEFAULT_DELAY_SECONDS,
    *,
    sleep: Sleep = asyncio.sleep,
) -> RetryOutcome[T]:
    """
    Run ``operation(attempt)`` up to ``max_attempts`` times.

    Attempts are 1-indexed and strictly sequential. After a failed attempt the
    loop waits ``delay_seconds`` (no backoff, no jitter) unless the budget is
    spent. Returns ``RetrySucceeded`` on the first success or
    ``RetryExhausted`` carrying the error raised by the final attempt.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    attempt = 1
    while True:
        if attempt > 1:
            _log(
                logging.INFO,
                "[%s] Attempt %d/%d started...",
                operation_name,
                attempt,
                max_attempts,
            )
        try:
            value = await operation(attempt)
        except Exception as e:
            _log(
                logging.WARNING,
                "[%s] Attempt %d failed: %s",
                operation_name,
                attempt,
                e,
            )
            if attempt >= max_attempts:
                _log(logging.ERROR, "[%s] All %d attempts failed.", operation_name, max_attempts)
                return RetryExhausted(last_error=e, attempts=attempt)
            _log(
                logging.INFO,
                "[%s] Retrying in %.0fms...",
                operation_name,
                delay_seconds * 1000,
            )
            await sleep(delay_seconds)
            attempt += 1
            continue
        return RetrySucceeded(value=value, attempts=attempt)


async def retry_operation(
    operation: Operation[T],
    operation_name: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    delay_seconds: float = DEFAULT_DELAY_SECONDS,
    *,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Like ``attempt_with_retry`` but re-raises the last error on exhaustion."""
    outcome = await attempt_with_retry(
        operation,
        operation_name,
        max_attempts,
        delay_seconds,
        sleep=sleep,
    )
    if isinstance(outcome, RetryExhausted):
        raise outcome.last_error
    return outcome.value
