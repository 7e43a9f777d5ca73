"""Bounded async retry with exponential backoff, built on tenacity.

Usage:
    policy = RetryPolicy(max_attempts=3)
    outcome = await policy.run(lambda: extractor.extract(source))
    outcome.value, outcome.attempts
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

import tenacity
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
)

from llm_archive.errors import (
    ArchiveError,
    ConfigurationError,
    SourceNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures that a second attempt cannot fix.
NON_RETRYABLE: tuple[type[BaseException], ...] = (
    ConfigurationError,
    ValidationError,
    SourceNotFoundError,
)


def exponential_backoff(attempt: int) -> float:
    """Seconds to wait after failed attempt number *attempt* (1-based): 2, 4, 8, ..."""
    return float(2**attempt)


@dataclass
class RetryOutcome(Generic[T]):
    value: T
    attempts: int


class RetryError(ArchiveError):
    """Raised by RetryPolicy.run() once an operation has definitively failed."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Failed after {attempts} attempts: {last_error}")


class RetryPolicy:
    """Run an async operation up to ``max_attempts`` times.

    Between attempts the policy awaits ``sleep(backoff(attempt))``.
    Exceptions matching ``give_up_on`` (or not matching ``retry_on``)
    end the run immediately.

    Args:
        max_attempts: Total attempts, including the first (>= 1).
        backoff: Maps the failed attempt number to a delay in seconds.
        sleep: Awaitable sleep; tests inject a no-op.
        retry_on: Exception types considered transient.
        give_up_on: Exception types that are never retried.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        backoff: Callable[[int], float] = exponential_backoff,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        give_up_on: tuple[type[BaseException], ...] = NON_RETRYABLE,
    ) -> None:
        if max_attempts < 1:
            raise ValidationError(f"max_attempts must be >= 1, got {max_attempts}")
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.sleep = sleep
        self.retry_on = retry_on
        self.give_up_on = give_up_on

    async def run(self, fn: Callable[[], Awaitable[T]], label: str = "operation") -> RetryOutcome[T]:
        """Await ``fn()`` until it succeeds or the policy gives up.

        Raises:
            RetryError: Carrying the attempt count and the last exception.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=lambda state: self.backoff(state.attempt_number),
            retry=retry_if_exception_type(self.retry_on)
            & retry_if_not_exception_type(self.give_up_on),
            sleep=self.sleep,
            before_sleep=lambda state: logger.warning(
                "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                label,
                state.attempt_number,
                self.max_attempts,
                state.next_action.sleep if state.next_action else 0.0,
                state.outcome.exception() if state.outcome else "unknown",
            ),
        )
        attempts = 0
        try:
            async for attempt in retrying:
                attempts = attempt.retry_state.attempt_number
                with attempt:
                    value = await fn()
        except tenacity.RetryError as exc:
            last = exc.last_attempt
            raise RetryError(last.attempt_number, last.exception()) from last.exception()
        except Exception as exc:
            # not retryable: tenacity re-raised the original exception
            raise RetryError(attempts, exc) from exc
        return RetryOutcome(value=value, attempts=attempts)
