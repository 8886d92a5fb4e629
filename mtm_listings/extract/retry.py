"""Retry policy for calls to the extraction collaborator."""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from mtm_listings.config import config
from mtm_listings.errors import RetryableExtractionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, RetryableExtractionError)


@dataclass
class RetryPolicy:
    """How many attempts, how long to wait between them, and what to retry.

    Waits grow as ``initial_delay * multiplier ** (attempt - 1)``: 1s then 2s
    with the defaults, for three attempts in total.
    """

    max_attempts: int = field(default_factory=lambda: config.EXTRACT_MAX_ATTEMPTS)
    initial_delay: float = field(default_factory=lambda: config.EXTRACT_BACKOFF)
    multiplier: float = 2.0
    max_delay: float = 30.0
    retryable: Callable[[BaseException], bool] = is_retryable
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def delay_for(self, attempt: int) -> float:
        """Wait after the given failed attempt (1-based)."""
        return min(self.max_delay, self.initial_delay * self.multiplier ** (attempt - 1))

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.initial_delay,
                exp_base=self.multiplier,
                max=self.max_delay,
            ),
            retry=retry_if_exception(self.retryable),
            before_sleep=_log_retry,
            sleep=self.sleep,
            reraise=True,
        )


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(f"Extraction attempt {retry_state.attempt_number} failed ({exc}), retrying in {wait:.1f}s")


async def call_with_policy(
    policy: RetryPolicy,
    fn: Callable[[], Awaitable[T]],
    on_attempt: Optional[Callable[[int], None]] = None,
) -> T:
    """Run ``fn`` under ``policy``; the last error is re-raised when attempts run out."""
    async for attempt in policy.retrying():
        with attempt:
            if on_attempt is not None:
                on_attempt(attempt.retry_state.attempt_number)
            return await fn()
    raise AssertionError("unreachable")  # pragma: no cover
