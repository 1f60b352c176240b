"""Retry policies for the scorer call and the queue.

Two independent layers:
- Inner: wraps a single scorer call inside one processing attempt and
  absorbs transient upstream failures (overload, rate limit, 5xx).
- Outer: a failed item is offered to the dispatcher again until its
  retry_count reaches max_retries. The delay computed for it is advisory;
  the real re-pick time is whenever the dispatcher next polls.
"""
import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from .config import settings
from .errors import ErrorKind, classify_exception

logger = logging.getLogger(__name__)

T = TypeVar("T")


# Retry eligibility at the inner layer, defined for every ErrorKind
RETRYABLE: dict[ErrorKind, bool] = {
    ErrorKind.OVERLOADED: True,
    ErrorKind.RATE_LIMITED: True,
    ErrorKind.SERVER_ERROR: True,
    ErrorKind.CLIENT_ERROR: False,
    ErrorKind.INFRASTRUCTURE: False,
}


def is_retryable(kind: ErrorKind) -> bool:
    return RETRYABLE[kind]


@dataclass
class RetryPolicy:
    """Retry policy configuration."""
    max_attempts: int = 5  # Retries after the first try
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 20.0
    exponential_base: float = 1.5
    jitter: float = 0.2  # Fraction of the delay added at random

    def get_delay(self, attempt: int) -> float:
        """Calculate delay before retry number ``attempt`` (0-based)."""
        delay = min(
            self.base_delay_seconds * (self.exponential_base ** attempt),
            self.max_delay_seconds,
        )
        if self.jitter:
            delay += random.random() * self.jitter * delay
        return delay


def inner_policy() -> RetryPolicy:
    """Policy for a single scorer invocation."""
    return RetryPolicy(
        max_attempts=settings.scorer_max_retries,
        base_delay_seconds=settings.scorer_base_delay_seconds,
        max_delay_seconds=settings.scorer_max_delay_seconds,
        exponential_base=settings.scorer_backoff_multiplier,
        jitter=settings.scorer_jitter,
    )


def outer_policy() -> RetryPolicy:
    """Advisory backoff between queue-level attempts."""
    return RetryPolicy(
        max_attempts=settings.max_retries,
        base_delay_seconds=settings.retry_base_delay_minutes * 60,
        max_delay_seconds=settings.retry_max_delay_minutes * 60,
        exponential_base=2.0,
        jitter=0.0,
    )


def retry_call(
    fn: Callable[[], T],
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "call",
) -> T:
    """
    Call ``fn`` retrying retryable failures with exponential backoff.

    The last exception is re-raised once retries are exhausted or as soon
    as a non-retryable failure is seen.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except Exception as e:
            kind = classify_exception(e)
            if not is_retryable(kind):
                raise
            if attempt >= policy.max_attempts:
                logger.warning(f"{description} failed after {attempt + 1} attempts ({kind.value})")
                raise

            delay = policy.get_delay(attempt)
            logger.info(
                f"{description} attempt {attempt + 1} failed ({kind.value}), "
                f"retrying in {delay:.1f}s"
            )
            sleep(delay)
            attempt += 1
