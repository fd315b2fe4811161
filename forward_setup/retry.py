"""Retry helper shared by the provider clients and the pipeline phases."""

import logging
import time
from typing import Any, Callable, Optional

from .models import DelayStrategy, RetryPolicy

logger = logging.getLogger(__name__)


class RetryExhaustedError(Exception):
    """Raised when every attempt allowed by a RetryPolicy has failed."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Operation failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


def backoff_policy(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
) -> RetryPolicy:
    """Exponential policy used for throttled API requests."""
    return RetryPolicy(
        max_attempts=max_retries + 1,
        strategy=DelayStrategy.EXPONENTIAL,
        base_delay=base_delay,
        max_delay=max_delay,
    )


def attempt_with_policy(
    func: Callable[[], Any],
    policy: RetryPolicy,
    retry_on: Callable[[BaseException], bool],
    sleep: Callable[[float], None] = time.sleep,
    on_attempt: Optional[Callable[[int], None]] = None,
) -> Any:
    """
    Execute a function, retrying failures the policy allows.

    Args:
        func: The function to execute
        policy: Attempt cap and delay strategy
        retry_on: Predicate deciding whether an exception is worth retrying.
            Exceptions it rejects propagate immediately.
        sleep: Sleep function, replaced in tests
        on_attempt: Called with the 1-based attempt number before each attempt

    Returns:
        The result of the function call

    Raises:
        RetryExhaustedError: If all attempts failed with retryable errors
    """
    last_exception: Optional[BaseException] = None

    for attempt in range(1, policy.max_attempts + 1):
        if on_attempt is not None:
            on_attempt(attempt)
        try:
            return func()
        except Exception as e:
            if not retry_on(e):
                raise
            last_exception = e
            if attempt < policy.max_attempts:
                delay = policy.delay_for(attempt)
                logger.debug(
                    "Attempt %d/%d failed (%s), retrying in %.1fs",
                    attempt, policy.max_attempts, e, delay,
                )
                if delay > 0:
                    sleep(delay)

    raise RetryExhaustedError(policy.max_attempts, last_exception) from last_exception
