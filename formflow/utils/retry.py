"""
Bounded retry with exponential backoff.

Used for final submission, the one operation whose failure the end user
sees. Autosave does not retry here: it waits for its next debounce window.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


def exponential_backoff(
    attempt: int,
    base_delay: float = 0.5,
    multiplier: float = 2.0,
    max_delay: float = 4.0,
) -> float:
    """Calculate exponential backoff delay.

    Args:
        attempt: Current attempt number (0-based)
        base_delay: Base delay in seconds
        multiplier: Backoff multiplier
        max_delay: Maximum delay in seconds

    Returns:
        Calculated delay in seconds
    """
    delay = base_delay * (multiplier**attempt)
    return min(delay, max_delay)


@dataclass(frozen=True)
class RetryOutcome:
    succeeded: bool
    attempts: int
    result: Any = None
    error: Optional[str] = None


def call_with_retry(
    func: Callable[[], Any],
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "operation",
) -> RetryOutcome:
    """
    Call func until it returns a truthy value or attempts run out.

    An exception or a falsy return both count as a failed attempt. No delay
    follows the last attempt.

    Returns:
        RetryOutcome with the last result or error
    """
    last_error = None

    for attempt in range(max_attempts):
        try:
            result = func()
            if result:
                if attempt:
                    logger.info(f"{description} succeeded on attempt {attempt + 1}")
                return RetryOutcome(succeeded=True, attempts=attempt + 1, result=result)
            last_error = f"{description} was rejected"
        except Exception as e:
            last_error = str(e) or type(e).__name__

        logger.warning(f"{description} attempt {attempt + 1}/{max_attempts} failed: {last_error}")

        if attempt < max_attempts - 1:
            sleep(exponential_backoff(attempt, base_delay=base_delay, max_delay=max_delay))

    logger.error(f"{description} failed after {max_attempts} attempts")
    return RetryOutcome(succeeded=False, attempts=max_attempts, error=last_error)
