"""
Retry handling with exponential backoff for pipeline operations.

Provides a small reusable policy object with:
- Exponential backoff (base delay, multiplier, cap)
- Random jitter added to every delay
- Pluggable retry predicates for results and exceptions
- Injectable sleep/jitter functions so tests run without waiting
"""

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..config.constants import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_BASE_DELAY_SECONDS,
    DEFAULT_MAX_DELAY_SECONDS,
    DEFAULT_MAX_RETRIES,
)

logger = logging.getLogger(__name__)


def default_jitter(delay: float, jitter_factor: float) -> float:
    """Random extra delay in [0, delay * jitter_factor]."""
    return random.uniform(0, delay * jitter_factor)


@dataclass
class RetryResult:
    """
    Result of a retried operation.

    success is True when the final attempt returned a value that did not
    call for another retry. The caller still decides whether that value
    means the operation worked (e.g. an HTTP 404 is final but not good).
    """

    success: bool
    result: Any = None
    attempts: int = 0
    total_delay_seconds: float = 0.0
    last_error: Optional[Exception] = None
    retries_exhausted: bool = False
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "attempts": self.attempts,
            "total_delay_seconds": round(self.total_delay_seconds, 2),
            "last_error": str(self.last_error) if self.last_error else None,
            "retries_exhausted": self.retries_exhausted,
            "error_count": len(self.errors),
        }


@dataclass
class RetryPolicy:
    """
    Bounded retry with exponential backoff and jitter.

    Attempt n (0-indexed) waits base_delay_seconds * multiplier**n, capped at
    max_delay_seconds, plus jitter, before attempt n + 1.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS
    multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    max_delay_seconds: float = DEFAULT_MAX_DELAY_SECONDS
    jitter_factor: float = 0.1
    jitter: Callable[[float, float], float] = default_jitter
    sleep: Callable[[float], None] = time.sleep

    @property
    def max_attempts(self) -> int:
        """Total attempts including the first one."""
        return self.max_retries + 1

    def calculate_delay(self, attempt: int) -> float:
        """
        Calculate delay before next retry attempt.

        Args:
            attempt: Current attempt number (0-indexed)

        Returns:
            Delay in seconds
        """
        delay = min(
            self.base_delay_seconds * (self.multiplier**attempt),
            self.max_delay_seconds,
        )
        delay += self.jitter(delay, self.jitter_factor)
        return max(0.0, delay)

    def execute(
        self,
        operation: Callable[[], Any],
        retry_on_result: Optional[Callable[[Any], bool]] = None,
        retry_on_exception: Optional[Callable[[Exception], bool]] = None,
        description: str = "operation",
    ) -> RetryResult:
        """
        Run an operation, retrying while the predicates ask for it.

        Args:
            operation: Zero-argument callable to execute
            retry_on_result: Returns True when a returned value is a
                transient failure (default: never)
            retry_on_exception: Returns True when a raised exception is
                transient (default: always)
            description: Label used in log messages

        Returns:
            RetryResult with outcome and statistics
        """
        result = RetryResult(success=False)

        for attempt in range(self.max_attempts):
            result.attempts = attempt + 1

            try:
                value = operation()
            except Exception as e:
                result.last_error = e
                result.result = None
                retryable = retry_on_exception(e) if retry_on_exception else True
                result.errors.append(
                    {
                        "attempt": attempt + 1,
                        "error": str(e),
                        "error_type": type(e).__name__,
                        "retryable": retryable,
                    }
                )
                if not retryable:
                    logger.info(f"Not retrying {description}: {type(e).__name__}: {e}")
                    return result
                reason = f"{type(e).__name__}: {e}"
            else:
                result.result = value
                result.last_error = None
                if retry_on_result is None or not retry_on_result(value):
                    result.success = True
                    logger.debug(f"{description} completed on attempt {attempt + 1}")
                    return result
                reason = f"retryable result {value!r}"
                result.errors.append(
                    {
                        "attempt": attempt + 1,
                        "error": reason,
                        "error_type": "result",
                        "retryable": True,
                    }
                )

            if attempt >= self.max_retries:
                result.retries_exhausted = True
                logger.error(
                    f"{description} failed after {result.attempts} attempt(s): {reason}"
                )
                return result

            delay = self.calculate_delay(attempt)
            logger.warning(
                f"{description} attempt {attempt + 1} failed ({reason}). "
                f"Retrying in {delay:.1f}s..."
            )
            result.total_delay_seconds += delay
            self.sleep(delay)

        return result
