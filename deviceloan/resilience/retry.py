"""Retry with exponential backoff.

Provides automatic retry for transient failures with:
- Configurable attempt count
- Exponential backoff capped at a maximum delay (no jitter)
- A retryability predicate deciding which errors are worth another attempt
"""

import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from .timeout import TimeoutError as GuardTimeoutError

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[Any]]


class RetryableError(Exception):
    """Exception that should be retried."""

    pass


class NetworkError(RetryableError):
    """Network-related error that should be retried."""

    pass


class ServiceUnavailableError(RetryableError):
    """Downstream answered with a 5xx status."""

    def __init__(self, message: str = "", status_code: int = 503):
        super().__init__(message)
        self.status_code = status_code


class RetryExhaustedError(Exception):
    """All attempts failed. Wraps the last underlying error."""

    def __init__(self, last_error: Exception, attempts: int):
        super().__init__(f"Retry exhausted after {attempts} attempts: {last_error}")
        self.last_error = last_error
        self.attempts = attempts


def is_transient(error: BaseException) -> bool:
    """Classify timeouts, network-class and 5xx-class errors as retryable.

    Everything else (missing user or device, bad input, ...) is terminal.
    """
    if isinstance(error, (GuardTimeoutError, asyncio.TimeoutError, RetryableError, ConnectionError)):
        return True

    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int) and status_code >= 500:
        return True

    message = str(error).lower()
    return "network" in message or "timeout" in message


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    initial_delay: float = 1.0  # seconds
    max_delay: float = 10.0  # seconds
    backoff_multiplier: float = 2.0
    # None retries every error
    retryable: Optional[Callable[[Exception], bool]] = None

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")


class RetryExecutor:
    """Re-invokes a fallible async operation with exponential backoff.

    Usage:
        executor = RetryExecutor(RetryConfig(max_attempts=3, retryable=is_transient))
        result = await executor.execute(lambda: client.send(message))
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Sleep = asyncio.sleep,
        on_retry: Optional[Callable[[Exception, int], None]] = None,
    ):
        """Initialize retry executor.

        Args:
            config: Retry configuration
            sleep: Awaitable sleep used between attempts
            on_retry: Optional callback on retry (exception, attempt_number)
        """
        self.config = config or RetryConfig()
        self._sleep = sleep
        self._on_retry = on_retry

    def should_retry(self, error: Exception) -> bool:
        """Apply the retryability predicate."""
        if self.config.retryable is None:
            return True
        return self.config.retryable(error)

    async def execute(self, operation: Operation, name: str = "operation") -> Any:
        """Run ``operation`` until it succeeds or attempts run out.

        Raises:
            The original error if it is not retryable
            RetryExhaustedError: If the last permitted attempt failed
        """
        delay = self.config.initial_delay

        for attempt in range(1, self.config.max_attempts + 1):
            try:
                return await operation()
            except Exception as e:
                if not self.should_retry(e):
                    logger.warning(f"Non-retryable error in {name}: {e}")
                    raise

                if attempt == self.config.max_attempts:
                    logger.error(f"All {attempt} attempts failed for {name}: {e}")
                    raise RetryExhaustedError(e, attempt) from e

                logger.warning(
                    f"Attempt {attempt}/{self.config.max_attempts} failed for "
                    f"{name}: {e}. Retrying in {delay:.2f}s"
                )

                if self._on_retry:
                    try:
                        self._on_retry(e, attempt)
                    except Exception as callback_error:
                        logger.error(f"on_retry callback failed: {callback_error}")

                await self._sleep(delay)
                delay = min(delay * self.config.backoff_multiplier, self.config.max_delay)

        # max_attempts >= 1 guarantees the loop returns or raises
        raise AssertionError("unreachable")


def retry_with_backoff(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 10.0,
    backoff_multiplier: float = 2.0,
    retryable: Optional[Callable[[Exception], bool]] = None,
    on_retry: Optional[Callable[[Exception, int], None]] = None,
):
    """Decorator for retry with exponential backoff.

    Usage:
        @retry_with_backoff(max_attempts=3, retryable=is_transient)
        async def call_mail_provider():
            ...
    """
    config = RetryConfig(
        max_attempts=max_attempts,
        initial_delay=initial_delay,
        max_delay=max_delay,
        backoff_multiplier=backoff_multiplier,
        retryable=retryable,
    )

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            executor = RetryExecutor(config, on_retry=on_retry)
            return await executor.execute(lambda: func(*args, **kwargs), name=func.__name__)

        return wrapper

    return decorator
