"""Timeout guard for downstream calls.

Races an awaitable against a deadline. When the deadline wins, the
operation is left running and its eventual result is discarded; the caller
gets a TimeoutError immediately.
"""

import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class TimeoutConfig:
    """Configuration for timeout wrapper."""

    timeout_seconds: float = 30.0
    on_timeout: Optional[Callable[[str], None]] = None


class TimeoutError(Exception):
    """Raised when an operation times out."""

    def __init__(self, message: str = "", timeout: float = 0.0):
        super().__init__(message)
        self.timeout = timeout


# Default bound on one email delivery attempt
EMAIL_TIMEOUT = 5.0


def _discard_result(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Discarded late failure after timeout: {error!r}")


async def with_async_timeout(
    awaitable: Awaitable[Any],
    timeout_seconds: float,
    error_message: Optional[str] = None,
) -> Any:
    """Await ``awaitable`` with a deadline.

    Args:
        awaitable: Coroutine or future to run
        timeout_seconds: Deadline in seconds
        error_message: Custom message for the TimeoutError

    Returns:
        The awaitable's result, unchanged

    Raises:
        TimeoutError: If the deadline elapses first
    """
    task = asyncio.ensure_future(awaitable)
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout_seconds)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task in done:
        return task.result()

    task.add_done_callback(_discard_result)
    message = error_message or "Operation timed out"
    raise TimeoutError(f"{message} after {timeout_seconds}s", timeout_seconds)


def with_timeout(
    seconds: float = 30.0,
    on_timeout: Optional[Callable[[str], None]] = None,
    error_message: Optional[str] = None,
):
    """Decorator to add a deadline to an async function.

    Args:
        seconds: Timeout in seconds
        on_timeout: Optional callback receiving the function name on timeout
        error_message: Custom message for the TimeoutError

    Usage:
        @with_timeout(5.0)
        async def send_email():
            ...
    """
    config = TimeoutConfig(timeout_seconds=seconds, on_timeout=on_timeout)

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            try:
                return await with_async_timeout(
                    func(*args, **kwargs),
                    config.timeout_seconds,
                    error_message or f"{func.__name__} timed out",
                )
            except TimeoutError:
                logger.warning(f"Timeout after {config.timeout_seconds}s in {func.__name__}")
                if config.on_timeout:
                    try:
                        config.on_timeout(func.__name__)
                    except Exception as callback_error:
                        logger.error(f"on_timeout callback failed: {callback_error}")
                raise

        return wrapper

    return decorator
