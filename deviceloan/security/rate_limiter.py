"""Rate limiting for the service boundary.

Provides:
- Fixed-window request counting keyed by caller, method and path
- Optional refund of successful or failed requests once the outcome is known
- A periodic sweep evicting expired windows
"""

import asyncio
import contextlib
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from ..monitoring.metrics import rate_limit_rejections_total

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Configuration for a fixed-window rate limiter."""

    window_seconds: float = 15 * 60
    max_requests: int = 100
    skip_successful_requests: bool = False  # Refund 2xx responses
    skip_failed_requests: bool = False  # Refund 4xx/5xx responses
    cleanup_interval: float = 60.0

    def __post_init__(self):
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if self.max_requests < 1:
            raise ValueError("max_requests must be at least 1")


@dataclass
class RateLimitCounter:
    """Request count for one key inside its current window."""

    count: int
    window_reset_at: float


@dataclass
class RateLimitDecision:
    """Outcome of one admission check."""

    allowed: bool
    key: str
    count: int
    remaining: int
    retry_after: float = 0.0  # Seconds until the window resets
    window_reset_at: Optional[float] = None  # Identifies the window that counted it


class RateLimitExceeded(Exception):
    """Raised when a key has used its budget for the current window."""

    def __init__(self, key: str, retry_after: float):
        super().__init__("Too many requests. Please try again later.")
        self.key = key
        self.retry_after = retry_after

    @property
    def retry_after_header(self) -> str:
        """Value for an HTTP ``Retry-After`` header (whole seconds)."""
        return str(max(0, math.ceil(self.retry_after)))


@dataclass
class RequestOutcome:
    """Filled in by the caller of ``limit`` with the response status."""

    status_code: Optional[int] = None


def make_key(
    identity: Optional[str],
    address: Optional[str],
    method: str,
    path: str,
) -> str:
    """Build a limiter key from the caller and endpoint.

    The authenticated identity wins over the remote address.
    """
    caller = identity or address or "unknown"
    return f"{caller}:{method.upper()}:{path}"


class FixedWindowRateLimiter:
    """Fixed-window request counter.

    Usage:
        limiter = FixedWindowRateLimiter(RateLimitConfig(window_seconds=60, max_requests=10))
        key = make_key(user_id, remote_addr, "POST", "/loans/collect")

        with limiter.limit(key) as outcome:   # raises RateLimitExceeded
            response = handle(request)
            outcome.status_code = response.status_code
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the limiter.

        Args:
            config: Rate limit configuration
            name: Limiter name for logging and metrics
            clock: Monotonic time source in seconds
        """
        self.config = config or RateLimitConfig()
        self.name = name
        self._clock = clock
        self._store: dict[str, RateLimitCounter] = {}
        self._lock = threading.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None

    def acquire(self, key: str) -> RateLimitDecision:
        """Count one request for ``key`` and decide whether to admit it."""
        with self._lock:
            now = self._clock()
            record = self._store.get(key)

            # Initialize or reset if window expired
            if record is None or now >= record.window_reset_at:
                record = RateLimitCounter(count=1, window_reset_at=now + self.config.window_seconds)
                self._store[key] = record
                return RateLimitDecision(
                    allowed=True,
                    key=key,
                    count=1,
                    remaining=self.config.max_requests - 1,
                    window_reset_at=record.window_reset_at,
                )

            if record.count >= self.config.max_requests:
                retry_after = record.window_reset_at - now
                logger.warning(
                    f"Rate limit exceeded on {self.name} for {key}: "
                    f"{record.count}/{self.config.max_requests}, retry after {retry_after:.1f}s"
                )
                rate_limit_rejections_total.labels(limiter=self.name).inc()
                return RateLimitDecision(
                    allowed=False,
                    key=key,
                    count=record.count,
                    remaining=0,
                    retry_after=retry_after,
                    window_reset_at=record.window_reset_at,
                )

            record.count += 1
            return RateLimitDecision(
                allowed=True,
                key=key,
                count=record.count,
                remaining=self.config.max_requests - record.count,
                window_reset_at=record.window_reset_at,
            )

    def enforce(self, key: str) -> RateLimitDecision:
        """Like ``acquire`` but raises when the request is rejected.

        Raises:
            RateLimitExceeded: If the key has no budget left in this window
        """
        decision = self.acquire(key)
        if not decision.allowed:
            raise RateLimitExceeded(key, decision.retry_after)
        return decision

    def record_outcome(self, key: str, status_code: int, window_reset_at: Optional[float] = None) -> None:
        """Refund the request if its outcome class is not counted.

        With ``window_reset_at`` from the admitting decision, the refund only
        applies while that window is still current.
        """
        if not (self.config.skip_successful_requests or self.config.skip_failed_requests):
            return

        is_success = 200 <= status_code < 300
        is_failure = status_code >= 400
        refund = (self.config.skip_successful_requests and is_success) or (
            self.config.skip_failed_requests and is_failure
        )
        if not refund:
            return

        with self._lock:
            record = self._store.get(key)
            if record is None:
                return
            if window_reset_at is not None and record.window_reset_at != window_reset_at:
                return
            record.count = max(0, record.count - 1)

    @contextlib.contextmanager
    def limit(self, key: str) -> Iterator[RequestOutcome]:
        """Admit a request and account for its outcome on exit.

        An exception escaping the block counts as a 500 response.

        Raises:
            RateLimitExceeded: If the key has no budget left in this window
        """
        decision = self.enforce(key)
        outcome = RequestOutcome()
        try:
            yield outcome
        except Exception:
            self.record_outcome(key, 500, decision.window_reset_at)
            raise
        if outcome.status_code is not None:
            self.record_outcome(key, outcome.status_code, decision.window_reset_at)

    def cleanup(self) -> int:
        """Evict counters whose window has expired.

        Returns:
            Number of counters removed
        """
        with self._lock:
            now = self._clock()
            expired = [key for key, record in self._store.items() if record.window_reset_at <= now]
            for key in expired:
                del self._store[key]
        if expired:
            logger.debug(f"Rate limiter {self.name} evicted {len(expired)} expired counters")
        return len(expired)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval)
            self.cleanup()

    def start_cleanup(self) -> None:
        """Start the background sweep on the running event loop."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())
        logger.info(f"Rate limiter {self.name} sweep every {self.config.cleanup_interval}s")

    async def stop_cleanup(self) -> None:
        """Cancel the background sweep and wait for it to finish."""
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def reset(self, key: str) -> None:
        """Forget the counter for ``key``."""
        with self._lock:
            self._store.pop(key, None)

    def get_status(self, key: str) -> Optional[dict]:
        """Get the counter for ``key`` or None."""
        with self._lock:
            record = self._store.get(key)
            if record is None:
                return None
            return {
                "key": key,
                "count": record.count,
                "max_requests": self.config.max_requests,
                "window_reset_at": record.window_reset_at,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
