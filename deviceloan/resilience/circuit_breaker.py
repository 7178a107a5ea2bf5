"""Service-level circuit breaker for downstream dependencies.

Provides per-dependency circuit breakers with:
- Three states: CLOSED (normal), OPEN (failing fast), HALF_OPEN (single trial call)
- Failures counted over a rolling monitoring window
- A registry holding one breaker per dependency name
"""

import asyncio
import functools
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from ..monitoring.metrics import circuit_breaker_state, circuit_breaker_transitions_total

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Dependency failing, reject calls
    HALF_OPEN = "HALF_OPEN"  # Testing if dependency recovered


_STATE_GAUGE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class CircuitOpenError(Exception):
    """Raised when the breaker rejects a call without invoking it."""

    def __init__(self, name: str, retry_in: float = 0.0):
        super().__init__(f"Circuit breaker {name} is OPEN. Service unavailable.")
        self.name = name
        self.retry_in = retry_in


@dataclass
class CircuitBreakerConfig:
    """Configuration for service circuit breaker."""

    failure_threshold: int = 5  # Failures within the window before opening
    reset_timeout: float = 60.0  # Seconds to stay OPEN before a trial call
    monitoring_period: float = 60.0  # Rolling window for counting failures


class ServiceCircuitBreaker:
    """Circuit breaker for protecting downstream calls.

    Usage:
        breaker = ServiceCircuitBreaker("email-service")

        result = await breaker.execute(lambda: send_email(user_id))

        @breaker.protect
        async def send_email(user_id):
            ...

    State changes happen synchronously between await points, so interleaved
    coroutines see consistent counters. The lock additionally covers callers
    on other threads.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize circuit breaker.

        Args:
            name: Dependency name for logging and metrics
            config: Circuit breaker configuration
            clock: Monotonic time source in seconds
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures: deque[float] = deque()
        self._opened_at: Optional[float] = None
        self._last_transition: float = clock()
        self._trial_token: Optional[int] = None
        self._admissions = 0
        self._lock = threading.Lock()
        circuit_breaker_state.labels(name=name).set(_STATE_GAUGE_VALUES[self._state])

    @property
    def state(self) -> CircuitState:
        """Current state. OPEN is reported until a call triggers the trial."""
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        """Failures inside the current monitoring window."""
        with self._lock:
            self._prune_failures(self._clock())
            return len(self._failures)

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def _prune_failures(self, now: float) -> None:
        horizon = now - self.config.monitoring_period
        while self._failures and self._failures[0] < horizon:
            self._failures.popleft()

    def _before_call(self) -> Optional[int]:
        """Admit or reject a call, moving OPEN -> HALF_OPEN when due.

        Returns the trial token when the call is the HALF_OPEN trial, else None.
        """
        with self._lock:
            now = self._clock()

            if self._state == CircuitState.OPEN:
                elapsed = now - (self._opened_at or now)
                if elapsed < self.config.reset_timeout:
                    raise CircuitOpenError(self.name, self.config.reset_timeout - elapsed)
                self._transition(CircuitState.HALF_OPEN, now)

            if self._state == CircuitState.HALF_OPEN:
                if self._trial_token is not None:
                    raise CircuitOpenError(self.name)
                self._admissions += 1
                self._trial_token = self._admissions
                return self._trial_token

            return None

    def _is_trial(self, token: Optional[int]) -> bool:
        return token is not None and token == self._trial_token

    def _release_trial(self, token: Optional[int]) -> None:
        with self._lock:
            if self._is_trial(token):
                self._trial_token = None

    def record_success(self, trial_token: Optional[int] = None) -> None:
        """Record a successful call.

        While HALF_OPEN only the trial's own result, identified by
        ``trial_token``, closes the circuit. Calls admitted earlier are ignored.
        """
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                if self._is_trial(trial_token):
                    self._transition(CircuitState.CLOSED, self._clock())
                return
            if self._state == CircuitState.CLOSED:
                self._failures.clear()

    def record_failure(self, trial_token: Optional[int] = None) -> None:
        """Record a failed call. Same trial rule as ``record_success``."""
        with self._lock:
            now = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                if self._is_trial(trial_token):
                    self._transition(CircuitState.OPEN, now)
                return
            if self._state == CircuitState.OPEN:
                return

            self._prune_failures(now)
            self._failures.append(now)
            if len(self._failures) >= self.config.failure_threshold:
                self._transition(CircuitState.OPEN, now)

    def _transition(self, new_state: CircuitState, now: float) -> None:
        old_state = self._state
        self._state = new_state
        self._last_transition = now
        self._trial_token = None

        if new_state == CircuitState.OPEN:
            self._opened_at = now
            logger.warning(
                f"Circuit breaker {self.name} OPENED from {old_state.value} "
                f"after {len(self._failures)} failures"
            )
        elif new_state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit breaker {self.name} entering HALF_OPEN for recovery test")
        else:
            self._failures.clear()
            self._opened_at = None
            logger.info(f"Circuit breaker {self.name} CLOSED - service recovered")

        circuit_breaker_state.labels(name=self.name).set(_STATE_GAUGE_VALUES[new_state])
        circuit_breaker_transitions_total.labels(name=self.name, state=new_state.value).inc()

    async def execute(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``operation`` through the breaker.

        Raises:
            CircuitOpenError: If the dependency is deemed unhealthy
        """
        token = self._before_call()
        try:
            result = await operation()
        except asyncio.CancelledError:
            self._release_trial(token)
            raise
        except Exception:
            self.record_failure(token)
            raise
        self.record_success(token)
        return result

    def protect(self, func: Callable) -> Callable:
        """Decorator to protect an async function with the circuit breaker."""

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            return await self.execute(lambda: func(*args, **kwargs))

        return wrapper

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures.clear()
            self._opened_at = None
            self._trial_token = None
            self._last_transition = self._clock()
        circuit_breaker_state.labels(name=self.name).set(_STATE_GAUGE_VALUES[CircuitState.CLOSED])
        logger.info(f"Circuit breaker {self.name} manually reset")

    def get_status(self) -> dict[str, Any]:
        """Get circuit breaker status."""
        with self._lock:
            self._prune_failures(self._clock())
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": len(self._failures),
                "last_transition": self._last_transition,
                "failure_threshold": self.config.failure_threshold,
            }


class CircuitBreakerRegistry:
    """Owns one breaker per dependency name for the lifetime of the process."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._breakers: dict[str, ServiceCircuitBreaker] = {}
        self._clock = clock
        self._lock = threading.Lock()

    def get(self, name: str, config: Optional[CircuitBreakerConfig] = None) -> ServiceCircuitBreaker:
        """Return the breaker for ``name``, creating it on first use.

        ``config`` only applies when the breaker is created.
        """
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = ServiceCircuitBreaker(name, config, clock=self._clock)
                self._breakers[name] = breaker
            return breaker

    def __contains__(self, name: str) -> bool:
        return name in self._breakers

    def reset_all(self) -> None:
        for breaker in list(self._breakers.values()):
            breaker.reset()

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        return {name: breaker.get_status() for name, breaker in list(self._breakers.items())}
