"""Tests for service circuit breaker."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from deviceloan.monitoring.metrics import circuit_breaker_state, circuit_breaker_transitions_total
from deviceloan.resilience.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitOpenError,
    CircuitState,
    ServiceCircuitBreaker,
)


def make_breaker(clock, **config):
    return ServiceCircuitBreaker("test", CircuitBreakerConfig(**config), clock=clock)


async def fail():
    raise RuntimeError("Fail")


async def succeed():
    return "success"


class TestCircuitBreakerStates:
    """Test circuit breaker state transitions."""

    def test_initial_state_is_closed(self):
        """Test circuit starts in CLOSED state."""
        cb = ServiceCircuitBreaker("test")
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0

    async def test_opens_after_failure_threshold(self, clock):
        """Test circuit opens after reaching failure threshold."""
        cb = make_breaker(clock, failure_threshold=3)

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await cb.execute(fail)
        assert cb.state == CircuitState.CLOSED

        with pytest.raises(RuntimeError):
            await cb.execute(fail)
        assert cb.state == CircuitState.OPEN

    async def test_call_after_threshold_rejected_without_invoking(self, clock):
        """Test the (N+1)-th call fails fast while OPEN."""
        cb = make_breaker(clock, failure_threshold=3)
        operation = AsyncMock(side_effect=RuntimeError("down"))

        for _ in range(3):
            with pytest.raises(RuntimeError):
                await cb.execute(operation)

        with pytest.raises(CircuitOpenError) as exc_info:
            await cb.execute(operation)

        assert operation.await_count == 3
        assert exc_info.value.name == "test"
        assert exc_info.value.retry_in == pytest.approx(60.0)

    async def test_success_resets_failure_count(self, clock):
        """Test a success clears the counter in CLOSED."""
        cb = make_breaker(clock, failure_threshold=2)

        with pytest.raises(RuntimeError):
            await cb.execute(fail)
        assert cb.failure_count == 1

        await cb.execute(succeed)
        assert cb.failure_count == 0

        with pytest.raises(RuntimeError):
            await cb.execute(fail)
        assert cb.state == CircuitState.CLOSED

    async def test_failures_outside_monitoring_period_are_forgotten(self, clock):
        """Test only failures inside the rolling window count."""
        cb = make_breaker(clock, failure_threshold=2, monitoring_period=10.0)

        with pytest.raises(RuntimeError):
            await cb.execute(fail)
        clock.advance(11.0)
        with pytest.raises(RuntimeError):
            await cb.execute(fail)

        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 1

    async def test_half_open_after_reset_timeout(self, clock):
        """Test the next call after reset_timeout is attempted as a trial."""
        cb = make_breaker(clock, failure_threshold=1, reset_timeout=30.0)

        with pytest.raises(RuntimeError):
            await cb.execute(fail)
        assert cb.state == CircuitState.OPEN

        clock.advance(29.0)
        with pytest.raises(CircuitOpenError):
            await cb.execute(succeed)

        clock.advance(1.0)
        seen_states = []

        async def trial_call():
            seen_states.append(cb.state)
            return "ok"

        assert await cb.execute(trial_call) == "ok"
        assert seen_states == [CircuitState.HALF_OPEN]
        assert cb.state == CircuitState.CLOSED

    async def test_reopens_after_failure_in_half_open(self, clock):
        """Test a failed trial reopens and restarts the reset timer."""
        cb = make_breaker(clock, failure_threshold=1, reset_timeout=30.0)

        with pytest.raises(RuntimeError):
            await cb.execute(fail)
        clock.advance(30.0)

        with pytest.raises(RuntimeError):
            await cb.execute(fail)
        assert cb.state == CircuitState.OPEN

        clock.advance(20.0)
        with pytest.raises(CircuitOpenError):
            await cb.execute(succeed)

        clock.advance(10.0)
        assert await cb.execute(succeed) == "success"
        assert cb.state == CircuitState.CLOSED

    async def test_single_trial_call_in_half_open(self, clock):
        """Test concurrent calls are rejected while the trial is in flight."""
        cb = make_breaker(clock, failure_threshold=1, reset_timeout=5.0)

        with pytest.raises(RuntimeError):
            await cb.execute(fail)
        clock.advance(5.0)

        release = asyncio.Event()

        async def slow_trial():
            await release.wait()
            return "recovered"

        trial = asyncio.create_task(cb.execute(slow_trial))
        await asyncio.sleep(0)
        assert cb.state == CircuitState.HALF_OPEN

        with pytest.raises(CircuitOpenError):
            await cb.execute(succeed)

        release.set()
        assert await trial == "recovered"
        assert cb.state == CircuitState.CLOSED

    async def test_cancelled_trial_releases_slot(self, clock):
        """Test cancelling the trial call lets another trial through."""
        cb = make_breaker(clock, failure_threshold=1, reset_timeout=5.0)

        with pytest.raises(RuntimeError):
            await cb.execute(fail)
        clock.advance(5.0)

        trial = asyncio.create_task(cb.execute(lambda: asyncio.sleep(10)))
        await asyncio.sleep(0)
        trial.cancel()
        with pytest.raises(asyncio.CancelledError):
            await trial

        assert cb.state == CircuitState.HALF_OPEN
        assert await cb.execute(succeed) == "success"
        assert cb.state == CircuitState.CLOSED

    async def test_late_success_from_closed_does_not_close_half_open(self, clock):
        """Test only the trial's result decides HALF_OPEN, not a call admitted earlier."""
        cb = make_breaker(clock, failure_threshold=2, reset_timeout=10.0)
        release_stale = asyncio.Event()
        release_trial = asyncio.Event()

        async def held(event, value):
            await event.wait()
            return value

        stale = asyncio.create_task(cb.execute(lambda: held(release_stale, "stale")))
        await asyncio.sleep(0)
        for _ in range(2):
            with pytest.raises(RuntimeError):
                await cb.execute(fail)
        assert cb.state == CircuitState.OPEN

        clock.advance(11.0)
        trial = asyncio.create_task(cb.execute(lambda: held(release_trial, "trial")))
        await asyncio.sleep(0)
        assert cb.state == CircuitState.HALF_OPEN

        release_stale.set()
        assert await stale == "stale"
        assert cb.state == CircuitState.HALF_OPEN
        with pytest.raises(CircuitOpenError):
            await cb.execute(succeed)

        release_trial.set()
        assert await trial == "trial"
        assert cb.state == CircuitState.CLOSED

    async def test_late_failure_from_closed_does_not_reopen_half_open(self, clock):
        """Test a failure admitted before the trial leaves the trial in charge."""
        cb = make_breaker(clock, failure_threshold=2, reset_timeout=10.0)
        release_stale = asyncio.Event()
        release_trial = asyncio.Event()

        async def stale_call():
            await release_stale.wait()
            raise RuntimeError("late")

        async def trial_call():
            await release_trial.wait()
            return "trial"

        stale = asyncio.create_task(cb.execute(stale_call))
        await asyncio.sleep(0)
        for _ in range(2):
            with pytest.raises(RuntimeError):
                await cb.execute(fail)

        clock.advance(11.0)
        trial = asyncio.create_task(cb.execute(trial_call))
        await asyncio.sleep(0)

        release_stale.set()
        with pytest.raises(RuntimeError, match="late"):
            await stale
        assert cb.state == CircuitState.HALF_OPEN
        with pytest.raises(CircuitOpenError):
            await cb.execute(succeed)

        release_trial.set()
        assert await trial == "trial"
        assert cb.state == CircuitState.CLOSED

    async def test_late_failure_while_open_keeps_reset_timer(self, clock):
        """Test a failure landing while OPEN does not count toward the next window."""
        cb = make_breaker(clock, failure_threshold=1, reset_timeout=10.0)
        release = asyncio.Event()

        async def stale_call():
            await release.wait()
            raise RuntimeError("late")

        stale = asyncio.create_task(cb.execute(stale_call))
        await asyncio.sleep(0)
        with pytest.raises(RuntimeError):
            await cb.execute(fail)

        release.set()
        with pytest.raises(RuntimeError):
            await stale

        assert cb.failure_count == 1
        clock.advance(10.0)
        assert await cb.execute(succeed) == "success"
        assert cb.state == CircuitState.CLOSED


class TestCircuitBreakerDecorator:
    """Test protect decorator."""

    async def test_decorator_success(self):
        """Test decorator allows successful calls."""
        cb = ServiceCircuitBreaker("test")

        @cb.protect
        async def add(a, b):
            return a + b

        assert await add(1, 2) == 3
        assert add.__name__ == "add"

    async def test_decorator_raises_circuit_open(self, clock):
        """Test decorator raises CircuitOpenError when open."""
        cb = make_breaker(clock, failure_threshold=1)

        @cb.protect
        async def flaky():
            raise ConnectionError("refused")

        with pytest.raises(ConnectionError):
            await flaky()
        with pytest.raises(CircuitOpenError):
            await flaky()


class TestCircuitBreakerReset:
    """Test manual reset and status."""

    async def test_manual_reset(self, clock):
        """Test manual reset returns to CLOSED."""
        cb = make_breaker(clock, failure_threshold=1)
        with pytest.raises(RuntimeError):
            await cb.execute(fail)
        assert cb.is_open

        cb.reset()
        assert cb.state == CircuitState.CLOSED
        assert await cb.execute(succeed) == "success"

    async def test_get_status(self, clock):
        """Test status dictionary."""
        cb = make_breaker(clock, failure_threshold=3)
        with pytest.raises(RuntimeError):
            await cb.execute(fail)

        status = cb.get_status()
        assert status["name"] == "test"
        assert status["state"] == "CLOSED"
        assert status["failure_count"] == 1
        assert status["failure_threshold"] == 3

    async def test_metrics_track_transitions(self, clock):
        """Test state gauge and transition counter."""
        cb = make_breaker(clock, failure_threshold=1)
        with pytest.raises(RuntimeError):
            await cb.execute(fail)

        assert circuit_breaker_state.get(name="test") == 2
        assert circuit_breaker_transitions_total.get(name="test", state="OPEN") == 1


class TestCircuitBreakerRegistry:
    """Test one breaker per dependency name."""

    def test_get_returns_same_instance(self):
        registry = CircuitBreakerRegistry()
        first = registry.get("email-service", CircuitBreakerConfig(failure_threshold=2))
        second = registry.get("email-service")

        assert first is second
        assert first.config.failure_threshold == 2
        assert "email-service" in registry

    def test_get_all_status(self):
        registry = CircuitBreakerRegistry()
        registry.get("email-service")
        registry.get("sms-service")

        status = registry.get_all_status()
        assert set(status) == {"email-service", "sms-service"}
        assert all(s["state"] == "CLOSED" for s in status.values())

    async def test_reset_all(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)
        breaker = registry.get("email-service", CircuitBreakerConfig(failure_threshold=1))
        with pytest.raises(RuntimeError):
            await breaker.execute(fail)

        registry.reset_all()
        assert breaker.state == CircuitState.CLOSED
