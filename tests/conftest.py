"""Pytest configuration and fixtures for deviceloan tests."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from deviceloan.config import Settings
from deviceloan.models import (
    Device,
    InventoryUnit,
    Reservation,
    ReservationStatus,
    User,
    WaitlistEntry,
)
from deviceloan.monitoring.metrics import reset_metrics
from deviceloan.repositories.memory import InMemoryLoanStore
from deviceloan.resilience.circuit_breaker import CircuitBreakerConfig, ServiceCircuitBreaker
from deviceloan.resilience.retry import RetryConfig, RetryExecutor, is_transient
from deviceloan.services.loans import LoanLifecycleManager
from deviceloan.services.notification import EmailSender, NotificationDispatcher
from deviceloan.services.waitlist import WaitlistAdvancer

BASE_TIME = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSender(EmailSender):
    """Sender that records messages and can fail on demand."""

    def __init__(self, failures: list = None):
        self.sent = []
        self.calls = 0
        self.failures = list(failures or [])

    async def send(self, message) -> None:
        self.calls += 1
        if self.failures:
            error = self.failures.pop(0)
            if error is not None:
                raise error
        self.sent.append(message)


@pytest.fixture(autouse=True)
def clean_metrics():
    """Metrics are process-wide; start every test from zero."""
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture(autouse=True)
def use_test_environment(monkeypatch):
    """Keep developer .env values out of tests."""
    monkeypatch.setenv("SIMULATE_EMAIL_FAILURE", "false")
    monkeypatch.setenv("METRICS_ENABLED", "false")


@pytest.fixture
def test_settings():
    """Settings with fast retries."""
    return Settings(
        email_retry_initial_delay=0.0,
        email_retry_max_delay=0.0,
        email_timeout_seconds=1.0,
        rate_limit_cleanup_interval=0.05,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    """Store seeded with two users, one device, two units and reservations."""
    store = InMemoryLoanStore()
    store.add_user(User(user_id="u-1", email="ada@example.edu", first_name="Ada", last_name="Lovelace"))
    store.add_user(User(user_id="u-2", email="alan@example.edu", first_name="Alan", last_name="Turing"))
    store.add_user(User(user_id="u-3", email="grace@example.edu", first_name="Grace", last_name="Hopper"))
    store.add_device(Device(device_id="d-1", brand="Apple", model="MacBook Air", category="laptop"))
    store.add_inventory(InventoryUnit(inventory_id="i-1", device_id="d-1", serial_number="SN-001", is_available=False))
    store.add_inventory(InventoryUnit(inventory_id="i-2", device_id="d-1", serial_number="SN-002", is_available=False))
    store.add_reservation(
        Reservation(
            reservation_id="r-1",
            user_id="u-1",
            device_id="d-1",
            inventory_id="i-1",
            reserved_at=BASE_TIME,
            due_date=BASE_TIME + timedelta(days=7),
        )
    )
    store.add_reservation(
        Reservation(
            reservation_id="r-2",
            user_id="u-1",
            device_id="d-1",
            inventory_id="i-2",
            reserved_at=BASE_TIME,
            due_date=BASE_TIME + timedelta(days=7),
            status=ReservationStatus.CANCELLED,
        )
    )
    return store


@pytest.fixture
def waitlisted_store(store):
    """Store with two users waiting for d-1, u-2 first."""
    store.add_waitlist_entry(WaitlistEntry(waitlist_id="w-2", user_id="u-3", device_id="d-1", added_at=BASE_TIME + timedelta(hours=2)))
    store.add_waitlist_entry(WaitlistEntry(waitlist_id="w-1", user_id="u-2", device_id="d-1", added_at=BASE_TIME + timedelta(hours=1)))
    return store


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def breaker(clock):
    return ServiceCircuitBreaker(
        "email-service",
        CircuitBreakerConfig(failure_threshold=2, reset_timeout=60.0, monitoring_period=60.0),
        clock=clock,
    )


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def dispatcher(waitlisted_store, sender, breaker, sleep):
    retry = RetryExecutor(
        RetryConfig(max_attempts=3, initial_delay=1.0, max_delay=5.0, backoff_multiplier=2.0, retryable=is_transient),
        sleep=sleep,
    )
    return NotificationDispatcher(waitlisted_store, sender, breaker, retry=retry, timeout_seconds=1.0)


@pytest.fixture
def advancer(waitlisted_store, dispatcher):
    return WaitlistAdvancer(waitlisted_store, dispatcher)


@pytest.fixture
def manager(waitlisted_store, advancer):
    return LoanLifecycleManager(waitlisted_store, advancer)
