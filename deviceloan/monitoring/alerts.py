"""Threshold alerts evaluated over the service metrics.

An AlertRule pairs a condition with a severity and a cooldown. The
AlertManager evaluates rules on demand or on a background interval, opens an
alert when a condition holds and resolves it once the condition clears.
"""

import asyncio
import contextlib
import inspect
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from .metrics import (
    loan_operation_failures_total,
    loans_collected_total,
    loans_returned_total,
    notification_latency_seconds,
)

logger = logging.getLogger(__name__)


class AlertSeverity(str, Enum):
    """How urgently an alert needs attention."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class AlertRule:
    """A named condition checked on every evaluation pass."""

    name: str
    severity: AlertSeverity
    message: str
    condition: Callable[[], Union[bool, Awaitable[bool]]]
    cooldown_seconds: float = 300.0  # Minimum gap between two firings


@dataclass
class Alert:
    """One firing of a rule."""

    name: str
    severity: AlertSeverity
    message: str
    timestamp: datetime
    resolved: bool = False
    resolved_at: Optional[datetime] = None


class AlertManager:
    """Evaluates alert rules and tracks which alerts are active.

    Usage:
        manager = AlertManager()
        rules = create_default_alert_rules(breakers, store)

        await manager.check_rules(rules)

        manager.start(rules, interval=60.0)
        ...
        await manager.stop()
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """Initialize alert manager.

        Args:
            clock: Monotonic time source in seconds, used for cooldowns
        """
        self._clock = clock
        self._alerts: list[Alert] = []
        self._active: dict[str, Alert] = {}
        self._last_fired: dict[str, float] = {}
        self._monitor_task: Optional[asyncio.Task] = None

    async def check_rules(self, rules: list[AlertRule]) -> None:
        """Evaluate every rule once. A failing condition is logged and skipped."""
        for rule in rules:
            try:
                triggered = rule.condition()
                if inspect.isawaitable(triggered):
                    triggered = await triggered
            except Exception as e:
                logger.error(f"Error checking alert rule {rule.name}: {e}")
                continue

            if triggered:
                self._trigger(rule)
            else:
                self._resolve(rule.name)

    def _trigger(self, rule: AlertRule) -> None:
        now = self._clock()
        last = self._last_fired.get(rule.name)
        if last is not None and now - last < rule.cooldown_seconds:
            return

        active = self._active.get(rule.name)
        if active is not None and not active.resolved:
            return

        alert = Alert(
            name=rule.name,
            severity=rule.severity,
            message=rule.message,
            timestamp=datetime.now(timezone.utc),
        )
        self._alerts.append(alert)
        self._active[rule.name] = alert
        self._last_fired[rule.name] = now

        logger.error(f"ALERT: {rule.severity.value.upper()} - {rule.name}: {rule.message}")

    def _resolve(self, name: str) -> None:
        alert = self._active.get(name)
        if alert is None or alert.resolved:
            return
        alert.resolved = True
        alert.resolved_at = datetime.now(timezone.utc)
        logger.info(f"Alert resolved: {name}")

    def get_active_alerts(self) -> list[Alert]:
        return [alert for alert in self._active.values() if not alert.resolved]

    def get_all_alerts(self, limit: int = 100) -> list[Alert]:
        """Most recent firings, oldest first."""
        return self._alerts[-limit:] if limit > 0 else []

    def clear(self) -> None:
        self._alerts.clear()
        self._active.clear()
        self._last_fired.clear()

    async def _monitor_loop(self, rules: list[AlertRule], interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.check_rules(rules)

    def start(self, rules: list[AlertRule], interval: float = 60.0) -> None:
        """Evaluate ``rules`` every ``interval`` seconds on the running event loop."""
        if self._monitor_task is not None and not self._monitor_task.done():
            return
        self._monitor_task = asyncio.get_running_loop().create_task(self._monitor_loop(rules, interval))
        logger.info(f"Alert monitoring started, interval {interval}s")

    async def stop(self) -> None:
        """Cancel background evaluation and wait for it to finish."""
        task, self._monitor_task = self._monitor_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Alert monitoring stopped")

    @property
    def is_monitoring(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()


# =============================================================================
# Default Rules
# =============================================================================

ERROR_RATE_THRESHOLD = 0.1  # Share of failed loan operations
SLOW_NOTIFICATION_SECONDS = 5.0  # Mean notification latency


class _Delta:
    """Change in a cumulative reading since the previous call.

    A reading lower than the last one means the metrics were reset, and the
    whole reading counts as new.
    """

    def __init__(self, read: Callable[[], float]):
        self._read = read
        self._last = read()

    def __call__(self) -> float:
        current = self._read()
        delta = current - self._last if current >= self._last else current
        self._last = current
        return delta


def _total_failures() -> float:
    return sum(loan_operation_failures_total.get_all().values())


def _total_successes() -> float:
    return loans_collected_total.get() + loans_returned_total.get()


def _latency_count() -> float:
    return sum(len(values) for values in notification_latency_seconds.get_observations().values())


def _latency_sum() -> float:
    return sum(sum(values) for values in notification_latency_seconds.get_observations().values())


def create_default_alert_rules(breakers: Any, store: Any = None) -> list[AlertRule]:
    """Rules over the loan, notification and breaker metrics.

    Rates and averages cover what happened since the previous evaluation.

    Args:
        breakers: CircuitBreakerRegistry whose breakers are watched
        store: LoanStore to ping, or None to skip the store rule
    """
    failures = _Delta(_total_failures)
    successes = _Delta(_total_successes)
    latency_count = _Delta(_latency_count)
    latency_sum = _Delta(_latency_sum)

    def high_error_rate() -> bool:
        failed = failures()
        total = failed + successes()
        if total == 0:
            return False
        return failed / total > ERROR_RATE_THRESHOLD

    def slow_notifications() -> bool:
        count = latency_count()
        elapsed = latency_sum()
        if count == 0:
            return False
        return elapsed / count > SLOW_NOTIFICATION_SECONDS

    def circuit_breaker_open() -> bool:
        return any(status["state"] != "CLOSED" for status in breakers.get_all_status().values())

    rules = [
        AlertRule(
            name="high_error_rate",
            severity=AlertSeverity.HIGH,
            message="High error rate detected in recent loan operations",
            condition=high_error_rate,
        ),
        AlertRule(
            name="slow_notifications",
            severity=AlertSeverity.MEDIUM,
            message="Slow waitlist notifications detected",
            condition=slow_notifications,
        ),
        AlertRule(
            name="circuit_breaker_open",
            severity=AlertSeverity.CRITICAL,
            message="A downstream circuit breaker is not closed",
            condition=circuit_breaker_open,
            cooldown_seconds=60.0,
        ),
    ]

    if store is not None:

        async def store_unavailable() -> bool:
            try:
                return not await store.ping()
            except Exception:
                return True

        rules.append(
            AlertRule(
                name="store_unavailable",
                severity=AlertSeverity.CRITICAL,
                message="Loan store connection issues detected",
                condition=store_unavailable,
                cooldown_seconds=60.0,
            )
        )

    return rules
