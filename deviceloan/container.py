"""Process-scoped wiring of the loan services.

One ServiceContainer owns the shared mutable pieces (circuit breakers,
rate-limit counters and alert state) for the lifetime of the process.
``start`` launches the background work, ``stop`` tears it down.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from .config import Settings
from .monitoring.alerts import AlertManager, create_default_alert_rules
from .monitoring.metrics import MetricsServer
from .repositories.base import LoanStore
from .repositories.memory import InMemoryLoanStore
from .resilience.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from .security.rate_limiter import FixedWindowRateLimiter, RateLimitConfig
from .services.loans import LoanLifecycleManager
from .services.notification import (
    EMAIL_DEPENDENCY,
    EmailSender,
    LoggingEmailSender,
    NotificationDispatcher,
)
from .services.waitlist import WaitlistAdvancer

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Builds and owns the service graph."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[LoanStore] = None,
        sender: Optional[EmailSender] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
    ):
        self.settings = settings or Settings()
        self.store = store or InMemoryLoanStore()
        self.sender = sender or LoggingEmailSender(self.settings.simulate_email_failure)
        self.breakers = breakers or CircuitBreakerRegistry()

        self.email_breaker = self.breakers.get(
            EMAIL_DEPENDENCY,
            CircuitBreakerConfig(
                failure_threshold=self.settings.email_breaker_failure_threshold,
                reset_timeout=self.settings.email_breaker_reset_timeout,
                monitoring_period=self.settings.email_breaker_monitoring_period,
            ),
        )

        self.rate_limiter = FixedWindowRateLimiter(
            RateLimitConfig(
                window_seconds=self.settings.rate_limit_window_seconds,
                max_requests=self.settings.rate_limit_max_requests,
                cleanup_interval=self.settings.rate_limit_cleanup_interval,
            ),
            name="default",
        )
        self.strict_rate_limiter = FixedWindowRateLimiter(
            RateLimitConfig(
                window_seconds=self.settings.strict_rate_limit_window_seconds,
                max_requests=self.settings.strict_rate_limit_max_requests,
                cleanup_interval=self.settings.rate_limit_cleanup_interval,
            ),
            name="strict",
        )

        self.dispatcher = NotificationDispatcher.from_settings(
            self.settings, self.store, self.sender, self.email_breaker
        )
        self.waitlist = WaitlistAdvancer(self.store, self.dispatcher)
        self.loans = LoanLifecycleManager(
            self.store,
            self.waitlist,
            default_page_size=self.settings.default_page_size,
            max_page_size=self.settings.max_page_size,
        )

        self.alerts = AlertManager()
        self.alert_rules = create_default_alert_rules(self.breakers, self.store)

        self._metrics_server: Optional[MetricsServer] = None
        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Start limiter sweeps, alert monitoring and, when enabled, the metrics server."""
        if self._started:
            return
        self.rate_limiter.start_cleanup()
        self.strict_rate_limiter.start_cleanup()
        self.alerts.start(self.alert_rules, self.settings.alert_check_interval)
        if self.settings.metrics_enabled:
            self._metrics_server = MetricsServer(self.settings.metrics_host, self.settings.metrics_port)
            self._metrics_server.start()
        self._started = True
        logger.info(f"{self.settings.service_name} started")

    async def stop(self) -> None:
        """Stop background work started by ``start``."""
        if not self._started:
            return
        await self.rate_limiter.stop_cleanup()
        await self.strict_rate_limiter.stop_cleanup()
        await self.alerts.stop()
        if self._metrics_server is not None:
            self._metrics_server.stop()
            self._metrics_server = None
        self._started = False
        logger.info(f"{self.settings.service_name} stopped")

    async def __aenter__(self) -> "ServiceContainer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def health(self) -> dict[str, Any]:
        """Store readiness, every breaker's status and the active alerts.

        ``unhealthy`` when the store is down, ``degraded`` when a breaker is
        not CLOSED, otherwise ``healthy``.
        """
        try:
            store_up = await self.store.ping()
            store_check: dict[str, Any] = {"status": "up" if store_up else "down"}
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            store_up = False
            store_check = {"status": "down", "error": str(e)}

        breakers = self.breakers.get_all_status()
        if not store_up:
            status = "unhealthy"
        elif any(b["state"] != "CLOSED" for b in breakers.values()):
            status = "degraded"
        else:
            status = "healthy"

        return {
            "status": status,
            "service": self.settings.service_name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": {"store": store_check, "circuit_breakers": breakers},
            "alerts": [alert.name for alert in self.alerts.get_active_alerts()],
        }
