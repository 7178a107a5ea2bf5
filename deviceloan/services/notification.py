"""Waitlist availability emails behind timeout, retry and a circuit breaker.

Composition for one notification:

    breaker.execute(
        retry.execute(
            with_async_timeout(send_one_email(user_id, device_id), 5s)))

Each attempt that reaches the send stage appends one delivery record,
``sent`` or ``failed``.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

from ..config import Settings
from ..context import RequestContext, log_extra
from ..errors import NotFoundError
from ..models import DeliveryStatus, Device, EmailMessage, NotificationRecord, User
from ..monitoring.metrics import notification_attempts_total, notification_latency_seconds
from ..repositories.base import LoanStore
from ..resilience.circuit_breaker import ServiceCircuitBreaker
from ..resilience.retry import RetryConfig, RetryExecutor, ServiceUnavailableError, is_transient
from ..resilience.timeout import EMAIL_TIMEOUT, with_async_timeout

logger = logging.getLogger(__name__)

EMAIL_DEPENDENCY = "email-service"


class EmailSender(ABC):
    """Delivers a composed email to the mail provider."""

    @abstractmethod
    async def send(self, message: EmailMessage) -> None:
        ...


class LoggingEmailSender(EmailSender):
    """Sender that only logs; delivery is the recorded row itself.

    ``simulate_failure`` makes every send fail with a 503-class error.
    """

    def __init__(self, simulate_failure: bool = False):
        self.simulate_failure = simulate_failure

    async def send(self, message: EmailMessage) -> None:
        if self.simulate_failure:
            raise ServiceUnavailableError("Email service temporarily unavailable", 503)
        logger.info(f"Email to {message.to}: {message.subject}")


def compose_availability_email(user: User, device: Device, system_name: str) -> EmailMessage:
    """Build the 'device available' email for a waitlisted user."""
    subject = f"Device Available: {device.brand} {device.model}"
    body = (
        "Hello,\n\n"
        "Great news! The device you requested is now available for reservation.\n\n"
        "Device Details:\n"
        f"- Brand: {device.brand}\n"
        f"- Model: {device.model}\n\n"
        f"Please log in to the {system_name} to reserve this device "
        "before it's claimed by someone else.\n\n"
        "Best regards,\n"
        f"{system_name}"
    )
    return EmailMessage(user_id=user.user_id, to=user.email, subject=subject, body=body)


class NotificationDispatcher:
    """Notifies one user that one device is available."""

    def __init__(
        self,
        store: LoanStore,
        sender: EmailSender,
        breaker: ServiceCircuitBreaker,
        retry: Optional[RetryExecutor] = None,
        timeout_seconds: float = EMAIL_TIMEOUT,
        system_name: str = "Campus Device Loan System",
    ):
        self.store = store
        self.sender = sender
        self.breaker = breaker
        self.retry = retry or RetryExecutor(
            RetryConfig(
                max_attempts=3,
                initial_delay=1.0,
                max_delay=5.0,
                backoff_multiplier=2.0,
                retryable=is_transient,
            )
        )
        self.timeout_seconds = timeout_seconds
        self.system_name = system_name

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: LoanStore,
        sender: EmailSender,
        breaker: ServiceCircuitBreaker,
    ) -> "NotificationDispatcher":
        retry = RetryExecutor(
            RetryConfig(
                max_attempts=settings.email_retry_max_attempts,
                initial_delay=settings.email_retry_initial_delay,
                max_delay=settings.email_retry_max_delay,
                backoff_multiplier=settings.email_retry_backoff_multiplier,
                retryable=is_transient,
            )
        )
        return cls(
            store=store,
            sender=sender,
            breaker=breaker,
            retry=retry,
            timeout_seconds=settings.email_timeout_seconds,
            system_name=settings.system_name,
        )

    async def notify(
        self,
        user_id: str,
        device_id: str,
        ctx: Optional[RequestContext] = None,
    ) -> NotificationRecord:
        """Send the availability email through breaker, retry and timeout.

        Raises:
            CircuitOpenError: If the email dependency is deemed unhealthy
            RetryExhaustedError: If every transient attempt failed
            NotFoundError: If the user or device does not exist
        """
        started = time.monotonic()
        attempts = 0

        async def attempt() -> NotificationRecord:
            nonlocal attempts
            attempts += 1
            return await with_async_timeout(
                self.send_one_email(user_id, device_id, ctx, attempt=attempts),
                self.timeout_seconds,
                "Email service timeout",
            )

        async def with_retry() -> NotificationRecord:
            return await self.retry.execute(attempt, name=f"notify {user_id}")

        try:
            record = await self.breaker.execute(with_retry)
        except Exception:
            notification_latency_seconds.labels(outcome="failed").observe(time.monotonic() - started)
            raise

        notification_latency_seconds.labels(outcome="sent").observe(time.monotonic() - started)
        return record

    async def send_one_email(
        self,
        user_id: str,
        device_id: str,
        ctx: Optional[RequestContext] = None,
        attempt: int = 1,
    ) -> NotificationRecord:
        """Compose, send and record a single delivery attempt."""
        user = await self.store.find_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        device = await self.store.find_device(device_id)
        if device is None:
            raise NotFoundError("Device", device_id)

        message = compose_availability_email(user, device, self.system_name)
        logger.info(
            f"Sending availability email to user {user_id} for device {device_id} "
            f"(circuit {self.breaker.state.value})",
            extra=log_extra(ctx),
        )

        try:
            await self.sender.send(message)
        except Exception as e:
            notification_attempts_total.labels(status=DeliveryStatus.FAILED.value).inc()
            await self.store.record_notification_attempt(
                user_id, message, DeliveryStatus.FAILED, str(e), attempt=attempt
            )
            logger.error(f"Email to user {user_id} failed: {e}", extra=log_extra(ctx))
            raise

        notification_attempts_total.labels(status=DeliveryStatus.SENT.value).inc()
        record = await self.store.record_notification_attempt(
            user_id, message, DeliveryStatus.SENT, attempt=attempt
        )
        logger.info(f"Email notification {record.email_id} recorded", extra=log_extra(ctx))
        return record
