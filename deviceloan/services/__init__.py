"""Loan lifecycle, waitlist and notification services."""

from .loans import LoanLifecycleManager
from .notification import (
    EMAIL_DEPENDENCY,
    EmailSender,
    LoggingEmailSender,
    NotificationDispatcher,
    compose_availability_email,
)
from .waitlist import WaitlistAdvancer, WaitlistNotifyResult, WaitlistNotifyStatus

__all__ = [
    "LoanLifecycleManager",
    "NotificationDispatcher",
    "EmailSender",
    "LoggingEmailSender",
    "EMAIL_DEPENDENCY",
    "compose_availability_email",
    "WaitlistAdvancer",
    "WaitlistNotifyResult",
    "WaitlistNotifyStatus",
]
