"""deviceloan: device loan back office with a resilient notification path."""

__version__ = "0.1.0"

from .container import ServiceContainer
from .responses import ResponseCode, Result
from .services.loans import LoanLifecycleManager
from .services.notification import NotificationDispatcher
from .services.waitlist import WaitlistAdvancer

__all__ = [
    "ServiceContainer",
    "LoanLifecycleManager",
    "NotificationDispatcher",
    "WaitlistAdvancer",
    "Result",
    "ResponseCode",
]
