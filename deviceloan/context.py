"""Request context passed explicitly through service calls.

Provides:
- RequestContext carrying a correlation id (and optionally the caller)
- Logging setup whose format includes the correlation id
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] %(message)s"


@dataclass(frozen=True)
class RequestContext:
    """Correlation data for one inbound request."""

    correlation_id: str
    user_id: Optional[str] = None

    @classmethod
    def new(cls, user_id: Optional[str] = None) -> "RequestContext":
        """Create a context with a fresh correlation id."""
        return cls(correlation_id=str(uuid.uuid4()), user_id=user_id)

    def log_extra(self) -> dict[str, Any]:
        """Fields to attach to log records via ``extra=``."""
        extra: dict[str, Any] = {"correlation_id": self.correlation_id}
        if self.user_id:
            extra["user_id"] = self.user_id
        return extra


def log_extra(ctx: Optional[RequestContext]) -> dict[str, Any]:
    """``extra=`` mapping for an optional context."""
    return ctx.log_extra() if ctx else {}


class CorrelationIdFilter(logging.Filter):
    """Fills ``correlation_id`` on records logged without a context."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "-"
        return True


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the service."""
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(CorrelationIdFilter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())
