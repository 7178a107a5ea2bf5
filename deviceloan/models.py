"""Data model for reservations, loans, inventory and the waitlist."""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    """Current UTC time."""
    return datetime.now(timezone.utc)


class ReservationStatus(str, Enum):
    """Reservation lifecycle states."""

    PENDING = "pending"
    COLLECTED = "collected"
    RETURNED = "returned"
    CANCELLED = "cancelled"


class UserRole(str, Enum):
    """Roles a borrower can hold."""

    STUDENT = "student"
    STAFF = "staff"


class DeliveryStatus(str, Enum):
    """Outcome of one notification delivery attempt."""

    SENT = "sent"
    FAILED = "failed"


@dataclass
class User:
    """A borrower."""

    user_id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    role: UserRole = UserRole.STUDENT
    is_active: bool = True
    is_deleted: bool = False


@dataclass
class Device:
    """A device model that can be loaned."""

    device_id: str
    brand: str
    model: str
    category: str = ""
    is_deleted: bool = False


@dataclass
class InventoryUnit:
    """A physical unit of a device."""

    inventory_id: str
    device_id: str
    serial_number: str = ""
    is_available: bool = True


@dataclass
class Reservation:
    """A hold placed by a user on one inventory unit."""

    reservation_id: str
    user_id: str
    device_id: str
    inventory_id: str
    reserved_at: datetime = field(default_factory=utcnow)
    due_date: Optional[datetime] = None
    status: ReservationStatus = ReservationStatus.PENDING


@dataclass
class Loan:
    """A collected reservation. Active while ``returned_at`` is None."""

    loan_id: str
    reservation_id: str
    collected_at: datetime = field(default_factory=utcnow)
    returned_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.returned_at is None


@dataclass
class LoanWithReservation:
    """A loan joined with the reservation it closes."""

    loan: Loan
    reservation_id: str
    user_id: str
    device_id: str
    inventory_id: str
    status: ReservationStatus


@dataclass
class WaitlistEntry:
    """A user's request to be told when a device frees up."""

    waitlist_id: str
    user_id: str
    device_id: str
    added_at: datetime = field(default_factory=utcnow)
    is_notified: bool = False
    notified_at: Optional[datetime] = None


@dataclass
class EmailMessage:
    """A composed notification email."""

    user_id: str
    to: str
    subject: str
    body: str


@dataclass
class NotificationRecord:
    """A persisted delivery attempt."""

    email_id: str
    user_id: str
    email_address: str
    subject: str
    body: str
    status: DeliveryStatus
    attempt: int = 1  # Retry attempt that produced this row, 1-based
    error_message: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)


# =============================================================================
# Read projections
# =============================================================================


@dataclass
class ReservationSummary:
    reserved_at: datetime
    due_date: Optional[datetime]
    status: ReservationStatus


@dataclass
class UserSummary:
    user_id: str
    email: str
    first_name: str
    last_name: str
    role: UserRole


@dataclass
class DeviceSummary:
    device_id: str
    brand: str
    model: str
    category: str


@dataclass
class InventorySummary:
    inventory_id: str
    serial_number: str
    is_available: bool


@dataclass
class LoanDetails:
    """Flattened loan view joining reservation, user, device and inventory."""

    loan_id: str
    reservation_id: str
    collected_at: datetime
    returned_at: Optional[datetime]
    reservation: ReservationSummary
    user: UserSummary
    device: DeviceSummary
    inventory: InventorySummary


@dataclass
class PaginationMeta:
    """Pagination metadata for a page of results."""

    page: int
    page_size: int
    total_count: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool

    @classmethod
    def build(cls, page: int, page_size: int, total_count: int) -> "PaginationMeta":
        total_pages = math.ceil(total_count / page_size) if page_size else 0
        return cls(
            page=page,
            page_size=page_size,
            total_count=total_count,
            total_pages=total_pages,
            has_next_page=page < total_pages,
            has_previous_page=page > 1,
        )


@dataclass
class PaginatedLoans:
    """One page of loan details."""

    items: list[LoanDetails]
    pagination: PaginationMeta
