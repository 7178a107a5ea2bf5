"""Persistence contract consumed by the loan services."""

from abc import ABC, abstractmethod
from typing import AsyncContextManager, Optional

from ..models import (
    DeliveryStatus,
    Device,
    EmailMessage,
    Loan,
    LoanDetails,
    LoanWithReservation,
    NotificationRecord,
    Reservation,
    ReservationStatus,
    User,
    WaitlistEntry,
)


class LoanStore(ABC):
    """Rows for reservations, loans, inventory, the waitlist and notifications.

    Write methods return affected row counts where the underlying store
    reports them.
    """

    @abstractmethod
    def transaction(self) -> AsyncContextManager[None]:
        """Group writes so they commit together or not at all."""

    # Reservations

    @abstractmethod
    async def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        ...

    @abstractmethod
    async def set_reservation_status(self, reservation_id: str, status: ReservationStatus) -> int:
        ...

    # Loans

    @abstractmethod
    async def create_loan(self, reservation_id: str) -> Loan:
        ...

    @abstractmethod
    async def set_loan_returned(self, loan_id: str) -> Optional[Loan]:
        ...

    @abstractmethod
    async def find_loan_by_reservation(self, reservation_id: str) -> Optional[Loan]:
        ...

    @abstractmethod
    async def find_loan_with_reservation(self, loan_id: str) -> Optional[LoanWithReservation]:
        ...

    @abstractmethod
    async def find_loans_with_details(
        self,
        page: int,
        page_size: int,
        user_id: Optional[str] = None,
    ) -> list[LoanDetails]:
        """Loans newest-collected first, skipping deleted users and devices."""

    @abstractmethod
    async def count_loans(self, user_id: Optional[str] = None) -> int:
        ...

    # Inventory

    @abstractmethod
    async def set_inventory_available(self, inventory_id: str) -> int:
        ...

    # Waitlist

    @abstractmethod
    async def next_waitlist_entry(self, device_id: str) -> Optional[WaitlistEntry]:
        """Earliest-added entry for the device that has not been notified."""

    @abstractmethod
    async def mark_waitlist_notified(self, waitlist_id: str) -> int:
        ...

    # Users, devices, notifications

    @abstractmethod
    async def find_user(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    async def find_device(self, device_id: str) -> Optional[Device]:
        ...

    @abstractmethod
    async def record_notification_attempt(
        self,
        user_id: str,
        message: EmailMessage,
        status: DeliveryStatus,
        error_message: Optional[str] = None,
        attempt: int = 1,
    ) -> NotificationRecord:
        ...

    async def ping(self) -> bool:
        """Readiness check."""
        return True
