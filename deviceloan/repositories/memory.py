"""In-memory LoanStore for tests, demos and single-process deployments."""

import asyncio
import contextlib
import copy
import logging
import uuid
from dataclasses import replace
from typing import AsyncIterator, Optional

from ..models import (
    DeliveryStatus,
    Device,
    DeviceSummary,
    EmailMessage,
    InventorySummary,
    InventoryUnit,
    Loan,
    LoanDetails,
    LoanWithReservation,
    NotificationRecord,
    Reservation,
    ReservationStatus,
    ReservationSummary,
    User,
    UserSummary,
    WaitlistEntry,
    utcnow,
)
from .base import LoanStore

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


class InMemoryLoanStore(LoanStore):
    """Dictionary-backed store.

    ``transaction()`` serializes lifecycle writes and restores the
    reservation, loan and inventory tables if the block raises. Rows are
    returned as copies so callers cannot mutate stored state.
    """

    def __init__(self):
        self.users: dict[str, User] = {}
        self.devices: dict[str, Device] = {}
        self.inventory: dict[str, InventoryUnit] = {}
        self.reservations: dict[str, Reservation] = {}
        self.loans: dict[str, Loan] = {}
        self.waitlist: dict[str, WaitlistEntry] = {}
        self.notifications: list[NotificationRecord] = []
        self._tx_lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Seeding helpers
    # -------------------------------------------------------------------------

    def add_user(self, user: User) -> User:
        self.users[user.user_id] = user
        return user

    def add_device(self, device: Device) -> Device:
        self.devices[device.device_id] = device
        return device

    def add_inventory(self, unit: InventoryUnit) -> InventoryUnit:
        self.inventory[unit.inventory_id] = unit
        return unit

    def add_reservation(self, reservation: Reservation) -> Reservation:
        self.reservations[reservation.reservation_id] = reservation
        return reservation

    def add_loan(self, loan: Loan) -> Loan:
        self.loans[loan.loan_id] = loan
        return loan

    def add_waitlist_entry(self, entry: WaitlistEntry) -> WaitlistEntry:
        self.waitlist[entry.waitlist_id] = entry
        return entry

    # -------------------------------------------------------------------------
    # LoanStore
    # -------------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        async with self._tx_lock:
            snapshot = (
                copy.deepcopy(self.reservations),
                copy.deepcopy(self.loans),
                copy.deepcopy(self.inventory),
            )
            try:
                yield
            except BaseException:
                self.reservations, self.loans, self.inventory = snapshot
                logger.debug("Transaction rolled back")
                raise

    async def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        reservation = self.reservations.get(reservation_id)
        return replace(reservation) if reservation else None

    async def set_reservation_status(self, reservation_id: str, status: ReservationStatus) -> int:
        reservation = self.reservations.get(reservation_id)
        if reservation is None:
            return 0
        reservation.status = status
        return 1

    async def create_loan(self, reservation_id: str) -> Loan:
        loan = Loan(loan_id=_new_id(), reservation_id=reservation_id, collected_at=utcnow())
        self.loans[loan.loan_id] = loan
        return replace(loan)

    async def set_loan_returned(self, loan_id: str) -> Optional[Loan]:
        loan = self.loans.get(loan_id)
        if loan is None:
            return None
        loan.returned_at = utcnow()
        return replace(loan)

    async def find_loan_by_reservation(self, reservation_id: str) -> Optional[Loan]:
        for loan in self.loans.values():
            if loan.reservation_id == reservation_id:
                return replace(loan)
        return None

    async def find_loan_with_reservation(self, loan_id: str) -> Optional[LoanWithReservation]:
        loan = self.loans.get(loan_id)
        if loan is None:
            return None
        reservation = self.reservations.get(loan.reservation_id)
        if reservation is None:
            return None
        return LoanWithReservation(
            loan=replace(loan),
            reservation_id=reservation.reservation_id,
            user_id=reservation.user_id,
            device_id=reservation.device_id,
            inventory_id=reservation.inventory_id,
            status=reservation.status,
        )

    def _joined_loans(self, user_id: Optional[str]) -> list[LoanDetails]:
        rows = []
        for loan in self.loans.values():
            reservation = self.reservations.get(loan.reservation_id)
            if reservation is None or (user_id and reservation.user_id != user_id):
                continue
            user = self.users.get(reservation.user_id)
            device = self.devices.get(reservation.device_id)
            unit = self.inventory.get(reservation.inventory_id)
            if user is None or device is None or unit is None:
                continue
            if user.is_deleted or device.is_deleted:
                continue
            rows.append(
                LoanDetails(
                    loan_id=loan.loan_id,
                    reservation_id=loan.reservation_id,
                    collected_at=loan.collected_at,
                    returned_at=loan.returned_at,
                    reservation=ReservationSummary(
                        reserved_at=reservation.reserved_at,
                        due_date=reservation.due_date,
                        status=reservation.status,
                    ),
                    user=UserSummary(
                        user_id=user.user_id,
                        email=user.email,
                        first_name=user.first_name,
                        last_name=user.last_name,
                        role=user.role,
                    ),
                    device=DeviceSummary(
                        device_id=device.device_id,
                        brand=device.brand,
                        model=device.model,
                        category=device.category,
                    ),
                    inventory=InventorySummary(
                        inventory_id=unit.inventory_id,
                        serial_number=unit.serial_number,
                        is_available=unit.is_available,
                    ),
                )
            )
        rows.sort(key=lambda row: row.collected_at, reverse=True)
        return rows

    async def find_loans_with_details(
        self,
        page: int,
        page_size: int,
        user_id: Optional[str] = None,
    ) -> list[LoanDetails]:
        offset = (page - 1) * page_size
        return self._joined_loans(user_id)[offset : offset + page_size]

    async def count_loans(self, user_id: Optional[str] = None) -> int:
        return len(self._joined_loans(user_id))

    async def set_inventory_available(self, inventory_id: str) -> int:
        unit = self.inventory.get(inventory_id)
        if unit is None:
            return 0
        unit.is_available = True
        return 1

    async def next_waitlist_entry(self, device_id: str) -> Optional[WaitlistEntry]:
        candidates = [
            entry
            for entry in self.waitlist.values()
            if entry.device_id == device_id and not entry.is_notified
        ]
        if not candidates:
            return None
        return replace(min(candidates, key=lambda entry: entry.added_at))

    async def mark_waitlist_notified(self, waitlist_id: str) -> int:
        entry = self.waitlist.get(waitlist_id)
        if entry is None:
            return 0
        entry.is_notified = True
        entry.notified_at = utcnow()
        return 1

    async def find_user(self, user_id: str) -> Optional[User]:
        user = self.users.get(user_id)
        if user is None or user.is_deleted:
            return None
        return replace(user)

    async def find_device(self, device_id: str) -> Optional[Device]:
        device = self.devices.get(device_id)
        if device is None or device.is_deleted:
            return None
        return replace(device)

    async def record_notification_attempt(
        self,
        user_id: str,
        message: EmailMessage,
        status: DeliveryStatus,
        error_message: Optional[str] = None,
        attempt: int = 1,
    ) -> NotificationRecord:
        record = NotificationRecord(
            email_id=_new_id(),
            user_id=user_id,
            email_address=message.to,
            subject=message.subject,
            body=message.body,
            status=status,
            attempt=attempt,
            error_message=error_message,
            sent_at=utcnow() if status == DeliveryStatus.SENT else None,
        )
        self.notifications.append(record)
        return replace(record)
