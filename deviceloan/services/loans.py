"""Loan lifecycle: collecting reservations and returning loans.

Every public method returns a coded ``Result``; no exception escapes to
the caller. Domain errors are raised internally and translated at the
public boundary.
"""

import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..context import RequestContext, log_extra
from ..errors import ConflictError, LoanServiceError, NotFoundError, OperationFailedError, ValidationError
from ..models import Loan, PaginatedLoans, PaginationMeta, ReservationStatus
from ..monitoring.metrics import loan_operation_failures_total, loans_collected_total, loans_returned_total
from ..repositories.base import LoanStore
from ..responses import Result
from .waitlist import WaitlistAdvancer

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETURN_MESSAGE = "Device returned and next user notified."


class LoanLifecycleManager:
    """Applies collect and return transitions through the store."""

    def __init__(
        self,
        store: LoanStore,
        waitlist: WaitlistAdvancer,
        default_page_size: int = 10,
        max_page_size: int = 100,
    ):
        self.store = store
        self.waitlist = waitlist
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    async def _run(
        self,
        operation: str,
        failure_message: str,
        func: Callable[[], Awaitable[Result[T]]],
        ctx: Optional[RequestContext],
        **log_fields: Any,
    ) -> Result[T]:
        """Run ``func`` and translate any error into a coded result."""
        extra = log_extra(ctx)
        try:
            return await func()
        except LoanServiceError as e:
            result = self._error_result(e, failure_message)
            logger.warning(f"{operation} rejected ({log_fields}): {e.message}", extra=extra)
        except Exception as e:
            wrapped = OperationFailedError(failure_message, e)
            result = self._error_result(wrapped, failure_message)
            logger.error(f"{operation} failed ({log_fields}): {e!r}", exc_info=True, extra=extra)

        loan_operation_failures_total.labels(operation=operation, code=result.code.value).inc()
        return result

    @staticmethod
    def _error_result(error: LoanServiceError, failure_message: str) -> Result:
        if isinstance(error, NotFoundError):
            return Result.not_found(error.message)
        if isinstance(error, (ValidationError, ConflictError)):
            return Result.validation_error(error.message)
        return Result.error(failure_message)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def collect(
        self,
        reservation_id: str,
        ctx: Optional[RequestContext] = None,
    ) -> Result[Loan]:
        """Turn a pending reservation into a loan."""
        logger.debug(f"collect called for reservation {reservation_id}", extra=log_extra(ctx))

        async def run() -> Result[Loan]:
            loan = await self._collect(reservation_id, ctx)
            return Result.ok(loan, "Loan collected successfully")

        return await self._run(
            "collect", "Failed to collect loan", run, ctx, reservation_id=reservation_id
        )

    async def _collect(self, reservation_id: str, ctx: Optional[RequestContext]) -> Loan:
        if not reservation_id:
            raise ValidationError("Reservation ID is required")

        async with self.store.transaction():
            reservation = await self.store.get_reservation(reservation_id)
            if reservation is None:
                raise NotFoundError("Reservation", reservation_id)

            if reservation.status != ReservationStatus.PENDING:
                raise ValidationError(
                    "Reservation cannot be collected. Status must be pending."
                )

            if await self.store.find_loan_by_reservation(reservation_id) is not None:
                raise ConflictError("Reservation has already been collected")

            loan = await self.store.create_loan(reservation_id)
            await self.store.set_reservation_status(reservation_id, ReservationStatus.COLLECTED)

        loans_collected_total.inc()
        logger.info(
            f"Loan {loan.loan_id} collected for reservation {reservation_id}",
            extra=log_extra(ctx),
        )
        return loan

    async def return_loan(
        self,
        loan_id: str,
        ctx: Optional[RequestContext] = None,
    ) -> Result[dict]:
        """Close a loan, free its unit and advance the device's waitlist."""
        logger.debug(f"return_loan called for loan {loan_id}", extra=log_extra(ctx))

        async def run() -> Result[dict]:
            await self._return(loan_id, ctx)
            return Result.ok({"message": RETURN_MESSAGE}, "Loan returned successfully")

        return await self._run("return_loan", "Failed to return loan", run, ctx, loan_id=loan_id)

    async def _return(self, loan_id: str, ctx: Optional[RequestContext]) -> None:
        if not loan_id:
            raise ValidationError("Loan ID is required")

        async with self.store.transaction():
            joined = await self.store.find_loan_with_reservation(loan_id)
            if joined is None:
                raise NotFoundError("Loan", loan_id)

            if not joined.loan.is_active:
                raise ValidationError("Loan has already been returned")

            await self.store.set_loan_returned(loan_id)
            await self.store.set_inventory_available(joined.inventory_id)
            await self.store.set_reservation_status(joined.reservation_id, ReservationStatus.RETURNED)

        loans_returned_total.inc()
        logger.info(
            f"Loan {loan_id} returned (reservation {joined.reservation_id}, device {joined.device_id})",
            extra=log_extra(ctx),
        )

        # Best effort: the return is already committed
        try:
            outcome = await self.waitlist.notify_next(joined.device_id, ctx)
        except Exception as e:
            logger.error(
                f"Failed to notify waitlist for device {joined.device_id}, "
                f"but loan {loan_id} return succeeded: {e}",
                extra=log_extra(ctx),
            )
        else:
            logger.debug(
                f"Waitlist advance for device {joined.device_id}: {outcome.status.value}",
                extra=log_extra(ctx),
            )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _page_size(self, page: int, page_size: Optional[int]) -> int:
        size = self.default_page_size if page_size is None else page_size
        if page < 1:
            raise ValidationError("Page must be at least 1")
        if size < 1 or size > self.max_page_size:
            raise ValidationError(f"Page size must be between 1 and {self.max_page_size}")
        return size

    async def get_all_loans(
        self,
        page: int = 1,
        page_size: Optional[int] = None,
        ctx: Optional[RequestContext] = None,
    ) -> Result[PaginatedLoans]:
        """Page through every loan, newest first."""

        async def run() -> Result[PaginatedLoans]:
            size = self._page_size(page, page_size)
            items = await self.store.find_loans_with_details(page, size)
            total = await self.store.count_loans()
            paginated = PaginatedLoans(items=items, pagination=PaginationMeta.build(page, size, total))
            return Result.ok(paginated, "Loans retrieved successfully")

        return await self._run("get_all_loans", "Failed to retrieve loans", run, ctx, page=page)

    async def get_loans_by_user_id(
        self,
        user_id: str,
        page: int = 1,
        page_size: Optional[int] = None,
        ctx: Optional[RequestContext] = None,
    ) -> Result[PaginatedLoans]:
        """Page through one user's loans, newest first."""

        async def run() -> Result[PaginatedLoans]:
            if not user_id:
                raise ValidationError("User ID is required")
            size = self._page_size(page, page_size)
            items = await self.store.find_loans_with_details(page, size, user_id=user_id)
            total = await self.store.count_loans(user_id=user_id)
            paginated = PaginatedLoans(items=items, pagination=PaginationMeta.build(page, size, total))
            return Result.ok(paginated, "Loans retrieved successfully")

        return await self._run(
            "get_loans_by_user_id", "Failed to retrieve loans", run, ctx, user_id=user_id, page=page
        )
