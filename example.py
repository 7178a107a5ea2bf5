"""Example script demonstrating a collect/return cycle with waitlist notification."""

import asyncio
import logging
from datetime import timedelta

from deviceloan import ServiceContainer
from deviceloan.config import settings
from deviceloan.context import RequestContext, configure_logging
from deviceloan.models import Device, InventoryUnit, Reservation, User, WaitlistEntry, utcnow
from deviceloan.repositories import InMemoryLoanStore

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


def seed_store() -> InMemoryLoanStore:
    """One device, one reserved unit and two users waiting for it."""
    store = InMemoryLoanStore()
    now = utcnow()

    store.add_user(User(user_id="u-1", email="ada@example.edu", first_name="Ada", last_name="Lovelace"))
    store.add_user(User(user_id="u-2", email="alan@example.edu", first_name="Alan", last_name="Turing"))
    store.add_user(User(user_id="u-3", email="grace@example.edu", first_name="Grace", last_name="Hopper"))
    store.add_device(Device(device_id="d-1", brand="Apple", model="MacBook Air", category="laptop"))
    store.add_inventory(InventoryUnit(inventory_id="i-1", device_id="d-1", serial_number="SN-001", is_available=False))
    store.add_reservation(
        Reservation(
            reservation_id="r-1",
            user_id="u-1",
            device_id="d-1",
            inventory_id="i-1",
            due_date=now + timedelta(days=7),
        )
    )
    store.add_waitlist_entry(WaitlistEntry(waitlist_id="w-1", user_id="u-2", device_id="d-1", added_at=now - timedelta(hours=2)))
    store.add_waitlist_entry(WaitlistEntry(waitlist_id="w-2", user_id="u-3", device_id="d-1", added_at=now - timedelta(hours=1)))
    return store


async def main():
    """Run a simple loan lifecycle demonstration."""

    logger.info("=" * 60)
    logger.info(settings.system_name)
    logger.info("=" * 60)

    store = seed_store()

    async with ServiceContainer(settings=settings, store=store) as container:
        ctx = RequestContext.new(user_id="u-1")

        collected = await container.loans.collect("r-1", ctx)
        logger.info(f"Collect: {collected.to_dict()['code']} {collected.message}", extra=ctx.log_extra())

        duplicate = await container.loans.collect("r-1", ctx)
        logger.info(f"Collect again: {duplicate.code.value} {duplicate.message}", extra=ctx.log_extra())

        returned = await container.loans.return_loan(collected.data.loan_id, ctx)
        logger.info(f"Return: {returned.code.value} {returned.message}", extra=ctx.log_extra())

        listing = await container.loans.get_loans_by_user_id("u-1", ctx=ctx)
        for row in listing.data.items:
            logger.info(
                f"  {row.loan_id}: {row.device.brand} {row.device.model} "
                f"collected {row.collected_at:%Y-%m-%d %H:%M}, returned {row.returned_at:%Y-%m-%d %H:%M}"
            )

        logger.info("-" * 60)
        logger.info("Notifications:")
        for record in store.notifications:
            logger.info(f"  {record.email_address}: {record.status.value} ({record.subject})")

        waiting = [entry.user_id for entry in store.waitlist.values() if not entry.is_notified]
        logger.info(f"Still waiting: {', '.join(waiting) or 'nobody'}")

        health = await container.health()
        logger.info(f"Health: {health['status']}")


if __name__ == "__main__":
    asyncio.run(main())
