"""Advances a device's waitlist when a unit frees up.

Notification is best effort: failures are reported in the returned
result and never raised, and the entry stays un-notified so a later pass
can try again.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from ..context import RequestContext, log_extra
from ..monitoring.metrics import waitlist_advances_total
from ..repositories.base import LoanStore
from .notification import NotificationDispatcher

logger = logging.getLogger(__name__)


class WaitlistNotifyStatus(str, Enum):
    """What happened when advancing a waitlist."""

    NOTIFIED = "NOTIFIED"  # Email sent and entry marked notified
    SKIPPED = "SKIPPED"  # Nobody waiting
    FAILED = "FAILED"  # Attempted, entry left for a later pass


@dataclass(frozen=True)
class WaitlistNotifyResult:
    """Soft-fail outcome of ``notify_next``. Never signals a fatal error."""

    status: WaitlistNotifyStatus
    device_id: str
    waitlist_id: Optional[str] = None
    user_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def notified(self) -> bool:
        return self.status == WaitlistNotifyStatus.NOTIFIED


class WaitlistAdvancer:
    """Notifies the earliest waiting user for a device.

    Advances for the same device are serialized so an entry is selected and
    marked notified before the next advance reads the queue.
    """

    def __init__(self, store: LoanStore, dispatcher: NotificationDispatcher):
        self.store = store
        self.dispatcher = dispatcher
        self._device_locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, device_id: str) -> asyncio.Lock:
        lock = self._device_locks.get(device_id)
        if lock is None:
            lock = asyncio.Lock()
            self._device_locks[device_id] = lock
        return lock

    async def notify_next(
        self,
        device_id: str,
        ctx: Optional[RequestContext] = None,
    ) -> WaitlistNotifyResult:
        """Notify the next un-notified waitlist entry for ``device_id``."""
        async with self._lock_for(device_id):
            result = await self._advance(device_id, ctx)
        waitlist_advances_total.labels(status=result.status.value).inc()
        return result

    async def _advance(self, device_id: str, ctx: Optional[RequestContext]) -> WaitlistNotifyResult:
        extra = log_extra(ctx)
        try:
            entry = await self.store.next_waitlist_entry(device_id)
        except Exception as e:
            logger.error(f"Waitlist lookup failed for device {device_id}: {e}", extra=extra)
            return WaitlistNotifyResult(WaitlistNotifyStatus.FAILED, device_id, error=str(e))

        if entry is None:
            logger.debug(f"No users waiting for device {device_id}", extra=extra)
            return WaitlistNotifyResult(WaitlistNotifyStatus.SKIPPED, device_id)

        try:
            await self.dispatcher.notify(entry.user_id, device_id, ctx)
            # Mark only after the whole notification path succeeded
            await self.store.mark_waitlist_notified(entry.waitlist_id)
        except Exception as e:
            logger.error(
                f"Waitlist notification for entry {entry.waitlist_id} failed, "
                f"will retry later: {e}",
                extra=extra,
            )
            return WaitlistNotifyResult(
                WaitlistNotifyStatus.FAILED,
                device_id,
                waitlist_id=entry.waitlist_id,
                user_id=entry.user_id,
                error=str(e),
            )

        logger.info(
            f"User {entry.user_id} notified for device {device_id} (entry {entry.waitlist_id})",
            extra=extra,
        )
        return WaitlistNotifyResult(
            WaitlistNotifyStatus.NOTIFIED,
            device_id,
            waitlist_id=entry.waitlist_id,
            user_id=entry.user_id,
        )

    async def retry_pass(
        self,
        device_ids: Iterable[str],
        ctx: Optional[RequestContext] = None,
    ) -> list[WaitlistNotifyResult]:
        """Re-attempt the head of each device's waitlist, one device at a time."""
        results = []
        for device_id in device_ids:
            results.append(await self.notify_next(device_id, ctx))
        return results
