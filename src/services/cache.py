"""
Read-through booking cache with provisional entries.

While the coordinator is still retrying a write, readers see the intended
outcome flagged ``pending_sync=True``.  Success replaces it with the
authoritative booking (``reconcile``); exhaustion restores the last
authoritative snapshot (``rollback``).  The store stays the only source of
truth: a provisional entry is never written back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from src.domain.entities import Booking
from src.domain.exceptions import NotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    booking: Booking
    pending_sync: bool = False


class BookingCache:
    def __init__(self) -> None:
        self._entries: dict[int, CacheEntry] = {}
        # authoritative snapshot kept aside while an entry is provisional
        self._confirmed: dict[int, Booking] = {}

    def get(self, booking_id: int) -> Optional[CacheEntry]:
        return self._entries.get(booking_id)

    async def read_through(
        self,
        booking_id: int,
        loader: Callable[[int], Awaitable[Optional[Booking]]],
    ) -> CacheEntry:
        entry = self._entries.get(booking_id)
        if entry is not None and entry.pending_sync:
            return entry
        booking = await loader(booking_id)
        if booking is None:
            self.evict(booking_id)
            raise NotFound("booking", booking_id)
        return self.reconcile(booking)

    def mark_provisional(
        self, booking: Booking, authoritative: Optional[Booking] = None
    ) -> CacheEntry:
        """
        Show *booking* as the pending outcome of an unconfirmed write.

        *authoritative* is the last state read from the store; rollback
        restores it.  Without it, the currently cached entry is used.
        """
        if booking.id not in self._confirmed:
            current = self._entries.get(booking.id)
            if authoritative is not None:
                self._confirmed[booking.id] = authoritative
            elif current is not None and not current.pending_sync:
                self._confirmed[booking.id] = current.booking
        entry = CacheEntry(booking, pending_sync=True)
        self._entries[booking.id] = entry
        logger.info("Booking %s shown as provisional %s", booking.id, booking.status.value)
        return entry

    def reconcile(self, booking: Booking) -> CacheEntry:
        """Replace whatever is cached with the authoritative *booking*."""
        self._confirmed.pop(booking.id, None)
        entry = CacheEntry(booking)
        self._entries[booking.id] = entry
        return entry

    def rollback(self, booking_id: int) -> Optional[CacheEntry]:
        entry = self._entries.get(booking_id)
        if entry is None or not entry.pending_sync:
            return entry
        snapshot = self._confirmed.pop(booking_id, None)
        if snapshot is None:
            del self._entries[booking_id]
            logger.info("Provisional booking %s evicted", booking_id)
            return None
        restored = CacheEntry(snapshot)
        self._entries[booking_id] = restored
        logger.info("Provisional booking %s rolled back", booking_id)
        return restored

    def evict(self, booking_id: int) -> None:
        self._entries.pop(booking_id, None)
        self._confirmed.pop(booking_id, None)
