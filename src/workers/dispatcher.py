"""
Background Auto-Dispatch Worker
===============================

Runs every ``AUTO_DISPATCH_INTERVAL_SECONDS`` (default 15 s) when
``AUTO_DISPATCH_ENABLED`` is set.  Off by default: operators assign by hand.

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance sweeps the backlog
  at a time across multiple API processes.
* Each assignment still goes through the coordinator and the store's
  compare-and-swap, so a manual assignment racing the sweep just surfaces
  as ``AssignmentConflict`` and the sweep moves on.

Algorithm per cycle
-------------------
1. Fetch confirmed bookings with no driver, oldest first.
2. For each, list compatible available drivers (best rated first).
3. Try them in order until one assignment succeeds.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from src.config import settings
from src.domain.enums import BookingStatus
from src.domain.exceptions import AssignmentConflict, DispatchFailed, InvalidTransition
from src.infrastructure.locks import DistributedLock
from src.infrastructure.redis_client import get_redis
from src.services.container import Services

logger = logging.getLogger(__name__)

_task: Optional[asyncio.Task] = None
_stop_event: Optional[asyncio.Event] = None


# ── Public API ────────────────────────────────────────────────────────


async def start_dispatch_loop(services: Services) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(services))
    logger.info(
        "Auto-dispatch worker started (interval=%ds)",
        settings.auto_dispatch_interval_seconds,
    )


async def stop_dispatch_loop() -> None:
    global _task, _stop_event
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    _task = None
    _stop_event = None
    logger.info("Auto-dispatch worker stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(services: Services) -> None:
    """Periodic loop: run a dispatch cycle then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_dispatch_cycle(services)
        except Exception:
            logger.exception("Unhandled error in dispatch cycle")
        # Wait for the interval or until stop is signalled
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.auto_dispatch_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle


async def run_dispatch_cycle(services: Services, redis=None) -> int:
    """Execute one dispatch cycle.  Returns the number of bookings assigned."""
    redis = redis or await get_redis()
    lock = DistributedLock(redis, "auto_dispatch", ttl_seconds=60)

    if not await lock.acquire():
        logger.debug("Lock held by another worker – skipping cycle")
        return 0

    assigned = 0
    try:
        backlog = await services.store.list_bookings(
            status=BookingStatus.CONFIRMED, unassigned_only=True
        )
        for booking in backlog:
            candidates = await services.matcher.candidates(booking.id)
            if not candidates:
                logger.debug("Booking %s: no compatible driver available", booking.id)
                continue

            for driver in candidates:
                try:
                    await services.coordinator.assign_driver(booking.id, driver.id)
                except AssignmentConflict:
                    # driver taken or booking handled meanwhile
                    continue
                except InvalidTransition:
                    break
                except DispatchFailed:
                    logger.warning("Booking %s: backend unavailable, skipping", booking.id)
                    break
                assigned += 1
                break

        if assigned:
            logger.info("Dispatch cycle: %d bookings assigned", assigned)
    except Exception:
        logger.exception("Error in dispatch cycle")
    finally:
        await lock.release()

    return assigned
