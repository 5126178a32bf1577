"""
Dispatch coordinator -- assignment and removal under partial failure.

Every attempt:

1. re-reads the booking (idempotency check: the previous attempt may have
   committed even though its response was lost);
2. calls the matcher under a timeout;
3. on a transient failure, shows the intended outcome provisionally in the
   ``BookingCache`` and lets the ``RetryPolicy`` schedule the next attempt.

Success reconciles the cache and publishes one event.  Exhaustion rolls the
provisional entry back and raises ``DispatchFailed``.  Conflicts, invalid
transitions and eligibility failures are never retried.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from src.config import settings
from src.domain.entities import AssignmentAttempt, Booking, Driver, utcnow
from src.domain.enums import (
    DRIVER_ACTIVE_STATUSES,
    AttemptOutcome,
    BookingStatus,
    PaymentStatus,
)
from src.domain.exceptions import (
    AssignmentConflict,
    DispatchFailed,
    NotFound,
    TransientBackendError,
)
from src.infrastructure.repositories import BookingStore
from src.realtime.bus import EventBus
from src.realtime.events import EventType, booking_event

from .assignment import AssignmentMatcher
from .cache import BookingCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_base: float = 1.0  # delay before attempt n+1 is n * backoff_base
    timeout: float = 10.0

    @classmethod
    def from_settings(cls) -> RetryPolicy:
        return cls(
            max_attempts=settings.dispatch_max_attempts,
            backoff_base=settings.dispatch_backoff_base_seconds,
            timeout=settings.backend_timeout_seconds,
        )

    def retrying(
        self, sleep: Optional[Callable[[float], Awaitable[None]]] = None
    ) -> AsyncRetrying:
        kwargs: dict[str, Any] = dict(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.backoff_base, increment=self.backoff_base),
            retry=retry_if_exception_type(TransientBackendError),
            reraise=True,
        )
        if sleep is not None:
            kwargs["sleep"] = sleep
        return AsyncRetrying(**kwargs)

    async def call(self, fn: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        """Run one backend call; a timeout counts as a transient failure."""
        try:
            return await asyncio.wait_for(fn(*args), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise TransientBackendError(
                f"{getattr(fn, '__name__', 'backend call')} timed out after {self.timeout}s"
            ) from exc


@dataclass
class DispatchResult:
    success: bool
    booking: Optional[Booking]
    driver: Optional[Driver] = None
    # False only while an outcome is still provisional
    confirmed: bool = True
    attempts: list[AssignmentAttempt] = field(default_factory=list)


def _bound_to(booking: Booking, driver_id: int) -> bool:
    return booking.driver_id == driver_id and booking.status in DRIVER_ACTIVE_STATUSES


def _unbound(booking: Booking) -> bool:
    return booking.driver_id is None and booking.status in (
        BookingStatus.PENDING,
        BookingStatus.CONFIRMED,
    )


class DispatchCoordinator:
    def __init__(
        self,
        matcher: AssignmentMatcher,
        store: BookingStore,
        cache: BookingCache,
        bus: EventBus,
        policy: Optional[RetryPolicy] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.matcher = matcher
        self.store = store
        self.cache = cache
        self.bus = bus
        self.policy = policy or RetryPolicy.from_settings()
        self._sleep = sleep

    async def _read(self, booking_id: int) -> Booking:
        booking = await self.policy.call(self.store.get_booking, booking_id)
        if booking is None:
            raise NotFound("booking", booking_id)
        return booking

    def _record(
        self,
        attempts: list[AssignmentAttempt],
        booking_id: int,
        driver_id: Optional[int],
        outcome: AttemptOutcome,
    ) -> None:
        attempts.append(AssignmentAttempt(booking_id, driver_id, outcome, utcnow()))
        logger.info(
            "Dispatch attempt %d booking=%s driver=%s -> %s",
            len(attempts),
            booking_id,
            driver_id,
            outcome.value,
        )

    # ── Assign ────────────────────────────────────────────────────────

    async def assign_driver(self, booking_id: int, driver_id: int) -> DispatchResult:
        attempts: list[AssignmentAttempt] = []
        provisional = False
        newly_bound = True
        booking: Optional[Booking] = None

        async def attempt_once() -> Booking:
            nonlocal provisional, newly_bound
            current: Optional[Booking] = None
            try:
                current = await self._read(booking_id)
                if _bound_to(current, driver_id):
                    # Only a lost response from an earlier attempt of ours
                    # counts as our bind; otherwise it is a duplicate request.
                    newly_bound = provisional
                    self._record(attempts, booking_id, driver_id, AttemptOutcome.SUCCESS)
                    return current
                stored = await self.policy.call(self.matcher.assign, booking_id, driver_id)
            except TransientBackendError:
                self._record(attempts, booking_id, driver_id, AttemptOutcome.TRANSIENT_ERROR)
                if not provisional and current is not None:
                    self.cache.mark_provisional(
                        replace(
                            current,
                            status=BookingStatus.ASSIGNED,
                            driver_id=driver_id,
                            assigned_at=utcnow(),
                        ),
                        authoritative=current,
                    )
                    provisional = True
                raise
            except AssignmentConflict:
                self._record(attempts, booking_id, driver_id, AttemptOutcome.CONFLICT)
                raise
            self._record(attempts, booking_id, driver_id, AttemptOutcome.SUCCESS)
            return stored

        try:
            async for attempt in self.policy.retrying(self._sleep):
                with attempt:
                    booking = await attempt_once()
        except TransientBackendError as exc:
            self.cache.rollback(booking_id)
            logger.warning(
                "Assign driver %s -> booking %s failed after %d attempts: %s",
                driver_id,
                booking_id,
                len(attempts),
                exc,
            )
            raise DispatchFailed("assign_driver", attempts, rolled_back=provisional) from exc
        except Exception:
            if provisional:
                self.cache.rollback(booking_id)
            raise

        self.cache.reconcile(booking)
        if newly_bound:
            self.bus.publish(booking_event(EventType.DRIVER_ASSIGNED, booking))
        try:
            driver = await self.policy.call(self.store.get_driver, driver_id)
        except TransientBackendError as exc:
            # the assignment is committed; only the driver summary is missing
            logger.warning("Driver %s unreadable after assignment: %s", driver_id, exc)
            driver = None
        return DispatchResult(True, booking, driver, attempts=attempts)

    # ── Remove ────────────────────────────────────────────────────────

    async def remove_driver(self, booking_id: int) -> DispatchResult:
        attempts: list[AssignmentAttempt] = []
        provisional = False
        released: Optional[int] = None
        booking: Optional[Booking] = None

        async def attempt_once() -> Booking:
            nonlocal provisional, released
            current: Optional[Booking] = None
            try:
                current = await self._read(booking_id)
                if _unbound(current):
                    self._record(attempts, booking_id, None, AttemptOutcome.SUCCESS)
                    return current
                released = current.driver_id
                stored = await self.policy.call(self.matcher.unassign, booking_id)
            except TransientBackendError:
                self._record(attempts, booking_id, None, AttemptOutcome.TRANSIENT_ERROR)
                if not provisional and current is not None:
                    paid = current.payment_status == PaymentStatus.COMPLETED
                    self.cache.mark_provisional(
                        replace(
                            current,
                            status=BookingStatus.CONFIRMED if paid else BookingStatus.PENDING,
                            driver_id=None,
                            assigned_at=None,
                        ),
                        authoritative=current,
                    )
                    provisional = True
                raise
            except AssignmentConflict:
                self._record(attempts, booking_id, None, AttemptOutcome.CONFLICT)
                raise
            self._record(attempts, booking_id, None, AttemptOutcome.SUCCESS)
            return stored

        try:
            async for attempt in self.policy.retrying(self._sleep):
                with attempt:
                    booking = await attempt_once()
        except TransientBackendError as exc:
            self.cache.rollback(booking_id)
            logger.warning(
                "Remove driver from booking %s failed after %d attempts: %s",
                booking_id,
                len(attempts),
                exc,
            )
            raise DispatchFailed("remove_driver", attempts, rolled_back=provisional) from exc
        except Exception:
            if provisional:
                self.cache.rollback(booking_id)
            raise

        self.cache.reconcile(booking)
        if released is not None:
            self.bus.publish(
                booking_event(
                    EventType.BOOKING_UPDATED,
                    booking,
                    driver_id=released,
                    removed_driver_id=released,
                )
            )
        return DispatchResult(True, booking, attempts=attempts)
