"""Wires the store, realtime fan-out and services together for one process."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import settings
from src.infrastructure.repositories import BookingStore
from src.realtime.bus import EventBus
from src.realtime.rooms import RoomRouter

from .assignment import AssignmentMatcher
from .bookings import BookingService
from .cache import BookingCache
from .dispatch import DispatchCoordinator, RetryPolicy
from .payments import PaymentGateway


@dataclass
class Services:
    store: BookingStore
    cache: BookingCache
    router: RoomRouter
    bus: EventBus
    matcher: AssignmentMatcher
    coordinator: DispatchCoordinator
    bookings: BookingService


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    redis: Optional[aioredis.Redis] = None,
    payments: Optional[PaymentGateway] = None,
    policy: Optional[RetryPolicy] = None,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> Services:
    store = BookingStore(session_factory)
    cache = BookingCache()
    router = RoomRouter()
    bus = EventBus(router, redis=redis, channel=settings.realtime_channel)
    matcher = AssignmentMatcher(store)
    coordinator = DispatchCoordinator(matcher, store, cache, bus, policy=policy, sleep=sleep)
    bookings = BookingService(store, cache, bus, payments=payments)
    return Services(store, cache, router, bus, matcher, coordinator, bookings)
