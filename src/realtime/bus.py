"""
Event bus -- decouples booking writes from client fan-out.

``publish`` only enqueues, so a slow or dead client can never hold up the
write path.  A background dispatcher task drains the queue and either

* hands the event straight to the local ``RoomRouter`` (single process), or
* publishes it on a Redis channel that every API process subscribes to,
  so clients connected to any process get it.

If the Redis publish fails, the event is still delivered to this process's
own clients.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import redis.asyncio as aioredis

from .events import DomainEvent
from .rooms import RoomRouter

logger = logging.getLogger(__name__)


class EventBus:
    def __init__(
        self,
        router: RoomRouter,
        redis: Optional[aioredis.Redis] = None,
        channel: str = "urbanride:events",
    ) -> None:
        self.router = router
        self.redis = redis
        self.channel = channel
        self._queue: asyncio.Queue[DomainEvent] = asyncio.Queue()
        self._dispatch_task: Optional[asyncio.Task] = None
        self._listen_task: Optional[asyncio.Task] = None
        self._published = 0

    @property
    def running(self) -> bool:
        return self._dispatch_task is not None and not self._dispatch_task.done()

    def use_redis(self, redis: aioredis.Redis, channel: Optional[str] = None) -> None:
        if self.running:
            raise RuntimeError("Cannot switch transport while the bus is running")
        self.redis = redis
        if channel:
            self.channel = channel

    def publish(self, event: DomainEvent) -> None:
        """Fire-and-forget; never blocks, never raises on delivery problems."""
        self._queue.put_nowait(event)
        self._published += 1
        logger.debug("Queued %s for booking %s", event.type.value, event.booking_id)

    async def start(self) -> None:
        if self.running:
            return
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())
        if self.redis is not None:
            self._listen_task = asyncio.create_task(self._listen_loop())
        logger.info(
            "Event bus started (%s)", "redis" if self.redis is not None else "in-process"
        )

    async def stop(self) -> None:
        for task in (self._dispatch_task, self._listen_task):
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._dispatch_task = None
        self._listen_task = None
        logger.info("Event bus stopped")

    async def drain(self) -> None:
        """Wait until every queued event has been handed on."""
        await self._queue.join()

    async def _dispatch_loop(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._forward(event)
            except Exception:
                logger.exception("Failed to dispatch %s", event.type.value)
            finally:
                self._queue.task_done()

    async def _forward(self, event: DomainEvent) -> None:
        if self.redis is None:
            await self.router.deliver(event)
            return
        try:
            await self.redis.publish(self.channel, event.to_json())
        except aioredis.RedisError:
            logger.warning(
                "Redis publish failed for %s, delivering locally only",
                event.type.value,
                exc_info=True,
            )
            await self.router.deliver(event)

    async def _listen_loop(self) -> None:
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(self.channel)
        try:
            while True:
                try:
                    message = await pubsub.get_message(
                        ignore_subscribe_messages=True, timeout=1.0
                    )
                except aioredis.RedisError:
                    logger.exception("Redis subscription error, retrying")
                    await asyncio.sleep(1.0)
                    continue
                if message is None:
                    continue
                try:
                    event = DomainEvent.from_json(message["data"])
                except (ValueError, KeyError):
                    logger.warning("Discarding malformed event: %r", message["data"])
                    continue
                await self.router.deliver(event)
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    def get_stats(self) -> dict:
        return {
            "transport": "redis" if self.redis is not None else "in-process",
            "published": self._published,
            "queued": self._queue.qsize(),
            **self.router.get_stats(),
        }
