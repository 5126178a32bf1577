"""
Realtime client -- connection manager for consumers of the ``/ws`` stream.

One explicit object per consumer (no shared module-level socket).  The
stream is a hint, not a source of truth: on every (re)connect the client
re-joins its rooms and calls ``on_reconnect`` so the owner can refetch
whatever it displays.

State machine::

    disconnected -> connecting -> connected
         ^______________|____________|
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import json
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from src.config import settings

from .events import EventType

logger = logging.getLogger(__name__)

Handler = Callable[[dict], Any]


class Transport(Protocol):
    async def send(self, message: str) -> None: ...

    async def recv(self) -> str: ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[Transport]]


async def websocket_connector(url: str) -> Transport:
    return await websockets.connect(url)


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


_CONNECT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


class RealtimeClient:
    def __init__(
        self,
        url: str,
        connector: Optional[Connector] = None,
        max_attempts: int = settings.reconnect_max_attempts,
        min_interval: float = settings.reconnect_min_interval_seconds,
        on_reconnect: Optional[Callable[[], Awaitable[None]]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.url = url
        self.connector = connector or websocket_connector
        self.max_attempts = max_attempts
        self.min_interval = min_interval
        self.on_reconnect = on_reconnect
        self.state = ConnectionState.DISCONNECTED
        self._clock = clock
        self._sleep = sleep
        self._transport: Optional[Transport] = None
        self._reader: Optional[asyncio.Task] = None
        self._handlers: dict[str, Handler] = {}
        self._joins: list[dict] = []
        self._attempts = 0
        self._last_attempt_at: Optional[float] = None
        self._connected_once = False
        self._closing = False

    @property
    def attempts(self) -> int:
        return self._attempts

    # ── Handlers ──────────────────────────────────────────────────────

    def on(self, event_name: str, handler: Handler) -> None:
        """Register *handler*; replaces whatever was registered for the name."""
        EventType(event_name)
        self._handlers[event_name] = handler

    def off(self, event_name: str) -> None:
        self._handlers.pop(event_name, None)

    # ── Rooms ─────────────────────────────────────────────────────────

    async def join_user_room(self, user_id: int) -> None:
        await self._join({"action": "joinUserRoom", "id": user_id})

    async def join_driver_room(self, driver_id: int) -> None:
        await self._join({"action": "joinDriverRoom", "id": driver_id})

    async def join_admin_room(self) -> None:
        await self._join({"action": "joinAdminRoom"})

    async def _join(self, message: dict) -> None:
        if message in self._joins:
            return
        self._joins.append(message)
        if self.state == ConnectionState.CONNECTED:
            await self._transport.send(json.dumps(message))

    # ── Connection lifecycle ──────────────────────────────────────────

    async def connect(self) -> bool:
        """Connect, retrying up to ``max_attempts``.  Returns True when connected."""
        if self.state == ConnectionState.CONNECTED:
            return True
        if self.state == ConnectionState.CONNECTING:
            # another caller is already on it
            return False

        self._closing = False
        while self._attempts < self.max_attempts:
            await self._cooldown()
            self.state = ConnectionState.CONNECTING
            self._attempts += 1
            self._last_attempt_at = self._clock()
            try:
                self._transport = await self.connector(self.url)
            except _CONNECT_ERRORS as exc:
                logger.warning(
                    "Connect attempt %d/%d to %s failed: %s",
                    self._attempts,
                    self.max_attempts,
                    self.url,
                    exc,
                )
                self.state = ConnectionState.DISCONNECTED
                continue

            self.state = ConnectionState.CONNECTED
            self._attempts = 0
            reconnected = self._connected_once
            self._connected_once = True
            logger.info("Connected to %s", self.url)

            for message in self._joins:
                await self._transport.send(json.dumps(message))
            self._reader = asyncio.create_task(self._read_loop(self._transport))
            if reconnected and self.on_reconnect is not None:
                await self.on_reconnect()
            return True

        logger.error("Giving up on %s after %d attempts", self.url, self.max_attempts)
        self.state = ConnectionState.DISCONNECTED
        return False

    async def disconnect(self) -> None:
        self._closing = True
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        if self._transport is not None:
            await self._transport.close()
            self._transport = None
        self.state = ConnectionState.DISCONNECTED
        self._attempts = 0

    async def _cooldown(self) -> None:
        if self._last_attempt_at is None:
            return
        wait = self.min_interval - (self._clock() - self._last_attempt_at)
        if wait > 0:
            await self._sleep(wait)

    async def _read_loop(self, transport: Transport) -> None:
        try:
            while True:
                raw = await transport.recv()
                try:
                    message = json.loads(raw)
                except ValueError:
                    logger.warning("Ignoring malformed frame: %r", raw)
                    continue
                if not isinstance(message, dict):
                    logger.warning("Ignoring non-object frame: %r", raw)
                    continue
                await self.dispatch(message)
        except asyncio.CancelledError:
            raise
        except (ConnectionClosed, ConnectionError, OSError) as exc:
            logger.warning("Connection to %s lost: %s", self.url, exc)

        if transport is self._transport:
            self._transport = None
            self._reader = None
            self.state = ConnectionState.DISCONNECTED
        if not self._closing:
            await self.connect()

    async def dispatch(self, message: dict) -> None:
        handler = self._handlers.get(message.get("event", ""))
        if handler is None:
            return
        try:
            result = handler(message.get("data", {}))
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Handler for %s failed", message.get("event"))
