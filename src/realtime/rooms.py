"""
Room router -- server-side registry of live client connections.

Supports:
- registering / dropping connections
- idempotent room joins (``user:<id>``, ``driver:<id>``, ``admin``)
- delivering one event to every connection in the event's rooms

Delivery is best-effort and at-most-once per connection: a connection that
sits in several target rooms still gets the event once, and a connection
whose send fails or stalls is dropped (the client refetches on reconnect).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import uuid4

from .events import ADMIN_ROOM, DomainEvent, driver_room, user_room

logger = logging.getLogger(__name__)


class ClientConnection(Protocol):
    async def send_json(self, data: Any) -> None: ...


@dataclass
class _Member:
    connection: ClientConnection
    rooms: set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class RoomRouter:
    def __init__(self, send_timeout: float = 5.0) -> None:
        self.send_timeout = send_timeout
        self._members: dict[str, _Member] = {}
        self._rooms: dict[str, set[str]] = {}
        self._delivered = 0
        self._dropped = 0

    @property
    def active_connections(self) -> int:
        return len(self._members)

    def register(self, connection: ClientConnection) -> str:
        connection_id = str(uuid4())
        self._members[connection_id] = _Member(connection)
        return connection_id

    def join(self, connection_id: str, room: str) -> bool:
        """Returns False if already a member (or unknown connection)."""
        member = self._members.get(connection_id)
        if member is None or room in member.rooms:
            return False
        member.rooms.add(room)
        self._rooms.setdefault(room, set()).add(connection_id)
        logger.debug("Connection %s joined %s", connection_id, room)
        return True

    def join_user_room(self, connection_id: str, user_id: int) -> bool:
        return self.join(connection_id, user_room(user_id))

    def join_driver_room(self, connection_id: str, driver_id: int) -> bool:
        return self.join(connection_id, driver_room(driver_id))

    def join_admin_room(self, connection_id: str) -> bool:
        return self.join(connection_id, ADMIN_ROOM)

    def leave(self, connection_id: str, room: str) -> None:
        member = self._members.get(connection_id)
        if member is not None:
            member.rooms.discard(room)
        subscribers = self._rooms.get(room)
        if subscribers is not None:
            subscribers.discard(connection_id)
            if not subscribers:
                del self._rooms[room]

    def disconnect(self, connection_id: str) -> None:
        member = self._members.pop(connection_id, None)
        if member is None:
            return
        for room in list(member.rooms):
            subscribers = self._rooms.get(room)
            if subscribers is not None:
                subscribers.discard(connection_id)
                if not subscribers:
                    del self._rooms[room]

    def members(self, room: str) -> set[str]:
        return set(self._rooms.get(room, set()))

    def rooms_of(self, connection_id: str) -> set[str]:
        member = self._members.get(connection_id)
        return set(member.rooms) if member else set()

    async def deliver(self, event: DomainEvent) -> int:
        """Send *event* to its rooms.  Returns the number of connections reached."""
        targets: set[str] = set()
        for room in event.rooms():
            targets |= self._rooms.get(room, set())

        message = event.to_message()
        sent = 0
        failed: list[str] = []
        for connection_id in targets:
            member = self._members.get(connection_id)
            if member is None:
                continue
            try:
                await asyncio.wait_for(
                    member.connection.send_json(message), timeout=self.send_timeout
                )
                sent += 1
            except Exception:
                logger.warning(
                    "Dropping connection %s: send of %s failed",
                    connection_id,
                    event.type.value,
                    exc_info=True,
                )
                failed.append(connection_id)

        for connection_id in failed:
            self.disconnect(connection_id)

        self._delivered += sent
        self._dropped += len(failed)
        return sent

    def get_stats(self) -> dict[str, Any]:
        return {
            "active_connections": len(self._members),
            "total_rooms": len(self._rooms),
            "messages_delivered": self._delivered,
            "connections_dropped": self._dropped,
        }
