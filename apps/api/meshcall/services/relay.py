"""In-memory signaling relay: room membership and message fan-out.

The relay never looks inside signaling payloads. It only knows which live
connection belongs to which room and forwards frames accordingly.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable

from pydantic import BaseModel, ValidationError

from ..schemas.signaling import (
    EVENT_CHAT_MESSAGE,
    EVENT_JOIN_ROOM,
    EVENT_LEAVE_ROOM,
    EVENT_SIGNAL,
    EVENT_USER_JOINED,
    EVENT_USER_LEFT,
    ChatPayload,
    Frame,
    JoinRoomPayload,
    LeaveRoomPayload,
    SignalPayload,
    frame,
)

logger = logging.getLogger(__name__)

SendCallable = Callable[[dict], Awaitable[None]]


@dataclass(slots=True)
class RelayConnection:
    """A live client connection and the room it currently sits in."""

    connection_id: str
    send: SendCallable
    username: str | None = None
    room_id: str | None = None


class RelayServer:
    """Track room membership and route signaling, chat and presence frames."""

    def __init__(self) -> None:
        self._connections: Dict[str, RelayConnection] = {}
        # room id -> member ids in join order
        self._rooms: Dict[str, Dict[str, None]] = {}
        self._room_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    async def connect(self, connection: RelayConnection) -> None:
        """Register a live connection so it can receive routed frames."""

        self._connections[connection.connection_id] = connection
        logger.info("Connection %s registered", connection.connection_id)

    async def disconnect(self, connection_id: str) -> None:
        """Drop a connection, announcing its departure to its room."""

        connection = self._connections.get(connection_id)
        if connection is None:
            return
        if connection.room_id is not None:
            await self.leave_room(connection_id, connection.room_id)
        self._connections.pop(connection_id, None)
        logger.info("Connection %s disconnected", connection_id)

    async def join_room(self, connection_id: str, room_id: str, username: str) -> None:
        """Add a connection to a room and tell the other members about it."""

        connection = self._connections.get(connection_id)
        if connection is None:
            logger.warning("join-room from unknown connection %s", connection_id)
            return
        if connection.room_id == room_id:
            logger.debug("Connection %s already in room %s", connection_id, room_id)
            return
        if connection.room_id is not None:
            await self.leave_room(connection_id, connection.room_id)

        async with self._room_lock(room_id):
            members = self._rooms.setdefault(room_id, {})
            members[connection_id] = None
            connection.room_id = room_id
            connection.username = username
            others = [member_id for member_id in members if member_id != connection_id]

        logger.info("%s (%s) joined room %s with %d other member(s)", connection_id, username, room_id, len(others))
        await self._send_many(others, frame(EVENT_USER_JOINED, {"id": connection_id, "username": username}))

    async def leave_room(self, connection_id: str, room_id: str) -> None:
        """Remove a connection from a room; leaving a room twice is a no-op."""

        async with self._room_lock(room_id):
            members = self._rooms.get(room_id)
            if not members or connection_id not in members:
                return
            members.pop(connection_id)
            if not members:
                self._rooms.pop(room_id, None)
            remaining = list(members)
            connection = self._connections.get(connection_id)
            if connection is not None and connection.room_id == room_id:
                connection.room_id = None

        logger.info("%s left room %s", connection_id, room_id)
        await self._send_many(remaining, frame(EVENT_USER_LEFT, connection_id))

    async def relay_signal(self, sender_id: str, to: str, data: dict[str, Any]) -> None:
        """Forward an opaque signaling payload, stamping the sender id."""

        if to not in self._connections:
            logger.debug("Dropping signal from %s: recipient %s is not connected", sender_id, to)
            return
        await self._send_many([to], frame(EVENT_SIGNAL, {"from": sender_id, "data": data}))

    async def relay_chat(self, sender_id: str, room_id: str, username: str, message: str) -> None:
        """Send a chat line to everyone in the room except its author."""

        # Snapshot reads never await, so they need no lock.
        recipients = [member_id for member_id in self._rooms.get(room_id, {}) if member_id != sender_id]
        await self._send_many(recipients, frame(EVENT_CHAT_MESSAGE, {"username": username, "message": message}))

    async def members(self, room_id: str) -> list[str]:
        """Return the member ids of a room in join order."""

        return list(self._rooms.get(room_id, {}))

    def room_of(self, connection_id: str) -> str | None:
        connection = self._connections.get(connection_id)
        return connection.room_id if connection else None

    async def handle_frame(self, connection_id: str, message: object) -> None:
        """Validate one inbound client frame and dispatch it.

        Malformed frames and unknown events are logged and dropped; they never
        close the connection.
        """

        try:
            parsed = Frame.model_validate(message)
        except ValidationError as exc:
            logger.warning("Malformed frame from %s: %s", connection_id, exc.errors()[0]["msg"])
            return

        if parsed.event == EVENT_JOIN_ROOM:
            join = self._payload(JoinRoomPayload, parsed, connection_id)
            if join is not None:
                await self.join_room(connection_id, join.room_id, join.username)
        elif parsed.event == EVENT_SIGNAL:
            signal = self._payload(SignalPayload, parsed, connection_id)
            if signal is not None:
                await self.relay_signal(connection_id, signal.to, signal.data)
        elif parsed.event == EVENT_CHAT_MESSAGE:
            chat = self._payload(ChatPayload, parsed, connection_id)
            if chat is not None:
                await self.relay_chat(connection_id, chat.room_id, chat.username, chat.message)
        elif parsed.event == EVENT_LEAVE_ROOM:
            leave = self._payload(LeaveRoomPayload, parsed, connection_id)
            if leave is not None:
                await self.leave_room(connection_id, leave.room_id)
        else:
            logger.info("Ignoring unknown event %r from %s", parsed.event, connection_id)

    @staticmethod
    def _payload(model: type[BaseModel], parsed: Frame, connection_id: str) -> Any:
        try:
            return model.model_validate(parsed.data)
        except ValidationError as exc:
            logger.warning("Invalid %s payload from %s: %s", parsed.event, connection_id, exc.errors()[0]["msg"])
            return None

    @asynccontextmanager
    async def _room_lock(self, room_id: str) -> AsyncIterator[None]:
        """Serialise membership changes for one room.

        A room's lock is dropped once the room is gone and no task holds or
        waits for it.
        """

        lock = self._room_locks.setdefault(room_id, asyncio.Lock())
        self._lock_users[room_id] = self._lock_users.get(room_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[room_id] - 1
            if remaining:
                self._lock_users[room_id] = remaining
            else:
                self._lock_users.pop(room_id, None)
                if room_id not in self._rooms:
                    self._room_locks.pop(room_id, None)

    async def _send_many(self, connection_ids: Iterable[str], message: dict) -> None:
        targets = [self._connections[conn_id] for conn_id in connection_ids if conn_id in self._connections]
        if not targets:
            return

        results = await asyncio.gather(*(target.send(message) for target in targets), return_exceptions=True)
        for target, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning("Delivery of %s to %s failed: %s", message.get("event"), target.connection_id, result)


relay = RelayServer()
