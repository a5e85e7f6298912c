"""WebSocket link between a session manager and the relay."""
from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import websockets
from websockets.asyncio.client import ClientConnection

from ..core.config import settings
from ..schemas.signaling import frame
from .events import Connected, RelayEvent, parse_event

logger = logging.getLogger(__name__)


class RelayLink:
    """Send client frames and yield parsed relay events."""

    def __init__(self, ws: ClientConnection) -> None:
        self._ws = ws
        self.local_id = ""

    async def handshake(self) -> str:
        """Read the ``connected`` frame that carries our connection id."""

        raw = await self._ws.recv()
        event = parse_event(_decode(raw))
        if not isinstance(event, Connected):
            raise RuntimeError("Relay did not announce a connection id")
        self.local_id = event.id
        return event.id

    async def emit(self, event: str, data: Any) -> None:
        await self._ws.send(json.dumps(frame(event, data)))

    async def events(self) -> AsyncIterator[RelayEvent]:
        async for message in self._ws:
            if isinstance(message, bytes):
                continue
            event = parse_event(_decode(message))
            if event is None:
                continue
            if isinstance(event, Connected):
                self.local_id = event.id
                continue
            yield event

    async def close(self) -> None:
        await self._ws.close()


def _decode(message: str | bytes) -> object:
    try:
        return json.loads(message)
    except ValueError:
        logger.warning("Relay sent a non-JSON message")
        return None


@asynccontextmanager
async def connect_relay(url: str | None = None) -> AsyncIterator[RelayLink]:
    """Open a relay connection and complete the id handshake."""

    target = url or settings.relay_url
    async with websockets.connect(target) as ws:
        link = RelayLink(ws)
        await link.handshake()
        logger.info("Connected to relay %s as %s", target, link.local_id)
        yield link
