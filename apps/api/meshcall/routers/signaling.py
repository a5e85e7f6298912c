"""WebSocket signaling endpoint and room lookup."""
from __future__ import annotations

import logging
from uuid import uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..schemas.signaling import EVENT_CONNECTED, RoomMembersResponse, frame
from ..services.relay import RelayConnection, relay

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def signaling_endpoint(websocket: WebSocket) -> None:
    """Relay join/leave, chat and SDP/ICE frames for one client connection."""

    # Ids are assigned here and never taken from the client.
    connection_id = uuid4().hex
    await websocket.accept()

    await relay.connect(RelayConnection(connection_id=connection_id, send=websocket.send_json))
    await websocket.send_json(frame(EVENT_CONNECTED, {"id": connection_id}))

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                logger.warning("Discarding non-JSON message from %s", connection_id)
                continue
            await relay.handle_frame(connection_id, message)
    except WebSocketDisconnect:
        pass
    finally:
        await relay.disconnect(connection_id)


@router.get("/api/rooms/{room_id}", response_model=RoomMembersResponse, tags=["rooms"])
async def room_members(room_id: str) -> RoomMembersResponse:
    """Return the participants currently connected to a room."""

    members = await relay.members(room_id)
    return RoomMembersResponse(room_id=room_id, members=members, count=len(members))
