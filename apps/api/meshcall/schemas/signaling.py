"""Wire contracts for the signaling relay.

Every WebSocket message is a JSON object ``{"event": <name>, "data": <payload>}``.
Client payloads use the camelCase keys browsers send (``roomId``); the models
accept either spelling.
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

EVENT_CONNECTED = "connected"
EVENT_JOIN_ROOM = "join-room"
EVENT_USER_JOINED = "user-joined"
EVENT_SIGNAL = "signal"
EVENT_CHAT_MESSAGE = "chat-message"
EVENT_LEAVE_ROOM = "leave-room"
EVENT_USER_LEFT = "user-left"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Frame(_WireModel):
    event: str = Field(..., min_length=1)
    data: Any = None


class JoinRoomPayload(_WireModel):
    room_id: str = Field(..., alias="roomId", min_length=1)
    username: str = Field(default="Anonymous")


class LeaveRoomPayload(_WireModel):
    room_id: str = Field(..., alias="roomId", min_length=1)
    username: str | None = None


class SignalPayload(_WireModel):
    to: str = Field(..., min_length=1, description="Recipient connection id")
    data: dict[str, Any] = Field(..., description="Opaque SDP or ICE payload")


class ChatPayload(_WireModel):
    room_id: str = Field(..., alias="roomId", min_length=1)
    username: str = Field(default="Anonymous")
    message: str


class RoomMembersResponse(BaseModel):
    room_id: str
    members: list[str]
    count: int = Field(..., ge=0)


def frame(event: str, data: Any) -> dict[str, Any]:
    """Build an outbound wire frame."""

    return {"event": event, "data": data}
