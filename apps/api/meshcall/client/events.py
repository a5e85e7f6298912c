"""Typed relay events consumed by the session manager."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Union

from ..schemas.signaling import (
    EVENT_CHAT_MESSAGE,
    EVENT_CONNECTED,
    EVENT_SIGNAL,
    EVENT_USER_JOINED,
    EVENT_USER_LEFT,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Connected:
    id: str


@dataclass(frozen=True, slots=True)
class UserJoined:
    id: str
    username: str


@dataclass(frozen=True, slots=True)
class UserLeft:
    id: str


@dataclass(frozen=True, slots=True)
class SignalReceived:
    sender: str
    data: dict[str, Any]


@dataclass(frozen=True, slots=True)
class ChatReceived:
    username: str
    message: str


RelayEvent = Union[Connected, UserJoined, UserLeft, SignalReceived, ChatReceived]


def parse_event(message: object) -> RelayEvent | None:
    """Turn an inbound wire frame into an event, or ``None`` if unusable."""

    if not isinstance(message, dict):
        logger.warning("Ignoring non-object frame: %r", message)
        return None

    event = message.get("event")
    data = message.get("data")

    if event == EVENT_USER_LEFT and isinstance(data, str):
        return UserLeft(id=data)
    if not isinstance(data, dict):
        logger.warning("Ignoring %r frame without an object payload", event)
        return None

    if event == EVENT_CONNECTED and isinstance(data.get("id"), str):
        return Connected(id=data["id"])
    elif event == EVENT_USER_JOINED and isinstance(data.get("id"), str):
        return UserJoined(id=data["id"], username=str(data.get("username") or "Anonymous"))
    elif event == EVENT_SIGNAL and isinstance(data.get("from"), str) and isinstance(data.get("data"), dict):
        return SignalReceived(sender=data["from"], data=data["data"])
    elif event == EVENT_CHAT_MESSAGE and isinstance(data.get("message"), str):
        return ChatReceived(username=str(data.get("username") or "Anonymous"), message=data["message"])

    logger.warning("Ignoring unrecognised frame %r", event)
    return None
