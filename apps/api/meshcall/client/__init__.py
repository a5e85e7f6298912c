"""Mesh client: peer sessions, session manager and local media."""
from .events import ChatReceived, Connected, RelayEvent, SignalReceived, UserJoined, UserLeft, parse_event
from .manager import ChatEntry, ManagerState, NotificationKind, SessionManager
from .media import DeviceInfo, LocalTracks, MediaAcquisitionError, MediaSource
from .peer import NegotiationState, PeerConnection, PeerSession, Role

__all__ = [
    "ChatEntry",
    "ChatReceived",
    "Connected",
    "DeviceInfo",
    "LocalTracks",
    "ManagerState",
    "MediaAcquisitionError",
    "MediaSource",
    "NegotiationState",
    "NotificationKind",
    "PeerConnection",
    "PeerSession",
    "RelayEvent",
    "Role",
    "SessionManager",
    "SignalReceived",
    "UserJoined",
    "UserLeft",
    "parse_event",
]
