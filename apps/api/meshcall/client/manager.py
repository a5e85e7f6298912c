"""Client-side mesh orchestration.

The :class:`SessionManager` keeps one :class:`~meshcall.client.peer.PeerSession`
per remote participant in sync with room membership. Relay events and local
actions (chat, camera switch, mute, leave) are applied one at a time under a
single lock, so events that arrive while a capture or negotiation step is in
flight wait their turn instead of being dropped.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Protocol

from ..schemas.signaling import EVENT_CHAT_MESSAGE, EVENT_JOIN_ROOM, EVENT_LEAVE_ROOM, EVENT_SIGNAL
from .events import ChatReceived, Connected, RelayEvent, SignalReceived, UserJoined, UserLeft
from .media import MediaSource
from .peer import NegotiationState, PeerConnection, PeerSession, Role

logger = logging.getLogger(__name__)


class ManagerState(str, enum.Enum):
    IDLE = "idle"
    JOINED = "joined"
    LEFT = "left"


class NotificationKind(str, enum.Enum):
    JOIN = "join"
    DISCONNECT = "disconnect"


class SignalingLink(Protocol):
    local_id: str

    async def emit(self, event: str, data: Any) -> None: ...

    def events(self) -> AsyncIterator[RelayEvent]: ...


class Renderer(Protocol):
    def render_remote_track(self, peer_id: str, track: Any) -> None: ...

    def remove_peer(self, peer_id: str) -> None: ...


ConnectionFactory = Callable[[str], PeerConnection]
Notifier = Callable[[NotificationKind], None]


@dataclass(frozen=True, slots=True)
class ChatEntry:
    username: str
    message: str
    local: bool = False


class SessionManager:
    """Own every peer session, the local media and the chat log for one room visit."""

    def __init__(
        self,
        link: SignalingLink,
        media: MediaSource,
        connection_factory: ConnectionFactory,
        renderer: Renderer | None = None,
        notify: Notifier | None = None,
    ) -> None:
        self.sessions: dict[str, PeerSession] = {}
        self.chat: list[ChatEntry] = []
        self.state = ManagerState.IDLE
        self.room_id: str | None = None
        self.username: str | None = None

        self._link = link
        self._media = media
        self._connection_factory = connection_factory
        self._renderer = renderer
        self._notify = notify
        self._lock = asyncio.Lock()

    @property
    def local_id(self) -> str:
        return self._link.local_id

    async def join(self, room_id: str, username: str = "Anonymous") -> None:
        """Start local capture, then announce ourselves to the room.

        Raises :class:`~meshcall.client.media.MediaAcquisitionError` when no
        camera can be captured; nothing is sent to the relay in that case.
        """

        async with self._lock:
            if self.state is not ManagerState.IDLE:
                raise RuntimeError(f"Cannot join from state {self.state.value}")
            await self._media.start()
            self.room_id = room_id
            self.username = username
            self.state = ManagerState.JOINED
            await self._link.emit(EVENT_JOIN_ROOM, {"roomId": room_id, "username": username})
        logger.info("Joined room %s as %s (%s)", room_id, username, self.local_id)

    async def run(self) -> None:
        """Consume relay events until the link closes or we leave."""

        async for event in self._link.events():
            await self.dispatch(event)
            if self.state is ManagerState.LEFT:
                break

    async def dispatch(self, event: RelayEvent) -> None:
        async with self._lock:
            if self.state is not ManagerState.JOINED:
                logger.debug("Ignoring %s while %s", type(event).__name__, self.state.value)
                return
            try:
                await self._handle(event)
            except Exception:
                logger.exception("Failed to handle %s", type(event).__name__)

    async def send_chat(self, text: str) -> ChatEntry | None:
        """Send a chat line to the room and echo it locally."""

        if not text.strip():
            return None
        async with self._lock:
            if self.state is not ManagerState.JOINED:
                logger.warning("Chat message dropped: not in a room")
                return None
            await self._link.emit(
                EVENT_CHAT_MESSAGE,
                {"roomId": self.room_id, "username": self.username, "message": text},
            )
            entry = ChatEntry(username=self.username or "Anonymous", message=text, local=True)
            self.chat.append(entry)
            return entry

    async def switch_camera(self) -> bool:
        """Capture from the next camera and hand its tracks to every stable session."""

        async with self._lock:
            if self.state is not ManagerState.JOINED:
                return False
            tracks = await self._media.switch_camera()
            if tracks is None:
                return False
            for session in self.sessions.values():
                if session.state is NegotiationState.STABLE:
                    session.replace_tracks(tracks)
            return True

    def toggle_mute(self) -> bool:
        """Flip the microphone; returns ``True`` when now muted."""

        self._media.set_audio_enabled(not self._media.audio_enabled)
        return not self._media.audio_enabled

    def toggle_camera(self) -> bool:
        """Flip the camera; returns ``True`` when the camera is now off."""

        self._media.set_video_enabled(not self._media.video_enabled)
        return not self._media.video_enabled

    async def leave(self) -> None:
        """Tear down every session, release media and tell the relay. Idempotent.

        A transport that fails to close is logged; the remaining sessions are
        still closed and the room is still left.
        """

        async with self._lock:
            if self.state is ManagerState.LEFT:
                return
            was_joined = self.state is ManagerState.JOINED

            sessions = list(self.sessions.values())
            self.sessions.clear()
            try:
                for session in sessions:
                    try:
                        await session.close()
                    except Exception:
                        logger.exception("Failed to close session with %s", session.remote_id)
                    if self._renderer is not None:
                        self._renderer.remove_peer(session.remote_id)
            finally:
                try:
                    self._media.release()
                finally:
                    self.state = ManagerState.LEFT
                    if was_joined:
                        await self._link.emit(EVENT_LEAVE_ROOM, {"roomId": self.room_id, "username": self.username})
        logger.info("Left room %s", self.room_id)

    async def _handle(self, event: RelayEvent) -> None:
        if isinstance(event, UserJoined):
            if event.id == self.local_id or event.id in self.sessions:
                return
            session = self._create_session(event.id, Role.INITIATOR)
            self._play(NotificationKind.JOIN)
            await session.start()
        elif isinstance(event, SignalReceived):
            session = self.sessions.get(event.sender)
            if session is None:
                session = self._create_session(event.sender, Role.RESPONDER)
            await session.handle_signal(event.data)
        elif isinstance(event, UserLeft):
            session = self.sessions.pop(event.id, None)
            if session is None:
                return
            await session.close()
            if self._renderer is not None:
                self._renderer.remove_peer(event.id)
            self._play(NotificationKind.DISCONNECT)
            logger.info("Peer %s left", event.id)
        elif isinstance(event, ChatReceived):
            self.chat.append(ChatEntry(username=event.username, message=event.message))
        elif isinstance(event, Connected):
            logger.debug("Connection id %s announced", event.id)

    def _create_session(self, remote_id: str, role: Role) -> PeerSession:
        tracks = self._media.current_tracks()
        session = PeerSession(
            local_id=self.local_id,
            remote_id=remote_id,
            role=role,
            connection=self._connection_factory(remote_id),
            signal=self._send_signal,
            local_tracks=tracks if tracks is not None else (),
            on_remote_track=self._on_remote_track,
        )
        self.sessions[remote_id] = session
        logger.info("Created %s session with %s", role.value, remote_id)
        return session

    async def _send_signal(self, to: str, data: dict) -> None:
        if self.state is ManagerState.LEFT:
            return
        await self._link.emit(EVENT_SIGNAL, {"to": to, "data": data})

    def _on_remote_track(self, peer_id: str, track: Any) -> None:
        if self._renderer is not None and peer_id in self.sessions:
            self._renderer.render_remote_track(peer_id, track)

    def _play(self, kind: NotificationKind) -> None:
        if self._notify is not None:
            self._notify(kind)
