"""Per-peer negotiation state machine.

A :class:`PeerSession` drives one offer/answer exchange with one remote
participant. Roles are fixed at creation: the participant that was in the room
first is the initiator and sends the only offer, so both sides can never offer
at the same time.

Remote ICE candidates that arrive before the remote description are queued
and applied, in arrival order, as soon as the description is set.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Iterable, Protocol

logger = logging.getLogger(__name__)

Description = dict[str, Any]
Candidate = dict[str, Any]
SignalSender = Callable[[str, dict], Awaitable[None]]
TrackHandler = Callable[[str, Any], None]


class Role(str, enum.Enum):
    INITIATOR = "initiator"
    RESPONDER = "responder"


class NegotiationState(str, enum.Enum):
    NEW = "new"
    HAVE_LOCAL_OFFER = "have-local-offer"
    HAVE_REMOTE_OFFER = "have-remote-offer"
    STABLE = "stable"
    CLOSED = "closed"


class PeerConnection(Protocol):
    """Transport operations a peer session needs (an RTCPeerConnection subset)."""

    def add_track(self, track: Any) -> None: ...

    def replace_track(self, kind: str, track: Any) -> None: ...

    def on_track(self, handler: Callable[[Any], None]) -> None: ...

    def on_ice_candidate(self, handler: Callable[[Candidate], Awaitable[None]]) -> None: ...

    async def create_offer(self) -> Description: ...

    async def create_answer(self) -> Description: ...

    async def set_local_description(self, description: Description) -> Description: ...

    async def set_remote_description(self, description: Description) -> None: ...

    async def add_ice_candidate(self, candidate: Candidate) -> None: ...

    async def close(self) -> None: ...


class PeerSession:
    """One negotiated connection between the local and one remote participant."""

    def __init__(
        self,
        local_id: str,
        remote_id: str,
        role: Role,
        connection: PeerConnection,
        signal: SignalSender,
        local_tracks: Iterable[Any] = (),
        on_remote_track: TrackHandler | None = None,
    ) -> None:
        self.local_id = local_id
        self.remote_id = remote_id
        self.role = role
        self.state = NegotiationState.NEW
        self.pending_candidates: Deque[Candidate] = deque()
        self.local_description: Description | None = None
        self.remote_description: Description | None = None

        self._connection = connection
        self._signal = signal
        self._lock = asyncio.Lock()

        for track in local_tracks:
            connection.add_track(track)
        connection.on_ice_candidate(self._on_local_candidate)
        if on_remote_track is not None:
            connection.on_track(lambda track: on_remote_track(remote_id, track))

    @property
    def closed(self) -> bool:
        return self.state is NegotiationState.CLOSED

    async def start(self) -> None:
        """Send the offer if this side is the initiator and nothing was sent yet."""

        async with self._lock:
            if self.role is not Role.INITIATOR or self.state is not NegotiationState.NEW:
                return
            offer = await self._connection.create_offer()
            description = await self._connection.set_local_description(offer)
            if self.closed:
                return
            self.local_description = description
            self.state = NegotiationState.HAVE_LOCAL_OFFER
            logger.debug("Offer ready for %s", self.remote_id)
            await self._send({"sdp": description})

    async def handle_signal(self, data: dict[str, Any]) -> None:
        """Apply one inbound signaling payload (description and/or candidate)."""

        async with self._lock:
            if self.closed:
                logger.debug("Ignoring signal for closed session with %s", self.remote_id)
                return
            if "sdp" not in data and "candidate" not in data:
                logger.warning("Signal from %s carries neither sdp nor candidate: %s", self.remote_id, sorted(data))
                return
            if "sdp" in data:
                await self._handle_description(data["sdp"])
            if "candidate" in data and not self.closed:
                await self._add_remote_candidate(data["candidate"])

    def replace_tracks(self, tracks: Iterable[Any]) -> None:
        """Swap outgoing tracks in place; no renegotiation takes place."""

        if self.closed:
            return
        for track in tracks:
            self._connection.replace_track(track.kind, track)

    async def close(self) -> None:
        """Release the transport. Safe to call repeatedly."""

        if self.closed:
            return
        self.state = NegotiationState.CLOSED
        self.pending_candidates.clear()
        await self._connection.close()
        logger.debug("Session with %s closed", self.remote_id)

    async def _handle_description(self, description: object) -> None:
        kind = description.get("type") if isinstance(description, dict) else None

        if kind == "offer":
            if self.role is Role.INITIATOR:
                logger.warning("Protocol anomaly: initiator session with %s received an offer; ignored", self.remote_id)
                return
            if self.state is not NegotiationState.NEW:
                logger.warning(
                    "Renegotiation is not supported: offer from %s in state %s ignored",
                    self.remote_id,
                    self.state.value,
                )
                return
            await self._set_remote_description(description, NegotiationState.HAVE_REMOTE_OFFER)
            if self.closed:
                return
            answer = await self._connection.create_answer()
            local = await self._connection.set_local_description(answer)
            if self.closed:
                return
            self.local_description = local
            self.state = NegotiationState.STABLE
            await self._send({"sdp": local})
        elif kind == "answer":
            if self.role is not Role.INITIATOR or self.state is not NegotiationState.HAVE_LOCAL_OFFER:
                logger.warning(
                    "Protocol anomaly: unexpected answer from %s in state %s; ignored",
                    self.remote_id,
                    self.state.value,
                )
                return
            await self._set_remote_description(description, NegotiationState.STABLE)
        else:
            logger.warning("Protocol anomaly: description of type %r from %s ignored", kind, self.remote_id)

    async def _set_remote_description(self, description: Description, next_state: NegotiationState) -> None:
        await self._connection.set_remote_description(description)
        if self.closed:
            return
        self.remote_description = description
        self.state = next_state
        await self._flush_candidates()

    async def _add_remote_candidate(self, candidate: Candidate) -> None:
        if self.remote_description is None:
            self.pending_candidates.append(candidate)
            logger.debug("Queued candidate from %s (%d pending)", self.remote_id, len(self.pending_candidates))
            return
        await self._apply_candidate(candidate)

    async def _flush_candidates(self) -> None:
        while self.pending_candidates and not self.closed:
            await self._apply_candidate(self.pending_candidates.popleft())

    async def _apply_candidate(self, candidate: Candidate) -> None:
        try:
            await self._connection.add_ice_candidate(candidate)
        except Exception as exc:
            logger.warning("Skipping ICE candidate from %s: %s", self.remote_id, exc)

    async def _on_local_candidate(self, candidate: Candidate) -> None:
        if self.closed:
            return
        await self._send({"candidate": candidate})

    async def _send(self, data: dict) -> None:
        await self._signal(self.remote_id, data)
