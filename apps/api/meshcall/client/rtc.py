"""aiortc-backed peer connections and local capture.

``AiortcConnection`` adapts :class:`aiortc.RTCPeerConnection` to the
``PeerConnection`` protocol used by peer sessions, translating between aiortc
objects and the browser-style JSON dictionaries carried over the relay.
``PlayerCapture`` captures camera and microphone through ffmpeg devices.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCRtpSender,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaPlayer
from aiortc.sdp import candidate_from_sdp

from ..core.config import Settings, settings
from .media import DeviceInfo, LocalTracks, MediaAcquisitionError

logger = logging.getLogger(__name__)


def build_configuration(config: Settings | None = None) -> RTCConfiguration:
    """Build the ICE server list (STUN + optional TURN) from settings."""

    config = config or settings
    ice_servers = [RTCIceServer(urls=[url]) for url in config.stun_urls]
    if config.turn_url:
        ice_servers.append(
            RTCIceServer(
                urls=[config.turn_url],
                username=config.turn_username or None,
                credential=config.turn_credential or None,
            )
        )
    return RTCConfiguration(iceServers=ice_servers)


def parse_candidate(candidate: dict[str, Any]):
    """Convert a browser ``RTCIceCandidate`` JSON object into an aiortc candidate."""

    line = candidate.get("candidate") or ""
    if line.startswith("candidate:"):
        line = line[len("candidate:"):]
    if not line:
        raise ValueError("empty candidate line")
    ice_candidate = candidate_from_sdp(line)
    ice_candidate.sdpMid = candidate.get("sdpMid")
    ice_candidate.sdpMLineIndex = candidate.get("sdpMLineIndex")
    return ice_candidate


class AiortcConnection:
    """Peer connection transport built on aiortc."""

    def __init__(self, configuration: RTCConfiguration | None = None) -> None:
        self._pc = RTCPeerConnection(configuration=configuration or build_configuration())
        self._senders: dict[str, RTCRtpSender] = {}

    def add_track(self, track: MediaStreamTrack) -> None:
        self._senders[track.kind] = self._pc.addTrack(track)

    def replace_track(self, kind: str, track: MediaStreamTrack) -> None:
        sender = self._senders.get(kind)
        if sender is None:
            logger.warning("No %s sender to replace", kind)
            return
        sender.replaceTrack(track)

    def on_track(self, handler: Callable[[MediaStreamTrack], None]) -> None:
        self._pc.on("track", handler)

    def on_ice_candidate(self, handler: Callable[[dict], Awaitable[None]]) -> None:
        """No-op: aiortc embeds every gathered candidate in the local SDP, nothing trickles."""

    async def create_offer(self) -> dict[str, str]:
        offer = await self._pc.createOffer()
        return {"type": offer.type, "sdp": offer.sdp}

    async def create_answer(self) -> dict[str, str]:
        answer = await self._pc.createAnswer()
        return {"type": answer.type, "sdp": answer.sdp}

    async def set_local_description(self, description: dict[str, str]) -> dict[str, str]:
        await self._pc.setLocalDescription(RTCSessionDescription(sdp=description["sdp"], type=description["type"]))
        local = self._pc.localDescription
        return {"type": local.type, "sdp": local.sdp}

    async def set_remote_description(self, description: dict[str, str]) -> None:
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=description["sdp"], type=description["type"]))

    async def add_ice_candidate(self, candidate: dict[str, Any]) -> None:
        await self._pc.addIceCandidate(parse_candidate(candidate))

    async def close(self) -> None:
        await self._pc.close()


def connection_factory(config: Settings | None = None) -> Callable[[str], AiortcConnection]:
    """Return a factory that opens one aiortc connection per remote peer."""

    configuration = build_configuration(config)

    def _factory(remote_id: str) -> AiortcConnection:
        logger.debug("Opening aiortc connection for %s", remote_id)
        return AiortcConnection(configuration)

    return _factory


class SwitchableTrack(MediaStreamTrack):
    """Forward frames from a source track, blanking them while disabled."""

    def __init__(self, source: MediaStreamTrack) -> None:
        super().__init__()
        self.kind = source.kind
        self.enabled = True
        self._source = source

    async def recv(self):
        frame = await self._source.recv()
        if self.enabled:
            return frame
        if self.kind == "audio":
            for plane in frame.planes:
                plane.update(bytes(plane.buffer_size))
            return frame
        blank = frame.reformat(format="yuv420p")
        luma, *chroma = blank.planes
        luma.update(bytes(luma.buffer_size))
        for plane in chroma:
            plane.update(b"\x80" * plane.buffer_size)
        return blank

    def stop(self) -> None:
        self._source.stop()
        super().stop()


def _stop_player(player: MediaPlayer) -> None:
    for track in (player.audio, player.video):
        if track is not None:
            track.stop()


class PlayerCapture:
    """Capture camera and microphone through ffmpeg input devices.

    Players are opened one after the other; when a later step fails, every
    player already opened is stopped before the error is raised.
    """

    def __init__(self, config: Settings | None = None) -> None:
        self._config = config or settings

    async def enumerate_cameras(self) -> list[DeviceInfo]:
        return [DeviceInfo(device_id=device, label=device) for device in self._config.camera_devices]

    async def capture(self, device_id: str | None) -> LocalTracks:
        device = device_id or (self._config.camera_devices[0] if self._config.camera_devices else None)
        if device is None:
            raise MediaAcquisitionError("No camera configured")

        opened: list[MediaPlayer] = []
        try:
            video_player = await self._open(device, self._config.camera_format)
            opened.append(video_player)
            if video_player.video is None:
                raise MediaAcquisitionError(f"Device {device!r} produced no video track")
            audio_player = await self._open(self._config.microphone_device, self._config.microphone_format)
            opened.append(audio_player)
            if audio_player.audio is None:
                raise MediaAcquisitionError(f"Device {self._config.microphone_device!r} produced no audio track")
        except BaseException:
            for player in opened:
                _stop_player(player)
            raise

        return LocalTracks(audio=SwitchableTrack(audio_player.audio), video=SwitchableTrack(video_player.video))

    @staticmethod
    async def _open(device: str, device_format: str) -> MediaPlayer:
        try:
            return await asyncio.to_thread(MediaPlayer, device, format=device_format)
        except Exception as exc:
            raise MediaAcquisitionError(f"Could not open {device!r}: {exc}") from exc
