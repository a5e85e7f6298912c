"""Local capture pipeline with camera hot-swap."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, Protocol

logger = logging.getLogger(__name__)


class MediaAcquisitionError(RuntimeError):
    """Raised when no camera exists or capture fails."""


class LocalTrack(Protocol):
    kind: str
    enabled: bool

    def stop(self) -> None: ...


@dataclass(frozen=True, slots=True)
class DeviceInfo:
    device_id: str
    label: str = ""


@dataclass(frozen=True, slots=True)
class LocalTracks:
    audio: LocalTrack
    video: LocalTrack

    def __iter__(self) -> Iterator[LocalTrack]:
        yield self.audio
        yield self.video


class MediaCapture(Protocol):
    """Device layer the media source delegates to."""

    async def capture(self, device_id: str | None) -> LocalTracks: ...

    async def enumerate_cameras(self) -> list[DeviceInfo]: ...


class MediaSource:
    """Hold exactly one live capture and cycle through the available cameras."""

    def __init__(self, capture: MediaCapture) -> None:
        self._capture = capture
        self._tracks: LocalTracks | None = None
        self._devices: list[DeviceInfo] = []
        self._device_index = 0
        self._audio_enabled = True
        self._video_enabled = True

    @property
    def devices(self) -> list[DeviceInfo]:
        return list(self._devices)

    @property
    def current_device(self) -> DeviceInfo | None:
        if not self._devices:
            return None
        return self._devices[self._device_index]

    @property
    def audio_enabled(self) -> bool:
        return self._audio_enabled

    @property
    def video_enabled(self) -> bool:
        return self._video_enabled

    async def enumerate_video_inputs(self) -> list[DeviceInfo]:
        self._devices = list(await self._capture.enumerate_cameras())
        if self._device_index >= len(self._devices):
            self._device_index = 0
        return list(self._devices)

    async def acquire(self, device_id: str | None = None) -> LocalTracks:
        """Stop the current capture and start a new one on ``device_id``."""

        self.release()
        try:
            tracks = await self._capture.capture(device_id)
        except MediaAcquisitionError:
            raise
        except Exception as exc:
            raise MediaAcquisitionError(f"Could not capture from device {device_id!r}: {exc}") from exc

        # Mute and camera-off survive a device switch.
        tracks.audio.enabled = self._audio_enabled
        tracks.video.enabled = self._video_enabled
        self._tracks = tracks
        logger.info("Capturing from device %s", device_id or "default")
        return tracks

    async def start(self) -> LocalTracks:
        """Enumerate cameras and capture from the first one."""

        devices = await self.enumerate_video_inputs()
        if not devices:
            raise MediaAcquisitionError("No camera available")
        self._device_index = 0
        return await self.acquire(devices[0].device_id)

    async def switch_camera(self) -> LocalTracks | None:
        """Move to the next camera, wrapping around. ``None`` if there is nothing to switch to."""

        if len(self._devices) < 2:
            return None
        next_index = (self._device_index + 1) % len(self._devices)
        tracks = await self.acquire(self._devices[next_index].device_id)
        self._device_index = next_index
        return tracks

    def current_tracks(self) -> LocalTracks | None:
        return self._tracks

    def set_audio_enabled(self, enabled: bool) -> None:
        self._audio_enabled = enabled
        if self._tracks is not None:
            self._tracks.audio.enabled = enabled

    def set_video_enabled(self, enabled: bool) -> None:
        self._video_enabled = enabled
        if self._tracks is not None:
            self._tracks.video.enabled = enabled

    def release(self) -> None:
        """Stop every live track. Safe to call when nothing is held."""

        if self._tracks is None:
            return
        for track in self._tracks:
            track.stop()
        self._tracks = None
