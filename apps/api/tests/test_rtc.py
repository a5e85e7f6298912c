"""Tests for the aiortc adapters that do not need real devices."""
from __future__ import annotations

from fractions import Fraction

import av
import pytest

from meshcall.client import rtc
from meshcall.client.media import MediaAcquisitionError
from meshcall.core.config import Settings


def test_build_configuration_includes_stun_and_turn():
    config = Settings(
        stun_urls="stun:a.example:3478, stun:b.example:3478",
        turn_url="turn:t.example:80",
        turn_username="user",
        turn_credential="secret",
    )

    configuration = rtc.build_configuration(config)

    urls = [server.urls for server in configuration.iceServers]
    assert urls == [["stun:a.example:3478"], ["stun:b.example:3478"], ["turn:t.example:80"]]
    assert configuration.iceServers[-1].username == "user"
    assert configuration.iceServers[-1].credential == "secret"


def test_build_configuration_without_turn():
    configuration = rtc.build_configuration(Settings(turn_url=""))

    assert all(not server.urls[0].startswith("turn:") for server in configuration.iceServers)


def test_parse_candidate_accepts_browser_json():
    candidate = rtc.parse_candidate(
        {
            "candidate": "candidate:842163049 1 udp 1677729535 203.0.113.7 46154 typ srflx raddr 10.0.0.2 rport 46154",
            "sdpMid": "0",
            "sdpMLineIndex": 0,
        }
    )

    assert candidate.ip == "203.0.113.7"
    assert candidate.port == 46154
    assert candidate.type == "srflx"
    assert candidate.sdpMid == "0"
    assert candidate.sdpMLineIndex == 0


def test_parse_candidate_rejects_empty_line():
    with pytest.raises(ValueError):
        rtc.parse_candidate({"candidate": "", "sdpMid": "0", "sdpMLineIndex": 0})


@pytest.mark.asyncio
async def test_connection_adapter_produces_offer_dict():
    connection = rtc.AiortcConnection(rtc.RTCConfiguration(iceServers=[]))
    try:
        connection._pc.addTransceiver("audio")
        offer = await connection.create_offer()
        local = await connection.set_local_description(offer)
    finally:
        await connection.close()

    assert offer["type"] == "offer"
    assert local["type"] == "offer"
    assert local["sdp"].startswith("v=0")


@pytest.mark.asyncio
async def test_player_capture_lists_configured_cameras_and_wraps_failures(monkeypatch):
    capture = rtc.PlayerCapture(Settings(camera_devices="/dev/video0,/dev/video2"))

    cameras = await capture.enumerate_cameras()
    assert [camera.device_id for camera in cameras] == ["/dev/video0", "/dev/video2"]

    def broken_player(*_args, **_kwargs):
        raise OSError("no such device")

    monkeypatch.setattr(rtc, "MediaPlayer", broken_player)
    with pytest.raises(MediaAcquisitionError):
        await capture.capture("/dev/video0")


class DummyPlayerTrack:
    def __init__(self, kind: str) -> None:
        self.kind = kind
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class DummyPlayer:
    def __init__(self, device: str, format: str, audio: bool = True, video: bool = True) -> None:
        self.device = device
        self.format = format
        self.audio = DummyPlayerTrack("audio") if audio else None
        self.video = DummyPlayerTrack("video") if video else None


def _player_factory(opened: list[DummyPlayer], failing: str | None = None, **tracks_by_device):
    def factory(device: str, format: str) -> DummyPlayer:
        if device == failing:
            raise OSError(f"cannot open {device}")
        player = DummyPlayer(device, format, **tracks_by_device.get(device, {}))
        opened.append(player)
        return player

    return factory


@pytest.mark.asyncio
async def test_player_capture_wraps_camera_and_microphone(monkeypatch):
    opened: list[DummyPlayer] = []
    monkeypatch.setattr(rtc, "MediaPlayer", _player_factory(opened, mic={"video": False}))
    capture = rtc.PlayerCapture(Settings(camera_devices="cam0", camera_format="v4l2", microphone_device="mic"))

    tracks = await capture.capture(None)

    camera, microphone = opened
    assert (camera.device, camera.format) == ("cam0", "v4l2")
    assert microphone.device == "mic"
    assert isinstance(tracks.video, rtc.SwitchableTrack)
    assert tracks.video._source is camera.video
    assert tracks.audio._source is microphone.audio
    assert not camera.video.stopped and not microphone.audio.stopped


@pytest.mark.asyncio
async def test_player_capture_stops_camera_when_microphone_fails(monkeypatch):
    opened: list[DummyPlayer] = []
    monkeypatch.setattr(rtc, "MediaPlayer", _player_factory(opened, failing="mic"))
    capture = rtc.PlayerCapture(Settings(camera_devices="cam0", microphone_device="mic"))

    with pytest.raises(MediaAcquisitionError):
        await capture.capture("cam0")

    (camera,) = opened
    assert camera.video.stopped
    assert camera.audio.stopped


@pytest.mark.asyncio
async def test_player_capture_stops_players_without_usable_tracks(monkeypatch):
    opened: list[DummyPlayer] = []
    monkeypatch.setattr(
        rtc,
        "MediaPlayer",
        _player_factory(opened, cam0={"audio": False}, mic={"audio": False}),
    )
    capture = rtc.PlayerCapture(Settings(camera_devices="cam0", microphone_device="mic"))

    with pytest.raises(MediaAcquisitionError):
        await capture.capture("cam0")

    camera, microphone = opened
    assert camera.video.stopped
    assert microphone.video.stopped

    opened.clear()
    monkeypatch.setattr(rtc, "MediaPlayer", _player_factory(opened, cam0={"video": False}))

    with pytest.raises(MediaAcquisitionError):
        await capture.capture("cam0")

    (camera,) = opened
    assert camera.audio.stopped


@pytest.mark.asyncio
async def test_player_capture_without_cameras_fails():
    with pytest.raises(MediaAcquisitionError):
        await rtc.PlayerCapture(Settings(camera_devices="")).capture(None)


class FrameSource(rtc.MediaStreamTrack):
    def __init__(self, kind: str, frames: list) -> None:
        super().__init__()
        self.kind = kind
        self._frames = list(frames)

    async def recv(self):
        return self._frames.pop(0)


def _audio_frame(pts: int) -> av.AudioFrame:
    frame = av.AudioFrame(format="s16", layout="mono", samples=160)
    frame.sample_rate = 8000
    frame.pts = pts
    for plane in frame.planes:
        plane.update(b"\x07" * plane.buffer_size)
    return frame


def _video_frame(pts: int, pixel_format: str = "yuv420p") -> av.VideoFrame:
    frame = av.VideoFrame(width=64, height=48, format=pixel_format)
    for plane in frame.planes:
        plane.update(b"\x33" * plane.buffer_size)
    frame.pts = pts
    frame.time_base = Fraction(1, 90000)
    return frame


@pytest.mark.asyncio
async def test_switchable_audio_is_silenced_while_disabled():
    source = FrameSource("audio", [_audio_frame(0), _audio_frame(160)])
    track = rtc.SwitchableTrack(source)

    first = await track.recv()
    assert bytes(first.planes[0]) == b"\x07" * first.planes[0].buffer_size

    track.enabled = False
    silent = await track.recv()

    assert silent.pts == 160
    assert all(bytes(plane) == bytes(plane.buffer_size) for plane in silent.planes)


@pytest.mark.asyncio
async def test_switchable_video_is_black_while_disabled():
    frames = [_video_frame(3000), _video_frame(6000), _video_frame(9000, "rgb24")]
    originals = list(frames)
    track = rtc.SwitchableTrack(FrameSource("video", frames))

    assert track.kind == "video"
    assert await track.recv() is originals[0]

    track.enabled = False
    for expected_pts in (6000, 9000):
        blank = await track.recv()
        luma, *chroma = blank.planes

        assert blank.format.name == "yuv420p"
        assert (blank.width, blank.height) == (64, 48)
        assert blank.pts == expected_pts
        assert blank.time_base == Fraction(1, 90000)
        assert bytes(luma) == bytes(luma.buffer_size)
        assert all(bytes(plane) == b"\x80" * plane.buffer_size for plane in chroma)


def test_switchable_track_stop_stops_source():
    source = FrameSource("video", [])
    track = rtc.SwitchableTrack(source)

    track.stop()

    assert source.readyState == "ended"
    assert track.readyState == "ended"


def test_connection_factory_opens_one_connection_per_peer(monkeypatch):
    created: list[object] = []

    class DummyPeerConnection:
        def __init__(self, configuration=None) -> None:
            self.configuration = configuration
            created.append(self)

    monkeypatch.setattr(rtc, "RTCPeerConnection", DummyPeerConnection)
    factory = rtc.connection_factory(Settings(stun_urls="stun:s.example:3478", turn_url=""))

    alice = factory("alice")
    bob = factory("bob")

    assert isinstance(alice, rtc.AiortcConnection)
    assert alice is not bob
    assert [connection._pc for connection in (alice, bob)] == created
    configuration = created[0].configuration
    assert [server.urls for server in configuration.iceServers] == [["stun:s.example:3478"]]
    assert created[1].configuration is configuration
