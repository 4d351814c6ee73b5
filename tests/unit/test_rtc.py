"""Unit tests for the connection manager and local media tracks."""

from unittest.mock import MagicMock

import av
import numpy as np
import pytest

from momo.capture import VideoCapturer
from momo.config import Size
from momo.rtc import CapturerTrack, ConnectionManager, open_microphone, prefer_codec, set_bandwidth
from tests.helpers.factories import make_settings

SDP = "\r\n".join(
    [
        "v=0",
        "o=- 1 1 IN IP4 0.0.0.0",
        "s=-",
        "t=0 0",
        "m=audio 9 UDP/TLS/RTP/SAVPF 111",
        "c=IN IP4 0.0.0.0",
        "a=mid:0",
        "m=video 9 UDP/TLS/RTP/SAVPF 96",
        "c=IN IP4 0.0.0.0",
        "b=AS:100",
        "a=mid:1",
        "",
    ]
)


class FakeCapturer(VideoCapturer):
    """Capturer returning a fixed frame, then nothing."""

    def __init__(self, frames: list[np.ndarray | None]) -> None:
        self.frames = frames
        self.closed = False

    @property
    def size(self) -> Size:
        return Size(320, 240)

    @property
    def framerate(self) -> int:
        return 30

    def read(self) -> np.ndarray | None:
        return self.frames.pop(0) if self.frames else None

    def close(self) -> None:
        self.closed = True


class TestSdpHelpers:
    """Test SDP bandwidth and codec helpers."""

    def test_set_bandwidth_video(self) -> None:
        sdp = set_bandwidth(SDP, "video", 800)
        lines = sdp.split("\r\n")

        video = lines.index("m=video 9 UDP/TLS/RTP/SAVPF 96")
        assert lines[video + 2] == "b=AS:800"
        # Replaces the existing value instead of adding a second one
        assert "b=AS:100" not in lines
        assert lines.count("b=AS:800") == 1

    def test_set_bandwidth_audio_only_touches_audio(self) -> None:
        sdp = set_bandwidth(SDP, "audio", 64)
        lines = sdp.split("\r\n")

        audio = lines.index("m=audio 9 UDP/TLS/RTP/SAVPF 111")
        assert lines[audio + 2] == "b=AS:64"
        assert "b=AS:100" in lines

    def test_set_bandwidth_none_unchanged(self) -> None:
        assert set_bandwidth(SDP, "video", None) == SDP

    def test_prefer_codec(self) -> None:
        codecs = prefer_codec("video", "H264")
        assert codecs
        assert codecs[0].mimeType.lower() == "video/h264"

        codecs = prefer_codec("audio", "PCMU")
        assert codecs[0].mimeType.lower() == "audio/pcmu"

    def test_prefer_unsupported_codec(self) -> None:
        assert prefer_codec("video", "AV1X") == []


class TestCapturerTrack:
    """Test the capturer-backed video track."""

    @pytest.mark.asyncio
    async def test_recv_frames(self) -> None:
        image = np.full((240, 320, 3), 128, dtype=np.uint8)
        track = CapturerTrack(FakeCapturer([image]))

        first = await track.recv()
        assert isinstance(first, av.VideoFrame)
        assert (first.width, first.height) == (320, 240)

        # Device stalls: the last frame is repeated
        second = await track.recv()
        assert second.to_ndarray(format="bgr24")[0, 0, 0] == 128
        assert second.pts > first.pts
        track.stop()

    @pytest.mark.asyncio
    async def test_recv_black_frame_before_first_capture(self) -> None:
        track = CapturerTrack(FakeCapturer([]))

        frame = await track.recv()
        assert (frame.width, frame.height) == (320, 240)
        assert frame.to_ndarray(format="bgr24").max() == 0
        track.stop()


def test_open_microphone_unsupported_platform() -> None:
    assert open_microphone("win32") is None


class TestConnectionManager:
    """Test peer connection lifecycle with real aiortc connections."""

    @pytest.mark.asyncio
    async def test_offer_and_answer(self) -> None:
        capturer = FakeCapturer([])
        sender = ConnectionManager(
            make_settings(no_audio=True, video_bitrate=500), capturer=capturer
        )
        renderer = MagicMock()
        receiver = ConnectionManager(make_settings(no_video=True, no_audio=True), renderer=renderer)

        try:
            await sender.create_connection("a", [])
            offer = await sender.create_offer("a")
            assert offer.type == "offer"
            assert "m=video" in offer.sdp
            assert "b=AS:500" in offer.sdp

            await receiver.create_connection("b", [])
            answer = await receiver.accept_offer("b", offer.sdp)
            assert answer.type == "answer"
            assert "m=video" in answer.sdp

            await sender.accept_answer("a", answer.sdp)
            assert sender.connection_ids == ["a"]
            assert receiver.has_renderer is True
            renderer.add_close_listener.assert_called_once()
        finally:
            await sender.close()
            await receiver.close()

        assert sender.connection_ids == []
        assert capturer.closed is True

    @pytest.mark.asyncio
    async def test_close_connection_unknown_id(self) -> None:
        manager = ConnectionManager(make_settings(no_video=True, no_audio=True))
        await manager.close_connection("missing")
        await manager.close()

    @pytest.mark.asyncio
    async def test_answer_for_unknown_connection(self) -> None:
        manager = ConnectionManager(make_settings(no_video=True, no_audio=True))
        with pytest.raises(KeyError):
            await manager.accept_answer("missing", "v=0")
        await manager.close()

    @pytest.mark.asyncio
    async def test_recreating_connection_replaces_it(self) -> None:
        manager = ConnectionManager(make_settings(no_video=True, no_audio=True))
        first = await manager.create_connection("a", [])
        second = await manager.create_connection("a", [])

        assert first is not second
        assert manager.get_connection("a") is second
        assert first.connectionState == "closed"
        await manager.close()

    @pytest.mark.asyncio
    async def test_closed_manager_refuses_connections(self) -> None:
        manager = ConnectionManager(make_settings(no_video=True, no_audio=True))
        await manager.close()
        await manager.close()

        with pytest.raises(RuntimeError, match="closed"):
            await manager.create_connection("a", [])

    @pytest.mark.asyncio
    async def test_audio_source_opened_once(self) -> None:
        factory = MagicMock(return_value=None)
        manager = ConnectionManager(
            make_settings(no_video=True), audio_source_factory=factory
        )
        await manager.create_connection("a", [])
        await manager.create_connection("b", [])

        factory.assert_called_once()
        await manager.close()

    def test_data_channel_attachment(self) -> None:
        manager = ConnectionManager(make_settings(no_video=True, no_audio=True))
        bridge = MagicMock()
        manager.set_data_channel(bridge)
        assert manager.data_channel is bridge
