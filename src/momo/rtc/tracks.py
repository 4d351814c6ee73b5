"""Local media tracks: the capturer as a video track and the microphone."""

import asyncio
import logging
import sys

import av
import numpy as np
from aiortc import MediaStreamTrack, VideoStreamTrack
from aiortc.contrib.media import MediaPlayer
from av.error import FFmpegError

from momo.capture import VideoCapturer

logger = logging.getLogger(__name__)

# Microphone source per platform: (file, format)
_MICROPHONES = {
    "linux": ("default", "pulse"),
    "darwin": (":default", "avfoundation"),
}


class CapturerTrack(VideoStreamTrack):
    """Video track reading frames from a capturer.

    The blocking device read runs in a worker thread so the reactor keeps
    serving signaling while waiting for the camera.
    """

    def __init__(self, capturer: VideoCapturer) -> None:
        super().__init__()
        self._capturer = capturer
        self._last: np.ndarray | None = None

    async def recv(self) -> av.VideoFrame:
        pts, time_base = await self.next_timestamp()

        image = await asyncio.to_thread(self._capturer.read)
        if image is None:
            # Repeat the last frame (or send black) when the device stalls
            if self._last is None:
                size = self._capturer.size
                image = np.zeros((size.height, size.width, 3), dtype=np.uint8)
            else:
                image = self._last
        self._last = image

        frame = av.VideoFrame.from_ndarray(image, format="bgr24")
        frame.pts = pts
        frame.time_base = time_base
        return frame


def open_microphone(platform: str = sys.platform) -> MediaStreamTrack | None:
    """Open the default microphone as an audio track.

    Audio is optional: failure to open the device is logged and the
    connections carry no local audio.

    Returns:
        Audio track, or None if no microphone is available
    """
    source = _MICROPHONES.get("linux" if platform.startswith("linux") else platform)
    if source is None:
        logger.warning("No microphone source for platform", extra={"platform": platform})
        return None

    file, fmt = source
    try:
        player = MediaPlayer(file, format=fmt)
    except (FFmpegError, OSError) as e:
        logger.warning("Failed to open microphone", extra={"format": fmt, "error": str(e)})
        return None

    if player.audio is None:
        logger.warning("Microphone has no audio stream", extra={"format": fmt})
        return None
    return player.audio
