"""OpenCV-backed capturers for V4L2, AVFoundation, and generic devices."""

import logging
import threading

import cv2
import numpy as np

from momo.capture.base import CapturerFactory, VideoCapturer
from momo.config import Settings, Size

logger = logging.getLogger(__name__)


def parse_device(device: str | None, default: int | str) -> int | str:
    """Convert a --video-device value to an OpenCV device id.

    Numeric strings select a device index, anything else is a path or name.
    """
    if not device:
        return default
    return int(device) if device.isdigit() else device


class OpenCVCapturer(VideoCapturer):
    """Capturer reading from a cv2.VideoCapture.

    Thread-safety: read() and close() may be called from different threads.
    """

    def __init__(self, capture: cv2.VideoCapture, size: Size, framerate: int) -> None:
        self._capture = capture
        self._size = size
        self._framerate = framerate
        self._lock = threading.Lock()

    @classmethod
    def open(
        cls,
        device: int | str,
        size: Size,
        framerate: int,
        api_preference: int = cv2.CAP_ANY,
        fourcc: str | None = None,
    ) -> "OpenCVCapturer | None":
        """Open a capture device and apply the requested mode.

        Args:
            device: Device index, path, or name
            size: Requested frame size
            framerate: Requested frames per second
            api_preference: OpenCV capture backend
            fourcc: Optional pixel format (e.g. "MJPG")

        Returns:
            Open capturer, or None if the device could not be opened
        """
        capture = cv2.VideoCapture(device, api_preference)
        if not capture.isOpened():
            capture.release()
            logger.error("Unable to open capture device", extra={"device": device})
            return None

        if fourcc:
            capture.set(cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc(*fourcc))
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, size.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, size.height)
        capture.set(cv2.CAP_PROP_FPS, framerate)

        actual = Size(
            int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)) or size.width,
            int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT)) or size.height,
        )
        logger.info(
            "Capture device opened",
            extra={"device": device, "size": actual, "framerate": framerate, "fourcc": fourcc},
        )
        return cls(capture, actual, framerate)

    @property
    def size(self) -> Size:
        return self._size

    @property
    def framerate(self) -> int:
        return self._framerate

    def read(self) -> np.ndarray | None:
        with self._lock:
            if self._capture is None:
                return None
            ok, frame = self._capture.read()
        return frame if ok else None

    def close(self) -> None:
        with self._lock:
            if self._capture is None:
                return
            self._capture.release()
            self._capture = None
        logger.info("Capture device released")


class V4L2CapturerFactory(CapturerFactory):
    """Linux V4L2 devices. The native path asks the camera for MJPEG."""

    name = "v4l2"

    def create(self, settings: Settings) -> VideoCapturer | None:
        return OpenCVCapturer.open(
            parse_device(settings.video_device, "/dev/video0"),
            settings.size,
            settings.framerate,
            api_preference=cv2.CAP_V4L2,
            fourcc="MJPG" if settings.use_native else None,
        )


class AVFoundationCapturerFactory(CapturerFactory):
    """macOS AVFoundation devices."""

    name = "avfoundation"

    def create(self, settings: Settings) -> VideoCapturer | None:
        return OpenCVCapturer.open(
            parse_device(settings.video_device, 0),
            settings.size,
            settings.framerate,
            api_preference=cv2.CAP_AVFOUNDATION,
        )


class DeviceCapturerFactory(CapturerFactory):
    """Any device OpenCV can open with its default backend."""

    name = "device"

    def create(self, settings: Settings) -> VideoCapturer | None:
        return OpenCVCapturer.open(
            parse_device(settings.video_device, 0),
            settings.size,
            settings.framerate,
        )
