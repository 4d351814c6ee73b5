"""Video capture: capturer interface and platform factories."""

import sys

from momo.capture.base import CapturerFactory, VideoCapturer
from momo.capture.opencv_capturer import (
    AVFoundationCapturerFactory,
    DeviceCapturerFactory,
    OpenCVCapturer,
    V4L2CapturerFactory,
)


def select_capturer_factory(platform: str = sys.platform) -> CapturerFactory:
    """Pick the capturer factory for a platform.

    Args:
        platform: sys.platform style identifier

    Returns:
        Factory for the platform's capture API
    """
    if platform.startswith("linux"):
        return V4L2CapturerFactory()
    if platform == "darwin":
        return AVFoundationCapturerFactory()
    return DeviceCapturerFactory()


__all__ = [
    "AVFoundationCapturerFactory",
    "CapturerFactory",
    "DeviceCapturerFactory",
    "OpenCVCapturer",
    "V4L2CapturerFactory",
    "VideoCapturer",
    "select_capturer_factory",
]
