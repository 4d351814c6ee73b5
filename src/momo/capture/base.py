"""Video capturer abstraction.

A capturer is a synchronous frame source opened before the reactor starts.
Factories select the implementation at composition time, one per platform or
hardware-acceleration path.
"""

from abc import ABC, abstractmethod

import numpy as np

from momo.config import Settings, Size


class VideoCapturer(ABC):
    """Frame source producing BGR frames."""

    @property
    @abstractmethod
    def size(self) -> Size:
        """Negotiated frame size."""
        pass

    @property
    @abstractmethod
    def framerate(self) -> int:
        """Requested frames per second."""
        pass

    @abstractmethod
    def read(self) -> np.ndarray | None:
        """Block until the next frame is available.

        Returns:
            BGR frame (height x width x 3, uint8), or None if the device
            produced no frame
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the capture device."""
        pass


class CapturerFactory(ABC):
    """Constructs a platform-appropriate capturer from settings."""

    name: str = "capturer"

    @abstractmethod
    def create(self, settings: Settings) -> VideoCapturer | None:
        """Open the capture device described by the settings.

        Returns:
            Open capturer, or None if the device could not be opened
        """
        pass
