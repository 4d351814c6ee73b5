"""WebRTC media session management."""

from momo.rtc.manager import (
    NEGOTIATION_ERRORS,
    ConnectionManager,
    prefer_codec,
    set_bandwidth,
)
from momo.rtc.tracks import CapturerTrack, open_microphone

__all__ = [
    "NEGOTIATION_ERRORS",
    "CapturerTrack",
    "ConnectionManager",
    "open_microphone",
    "prefer_codec",
    "set_bandwidth",
]
