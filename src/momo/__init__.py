"""WebRTC Native Client Momo.

Native real-time communication client: captures local video, renders remote
video, bridges a serial port onto data channels, and speaks to peers through
a direct HTTP/WebSocket server or a session broker (Sora, Ayame).
"""

__version__ = "2020.1.0"

# Build flag reported by --version (1 when the hardware IL encoder is wired in)
USE_IL_ENCODER = 0
