"""Bridge between a serial device and the peers' data channels.

Bytes read from the serial device are sent on every open data channel, and
messages received on any data channel are written to the device. The read
loop is a reactor operation; the device itself is opened synchronously
before the reactor starts.
"""

import asyncio
import logging
from typing import Any

import serial

from momo.reactor import Reactor

logger = logging.getLogger(__name__)

# Serial read timeout, bounds how long a cancelled read keeps its thread busy
READ_TIMEOUT_S = 0.1


class SerialDataChannel:
    """Data channel manager backed by a serial device."""

    def __init__(self, reactor: Reactor, port: serial.Serial) -> None:
        """Initialize the bridge.

        Args:
            reactor: Reactor that runs the read loop
            port: Open serial device
        """
        self._reactor = reactor
        self._port = port
        self._channels: set[Any] = set()

    @classmethod
    def create(cls, reactor: Reactor, device: str, baudrate: int) -> "SerialDataChannel | None":
        """Open the serial device and register the read loop.

        Args:
            reactor: Reactor that runs the read loop
            device: Serial device path
            baudrate: Baud rate

        Returns:
            Bridge, or None if the device could not be opened
        """
        try:
            port = serial.Serial(device, baudrate, timeout=READ_TIMEOUT_S)
        except (serial.SerialException, ValueError) as e:
            logger.error(
                "Failed to open serial device",
                extra={"device": device, "baudrate": baudrate, "error": str(e)},
            )
            return None

        logger.info("Serial device opened", extra={"device": device, "baudrate": baudrate})
        bridge = cls(reactor, port)
        reactor.spawn(bridge.read_loop(), name="serial-read")
        return bridge

    @property
    def channel_count(self) -> int:
        return len(self._channels)

    def on_data_channel(self, channel: Any) -> None:
        """Attach a data channel opened by a peer.

        Args:
            channel: aiortc RTCDataChannel
        """
        self._channels.add(channel)
        logger.info("Data channel attached", extra={"label": channel.label})

        @channel.on("message")
        def on_message(message: str | bytes) -> None:
            self.write(message)

        @channel.on("close")
        def on_close() -> None:
            self._channels.discard(channel)
            logger.info("Data channel detached", extra={"label": channel.label})

    def write(self, message: str | bytes) -> None:
        """Write a data channel message to the serial device."""
        data = message.encode("utf-8") if isinstance(message, str) else message
        self._port.write(data)

    def broadcast(self, data: bytes) -> int:
        """Send bytes on every open data channel.

        Returns:
            Number of channels the data was sent on
        """
        sent = 0
        for channel in list(self._channels):
            if channel.readyState == "open":
                channel.send(data)
                sent += 1
        return sent

    async def read_loop(self) -> None:
        """Forward serial input to the data channels until cancelled."""
        while True:
            data = await asyncio.to_thread(self._read_available)
            if data:
                logger.debug("Serial data received", extra={"bytes": len(data)})
                self.broadcast(data)

    def close(self) -> None:
        """Close the serial device and forget all channels."""
        self._channels.clear()
        if self._port.is_open:
            self._port.close()
        logger.info("Serial device closed")

    def _read_available(self) -> bytes:
        first = self._port.read(1)
        if not first:
            return b""
        waiting = self._port.in_waiting
        return first + self._port.read(waiting) if waiting else first
