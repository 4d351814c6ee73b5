"""Unit tests for the serial data channel bridge."""

import asyncio
import time
from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import serial

from momo.serial_data import SerialDataChannel


class FakeDataChannel:
    """Minimal data channel exposing aiortc's event registration."""

    def __init__(self, label: str = "serial", ready_state: str = "open") -> None:
        self.label = label
        self.readyState = ready_state  # noqa: N815
        self.sent: list[bytes] = []
        self.handlers: dict[str, Callable[..., Any]] = {}

    def on(self, event: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        def register(handler: Callable[..., Any]) -> Callable[..., Any]:
            self.handlers[event] = handler
            return handler

        return register

    def send(self, data: bytes) -> None:
        self.sent.append(data)


@pytest.fixture
def port() -> MagicMock:
    port = MagicMock()
    port.is_open = True
    port.in_waiting = 0
    return port


class TestCreate:
    """Test opening the serial device."""

    def test_open_failure_returns_none(self) -> None:
        reactor = MagicMock()
        with patch(
            "momo.serial_data.serial_channel.serial.Serial",
            side_effect=serial.SerialException("no such device"),
        ):
            bridge = SerialDataChannel.create(reactor, "/dev/ttyUSB9", 9600)

        assert bridge is None
        reactor.spawn.assert_not_called()

    def test_open_registers_read_loop(self, port: MagicMock) -> None:
        reactor = MagicMock()
        with patch(
            "momo.serial_data.serial_channel.serial.Serial", return_value=port
        ) as serial_cls:
            bridge = SerialDataChannel.create(reactor, "/dev/ttyUSB0", 115200)

        assert bridge is not None
        serial_cls.assert_called_once_with("/dev/ttyUSB0", 115200, timeout=0.1)
        reactor.spawn.assert_called_once()
        reactor.spawn.call_args.args[0].close()


class TestForwarding:
    """Test bytes flowing between the device and data channels."""

    def test_data_channel_message_written_to_port(self, port: MagicMock) -> None:
        bridge = SerialDataChannel(MagicMock(), port)
        channel = FakeDataChannel()
        bridge.on_data_channel(channel)

        channel.handlers["message"]("hello")
        channel.handlers["message"](b"\x01\x02")

        assert [call.args[0] for call in port.write.call_args_list] == [b"hello", b"\x01\x02"]

    def test_broadcast_only_to_open_channels(self, port: MagicMock) -> None:
        bridge = SerialDataChannel(MagicMock(), port)
        open_channel = FakeDataChannel("a")
        connecting = FakeDataChannel("b", ready_state="connecting")
        bridge.on_data_channel(open_channel)
        bridge.on_data_channel(connecting)

        assert bridge.broadcast(b"data") == 1
        assert open_channel.sent == [b"data"]
        assert connecting.sent == []

    def test_closed_channel_detached(self, port: MagicMock) -> None:
        bridge = SerialDataChannel(MagicMock(), port)
        channel = FakeDataChannel()
        bridge.on_data_channel(channel)
        assert bridge.channel_count == 1

        channel.handlers["close"]()
        assert bridge.channel_count == 0
        assert bridge.broadcast(b"data") == 0

    def test_read_available_collects_waiting_bytes(self, port: MagicMock) -> None:
        bridge = SerialDataChannel(MagicMock(), port)
        port.read.side_effect = [b"a", b"bc"]
        port.in_waiting = 2

        assert bridge._read_available() == b"abc"

    def test_read_timeout_returns_empty(self, port: MagicMock) -> None:
        bridge = SerialDataChannel(MagicMock(), port)
        port.read.return_value = b""

        assert bridge._read_available() == b""

    @pytest.mark.asyncio
    async def test_read_loop_broadcasts(self, port: MagicMock) -> None:
        chunks = [b"x"]

        def read(size: int) -> bytes:
            if chunks:
                return chunks.pop(0)
            time.sleep(0.01)
            return b""

        port.read.side_effect = read
        bridge = SerialDataChannel(MagicMock(), port)
        channel = FakeDataChannel()
        bridge.on_data_channel(channel)

        task = asyncio.create_task(bridge.read_loop())
        for _ in range(100):
            if channel.sent:
                break
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert channel.sent == [b"x"]

    def test_close(self, port: MagicMock) -> None:
        bridge = SerialDataChannel(MagicMock(), port)
        bridge.on_data_channel(FakeDataChannel())

        bridge.close()

        port.close.assert_called_once()
        assert bridge.channel_count == 0
