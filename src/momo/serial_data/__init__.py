"""Serial port bridged onto WebRTC data channels."""

from momo.serial_data.serial_channel import SerialDataChannel

__all__ = ["SerialDataChannel"]
