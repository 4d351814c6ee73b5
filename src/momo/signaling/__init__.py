"""Signaling backends (direct-peer, Sora, Ayame)."""

from momo.signaling.ayame import AyameBackend
from momo.signaling.base import ANY_ADDRESS, LOOPBACK_ADDRESS, Endpoint, SignalingBackend
from momo.signaling.broker import BrokerBackend
from momo.signaling.p2p import P2PServer
from momo.signaling.sora import SoraBackend

__all__ = [
    "ANY_ADDRESS",
    "LOOPBACK_ADDRESS",
    "AyameBackend",
    "BrokerBackend",
    "Endpoint",
    "P2PServer",
    "SignalingBackend",
    "SoraBackend",
]
