"""Signaling message protocol definitions.

Defines Pydantic models for the JSON messages exchanged with browsers
(direct-peer) and with the Sora and Ayame brokers. Incoming messages are
dispatched on their "type" field and then validated against these models.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class _Message(BaseModel):
    model_config = ConfigDict(extra="ignore")


class SessionDescriptionMessage(_Message):
    """Offer or answer carrying a session description (both directions)."""

    type: Literal["offer", "answer"]
    sdp: str = Field(..., min_length=1, description="Session description")


class IceCandidate(_Message):
    """Trickled ICE candidate in browser (RTCIceCandidateInit) form."""

    candidate: str = Field(default="", description="Candidate line (empty = end of candidates)")
    sdpMid: str | None = None  # noqa: N815
    sdpMLineIndex: int | None = None  # noqa: N815


class CandidateMessage(_Message):
    """ICE candidate message used by direct-peer and Ayame."""

    type: Literal["candidate"] = "candidate"
    ice: IceCandidate


class ErrorMessage(_Message):
    """Server → Client: Error notification."""

    type: Literal["error"] = "error"
    message: str = Field(..., description="Error description")


class PongMessage(_Message):
    """Client → Broker: keepalive reply."""

    type: Literal["pong"] = "pong"


# Sora


class SoraMedia(_Message):
    """Media section of a Sora connect message."""

    codec_type: str = Field(..., description="Codec name (VP8, H264, OPUS, ...)")
    bit_rate: int | None = Field(default=None, description="Bitrate in kbps")


class SoraConnectMessage(_Message):
    """Client → Sora: join a channel."""

    type: Literal["connect"] = "connect"
    role: Literal["sendonly", "recvonly", "sendrecv"] = "sendonly"
    channel_id: str = Field(..., min_length=1)
    metadata: Any = None
    video: SoraMedia | Literal[False] = False
    audio: SoraMedia | Literal[False] = False


class SoraOfferMessage(_Message):
    """Sora → Client: initial offer."""

    type: Literal["offer"] = "offer"
    sdp: str = Field(..., min_length=1)
    client_id: str | None = None
    config: dict[str, Any] | None = None

    @property
    def ice_servers(self) -> list[dict[str, Any]] | None:
        if self.config is None:
            return None
        return self.config.get("iceServers")


class SoraUpdateMessage(_Message):
    """Sora → Client: renegotiation offer (update / re-offer)."""

    type: Literal["update", "re-offer"]
    sdp: str = Field(..., min_length=1)


class SoraRenegotiationAnswer(_Message):
    """Client → Sora: reply to update (as "update") or re-offer (as "re-answer")."""

    type: Literal["update", "re-answer"]
    sdp: str = Field(..., min_length=1)


class SoraNotifyMessage(_Message):
    """Sora → Client: event notification."""

    type: Literal["notify"] = "notify"
    event_type: str = Field(default="", description="Notification event")


# Ayame


class AyameRegisterMessage(_Message):
    """Client → Ayame: join a room."""

    type: Literal["register"] = "register"
    roomId: str = Field(..., min_length=1)  # noqa: N815
    clientId: str = Field(..., min_length=1)  # noqa: N815
    signalingKey: str | None = None  # noqa: N815


class AyameAcceptMessage(_Message):
    """Ayame → Client: registration accepted."""

    type: Literal["accept"] = "accept"
    iceServers: list[dict[str, Any]] | None = None  # noqa: N815
    isExistClient: bool = False  # noqa: N815


class AyameRejectMessage(_Message):
    """Ayame → Client: registration rejected."""

    type: Literal["reject"] = "reject"
    reason: str = Field(default="", description="Rejection reason")


def dump(message: BaseModel) -> str:
    """Serialize an outgoing message, dropping unset optional fields."""
    return message.model_dump_json(exclude_none=True)
