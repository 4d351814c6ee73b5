"""Configuration schema for the client.

Defines the immutable Pydantic models produced by the command line parser and
read by every other component. Allowed value sets and numeric ranges live here
so that the CLI validators and the models share one source of truth.
"""

import json
from enum import Enum
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from momo.errors import ConfigurationError

VIDEO_CODECS = ("VP8", "VP9", "H264")
AUDIO_CODECS = ("OPUS", "PCMU")
RESOLUTIONS = ("QVGA", "VGA", "HD", "FHD")
PRIORITIES = ("BALANCE", "FRAMERATE", "RESOLUTION")
BROKER_PROTOCOLS = ("sora", "ayame")

VIDEO_BITRATE_RANGE = (1, 30000)
AUDIO_BITRATE_RANGE = (6, 510)
FRAMERATE_RANGE = (1, 60)
LOG_LEVEL_RANGE = (0, 5)
PORT_RANGE = (0, 65535)
BROKER_PORT_RANGE = (-1, 65535)
SERIAL_RATE_RANGE = (300, 4000000)
WINDOW_SIZE_RANGE = (180, 16384)

# Log level that disables console logging entirely
LOG_LEVEL_NONE = 4


class Size(NamedTuple):
    """Frame size in pixels."""

    width: int
    height: int


RESOLUTION_SIZES: dict[str, Size] = {
    "QVGA": Size(320, 240),
    "VGA": Size(640, 480),
    "HD": Size(1280, 720),
    "FHD": Size(1920, 1080),
}


class BackendKind(str, Enum):
    """Signaling backend variants."""

    DIRECT_PEER = "direct-peer"
    SORA = "sora"
    AYAME = "ayame"

    @property
    def is_broker(self) -> bool:
        return self is not BackendKind.DIRECT_PEER


def decode_metadata(text: str | None) -> Any:
    """Decode metadata text into structured form.

    Args:
        text: JSON text from the command line (may be empty)

    Returns:
        Decoded JSON value, or None when no metadata was supplied

    Raises:
        ConfigurationError: If the text is not valid JSON
    """
    if text is None or text == "":
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Value {text} is not JSON Value") from e


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class WindowConfig(_Frozen):
    """Local display window configuration."""

    enabled: bool = Field(default=False, description="Show received video in a window")
    width: int = Field(default=640, ge=WINDOW_SIZE_RANGE[0], le=WINDOW_SIZE_RANGE[1])
    height: int = Field(default=480, ge=WINDOW_SIZE_RANGE[0], le=WINDOW_SIZE_RANGE[1])
    fullscreen: bool = Field(default=False, description="Use a fullscreen window")


class P2PConfig(_Frozen):
    """Direct-peer backend configuration."""

    port: int = Field(default=8080, ge=PORT_RANGE[0], le=PORT_RANGE[1], description="Bind port")
    document_root: str = Field(default="html", description="Static file root")


class BrokerConfig(_Frozen):
    """Session broker (Sora or Ayame) configuration."""

    protocol: str = Field(default="sora", description="Broker protocol (sora, ayame)")
    signaling_url: str = Field(default="", description="Signaling server URL")
    channel_id: str = Field(default="", description="Channel (room) identifier")
    auto_connect: bool = Field(default=False, description="Connect as soon as the reactor runs")
    port: int = Field(
        default=-1,
        ge=BROKER_PORT_RANGE[0],
        le=BROKER_PORT_RANGE[1],
        description="Local control port on 127.0.0.1 (-1 disables it)",
    )
    signaling_key: str | None = Field(default=None, description="Ayame signaling key")

    @field_validator("protocol")
    @classmethod
    def validate_protocol(cls, v: str) -> str:
        """Validate that the broker protocol is supported."""
        if v not in BROKER_PROTOCOLS:
            raise ValueError(f"Value {v} not in range [{','.join(BROKER_PROTOCOLS)}]")
        return v

    @property
    def kind(self) -> BackendKind:
        return BackendKind(self.protocol)


class Settings(_Frozen):
    """Validated client settings.

    Constructed once before any other component and never mutated afterwards.
    """

    no_video: bool = Field(default=False, description="Do not capture video")
    no_audio: bool = Field(default=False, description="Do not capture audio")
    video_codec: str = Field(default="VP8", description="Video codec")
    audio_codec: str = Field(default="OPUS", description="Audio codec")
    video_bitrate: int | None = Field(
        default=None, ge=VIDEO_BITRATE_RANGE[0], le=VIDEO_BITRATE_RANGE[1], description="kbps"
    )
    audio_bitrate: int | None = Field(
        default=None, ge=AUDIO_BITRATE_RANGE[0], le=AUDIO_BITRATE_RANGE[1], description="kbps"
    )
    resolution: str = Field(default="VGA", description="Capture resolution")
    framerate: int = Field(default=30, ge=FRAMERATE_RANGE[0], le=FRAMERATE_RANGE[1])
    priority: str = Field(default="BALANCE", description="Degradation preference")
    daemon: bool = Field(default=False, description="Detach from the terminal")
    log_level: int = Field(default=LOG_LEVEL_NONE, ge=LOG_LEVEL_RANGE[0], le=LOG_LEVEL_RANGE[1])
    metadata: Any = Field(default=None, description="Decoded JSON metadata (None if absent)")

    video_device: str | None = Field(default=None, description="Capture device name or path")
    use_native: bool = Field(default=False, description="Prefer hardware-assisted capture")
    serial_device: str = Field(default="", description="Serial device bridged to data channels")
    serial_rate: int = Field(default=9600, ge=SERIAL_RATE_RANGE[0], le=SERIAL_RATE_RANGE[1])
    window: WindowConfig = Field(default_factory=WindowConfig)

    backends: frozenset[BackendKind] = Field(default_factory=frozenset)
    p2p: P2PConfig = Field(default_factory=P2PConfig)
    broker: BrokerConfig = Field(default_factory=BrokerConfig)

    @field_validator("video_codec")
    @classmethod
    def validate_video_codec(cls, v: str) -> str:
        return _check_choice(v, VIDEO_CODECS)

    @field_validator("audio_codec")
    @classmethod
    def validate_audio_codec(cls, v: str) -> str:
        return _check_choice(v, AUDIO_CODECS)

    @field_validator("resolution")
    @classmethod
    def validate_resolution(cls, v: str) -> str:
        return _check_choice(v, RESOLUTIONS)

    @field_validator("priority")
    @classmethod
    def validate_priority(cls, v: str) -> str:
        return _check_choice(v, PRIORITIES)

    @field_validator("metadata", mode="before")
    @classmethod
    def validate_metadata(cls, v: Any) -> Any:
        """Decode metadata supplied as JSON text; structured values pass through."""
        if isinstance(v, str):
            return decode_metadata(v)
        return v

    @model_validator(mode="after")
    def validate_backends(self) -> "Settings":
        """Reject illegal backend combinations.

        At least one backend is required, at most one broker protocol may run,
        and direct-peer may be combined with a single broker.
        """
        if not self.backends:
            raise ValueError("At least one backend must be selected")

        brokers = sorted(kind.value for kind in self.backends if kind.is_broker)
        if len(brokers) > 1:
            raise ValueError(f"Only one broker backend may run at a time, got {brokers}")

        if brokers:
            if brokers[0] != self.broker.protocol:
                raise ValueError(
                    f"Broker backend {brokers[0]} does not match "
                    f"broker protocol {self.broker.protocol}"
                )
            if not self.broker.signaling_url or not self.broker.channel_id:
                raise ValueError("Broker backends require a signaling URL and a channel ID")
        return self

    @property
    def size(self) -> Size:
        """Capture frame size for the configured resolution."""
        return RESOLUTION_SIZES[self.resolution]


def _check_choice(value: str, allowed: tuple[str, ...]) -> str:
    if value not in allowed:
        raise ValueError(f"Value {value} not in range [{','.join(allowed)}]")
    return value
