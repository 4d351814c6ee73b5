"""Command line parsing.

Turns process arguments into a validated Settings object. Parsing never
returns on malformed input, --version, or a missing subcommand: it prints the
relevant text and exits the process before any network or media resource is
touched.
"""

import argparse
import sys
from collections.abc import Sequence
from typing import NoReturn

from pydantic import ValidationError

from momo import USE_IL_ENCODER, __version__
from momo.config import (
    AUDIO_BITRATE_RANGE,
    AUDIO_CODECS,
    BROKER_PORT_RANGE,
    BROKER_PROTOCOLS,
    FRAMERATE_RANGE,
    LOG_LEVEL_NONE,
    LOG_LEVEL_RANGE,
    PORT_RANGE,
    PRIORITIES,
    RESOLUTIONS,
    SERIAL_RATE_RANGE,
    VIDEO_BITRATE_RANGE,
    VIDEO_CODECS,
    WINDOW_SIZE_RANGE,
    BackendKind,
    BrokerConfig,
    P2PConfig,
    Settings,
    WindowConfig,
    decode_metadata,
)
from momo.errors import ConfigurationError

DIRECT_PEER_COMMAND = "direct-peer"
BROKER_COMMAND = "broker"

# Exit status when no backend subcommand was selected
EXIT_NO_SUBCOMMAND = 1


class EnumChoice:
    """Validator accepting only the listed strings."""

    def __init__(self, values: Sequence[str]) -> None:
        self.values = tuple(values)
        self.name = ",".join(self.values)

    def __call__(self, value: str) -> str:
        if value not in self.values:
            raise argparse.ArgumentTypeError(f"Value {value} not in range [{self.name}]")
        return value

    def __repr__(self) -> str:
        return f"STR in [{self.name}]"


class IntRange:
    """Validator accepting integers in an inclusive range."""

    def __init__(self, lo: int, hi: int) -> None:
        self.lo = lo
        self.hi = hi

    def __call__(self, value: str) -> int:
        try:
            number = int(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f"Value {value} is not an integer") from None
        if not self.lo <= number <= self.hi:
            raise argparse.ArgumentTypeError(
                f"Value {value} not in range [{self.lo} - {self.hi}]"
            )
        return number

    def __repr__(self) -> str:
        return f"INT in [{self.lo} - {self.hi}]"


class JsonValue:
    """Validator accepting only syntactically valid JSON text."""

    def __call__(self, value: str) -> str:
        try:
            decode_metadata(value)
        except ConfigurationError:
            raise argparse.ArgumentTypeError(f"Value {value} is not JSON Value") from None
        return value

    def __repr__(self) -> str:
        return "JSON Value"


def version_string() -> str:
    """Version line printed by --version."""
    return f"WebRTC Native Client Momo version {__version__} USE_IL_ENCODER={USE_IL_ENCODER}"


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with both backend subcommands.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="momo", description="Momo - WebRTC native client"
    )

    parser.add_argument("--no-video", action="store_true", help="Do not send video")
    parser.add_argument("--no-audio", action="store_true", help="Do not send audio")
    parser.add_argument(
        "--video-codec", type=EnumChoice(VIDEO_CODECS), default="VP8", help="Video codec"
    )
    parser.add_argument(
        "--audio-codec", type=EnumChoice(AUDIO_CODECS), default="OPUS", help="Audio codec"
    )
    parser.add_argument(
        "--video-bitrate", type=IntRange(*VIDEO_BITRATE_RANGE), help="Video bitrate (kbps)"
    )
    parser.add_argument(
        "--audio-bitrate", type=IntRange(*AUDIO_BITRATE_RANGE), help="Audio bitrate (kbps)"
    )
    parser.add_argument(
        "--resolution", type=EnumChoice(RESOLUTIONS), default="VGA", help="Capture resolution"
    )
    parser.add_argument(
        "--framerate", type=IntRange(*FRAMERATE_RANGE), default=30, help="Capture framerate"
    )
    parser.add_argument(
        "--priority",
        type=EnumChoice(PRIORITIES),
        default="BALANCE",
        help="Degradation preference (experimental)",
    )
    parser.add_argument("--daemon", action="store_true", help="Run as a daemon")
    parser.add_argument("--version", action="store_true", help="Show version information")
    parser.add_argument(
        "--log-level",
        type=IntRange(*LOG_LEVEL_RANGE),
        default=LOG_LEVEL_NONE,
        help="Console log level (0=verbose ... 4=none)",
    )
    # Hidden option
    parser.add_argument("--metadata", type=JsonValue(), default="", help=argparse.SUPPRESS)

    parser.add_argument("--video-device", default=None, help="Capture device name or path")
    parser.add_argument(
        "--use-native", action="store_true", help="Prefer hardware-assisted capture"
    )
    parser.add_argument(
        "--serial-device", default="", help="Serial device bridged onto data channels"
    )
    parser.add_argument(
        "--serial-rate", type=IntRange(*SERIAL_RATE_RANGE), default=9600, help="Serial baud rate"
    )
    parser.add_argument(
        "--use-window", action="store_true", help="Show received video in a window"
    )
    parser.add_argument(
        "--window-width", type=IntRange(*WINDOW_SIZE_RANGE), default=640, help="Window width"
    )
    parser.add_argument(
        "--window-height", type=IntRange(*WINDOW_SIZE_RANGE), default=480, help="Window height"
    )
    parser.add_argument("--fullscreen", action="store_true", help="Use a fullscreen window")

    subparsers = parser.add_subparsers(dest="command", metavar="{direct-peer,broker}")

    p2p_parser = subparsers.add_parser(
        DIRECT_PEER_COMMAND, help="Serve a page and signal peers directly"
    )
    p2p_parser.add_argument(
        "--port", type=IntRange(*PORT_RANGE), default=8080, help="Port number"
    )
    p2p_parser.add_argument(
        "--document-root", default="html", help="Directory served over HTTP"
    )

    broker_parser = subparsers.add_parser(BROKER_COMMAND, help="Connect through a session broker")
    broker_parser.add_argument("signaling_url", metavar="SIGNALING-URL", help="Signaling host")
    broker_parser.add_argument("channel_id", metavar="CHANNEL-ID", help="Channel ID")
    broker_parser.add_argument(
        "--auto", dest="auto_connect", action="store_true", help="Connect automatically"
    )
    broker_parser.add_argument(
        "--protocol", type=EnumChoice(BROKER_PROTOCOLS), default="sora", help="Broker protocol"
    )
    broker_parser.add_argument(
        "--port",
        type=IntRange(*BROKER_PORT_RANGE),
        default=-1,
        help="Local control port on 127.0.0.1 (-1 disables it)",
    )
    broker_parser.add_argument("--signaling-key", default=None, help="Ayame signaling key")

    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Build Settings from a parsed namespace.

    Args:
        args: Namespace returned by the parser (a subcommand must be set)

    Returns:
        Validated settings

    Raises:
        pydantic.ValidationError: If the combination of values is invalid
    """
    p2p = P2PConfig()
    broker = BrokerConfig()
    if args.command == DIRECT_PEER_COMMAND:
        backends = frozenset({BackendKind.DIRECT_PEER})
        p2p = P2PConfig(port=args.port, document_root=args.document_root)
    else:
        broker = BrokerConfig(
            protocol=args.protocol,
            signaling_url=args.signaling_url,
            channel_id=args.channel_id,
            auto_connect=args.auto_connect,
            port=args.port,
            signaling_key=args.signaling_key,
        )
        backends = frozenset({broker.kind})

    return Settings(
        no_video=args.no_video,
        no_audio=args.no_audio,
        video_codec=args.video_codec,
        audio_codec=args.audio_codec,
        video_bitrate=args.video_bitrate,
        audio_bitrate=args.audio_bitrate,
        resolution=args.resolution,
        framerate=args.framerate,
        priority=args.priority,
        daemon=args.daemon,
        log_level=args.log_level,
        metadata=args.metadata or None,
        video_device=args.video_device,
        use_native=args.use_native,
        serial_device=args.serial_device,
        serial_rate=args.serial_rate,
        window=WindowConfig(
            enabled=args.use_window,
            width=args.window_width,
            height=args.window_height,
            fullscreen=args.fullscreen,
        ),
        backends=backends,
        p2p=p2p,
        broker=broker,
    )


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    """Parse process arguments into Settings.

    Exits the process instead of returning when the arguments are malformed
    (argparse's status 2), when --version is given (status 0), or when no
    backend subcommand was selected (status 1).

    Args:
        argv: Arguments without the program name (defaults to sys.argv[1:])

    Returns:
        Validated settings
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    # Structural decode is a separate pass from the syntax validator
    try:
        decode_metadata(args.metadata)
    except ConfigurationError as e:
        _fail(parser, str(e))

    if args.version:
        print(version_string())
        sys.exit(0)

    if args.command is None:
        print(parser.format_help())
        sys.exit(EXIT_NO_SUBCOMMAND)

    try:
        return settings_from_args(args)
    except ValidationError as e:
        _fail(parser, "; ".join(err["msg"] for err in e.errors()))


def _fail(parser: argparse.ArgumentParser, message: str) -> NoReturn:
    parser.error(message)
