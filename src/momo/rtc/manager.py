"""Connection manager: the long-lived owner of the media session.

Owns the capturer and every peer connection; borrows the renderer and the
serial data channel bridge. Signaling backends drive it through a Handle and
always call it on the reactor thread, so it needs no locking of its own.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCRtpSender,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaBlackhole, MediaRelay
from aiortc.exceptions import InvalidAccessError, InvalidStateError
from aiortc.mediastreams import MediaStreamError
from aiortc.sdp import candidate_from_sdp

from momo.capture import VideoCapturer
from momo.config import Settings
from momo.render import Renderer
from momo.rtc.tracks import CapturerTrack, open_microphone
from momo.serial_data import SerialDataChannel

logger = logging.getLogger(__name__)

AudioSourceFactory = Callable[[], MediaStreamTrack | None]

# Errors a malformed or out-of-order signaling message can cause
NEGOTIATION_ERRORS = (ValueError, KeyError, InvalidStateError, InvalidAccessError)


def set_bandwidth(sdp: str, kind: str, kbps: int | None) -> str:
    """Add a b=AS line to every media section of the given kind.

    Args:
        sdp: Session description text
        kind: Media kind ("audio" or "video")
        kbps: Bandwidth in kbps (None leaves the SDP unchanged)

    Returns:
        Session description with the bandwidth line inserted after each
        section's connection line
    """
    if kbps is None:
        return sdp

    out: list[str] = []
    in_section = False
    inserted = False
    for line in sdp.splitlines():
        if line.startswith("m="):
            in_section = line.startswith(f"m={kind} ")
            inserted = False
        elif in_section and line.startswith("b=AS:"):
            continue
        out.append(line)
        if in_section and not inserted and line.startswith("c="):
            out.append(f"b=AS:{kbps}")
            inserted = True
    return "\r\n".join(out) + "\r\n"


def prefer_codec(kind: str, codec: str) -> list[Any]:
    """Order the local codec capabilities with the preferred codec first.

    Returns:
        Reordered codec list, or an empty list when the codec is unsupported
    """
    mime_type = f"{kind}/{codec}".lower()
    codecs = RTCRtpSender.getCapabilities(kind).codecs
    if not any(c.mimeType.lower() == mime_type for c in codecs):
        return []
    return sorted(codecs, key=lambda c: c.mimeType.lower() != mime_type)


class ConnectionManager:
    """Peer connections keyed by connection id.

    Thread-safety: NOT thread-safe. Use from the reactor thread only.
    """

    def __init__(
        self,
        settings: Settings,
        capturer: VideoCapturer | None = None,
        renderer: Renderer | None = None,
        audio_source_factory: AudioSourceFactory = open_microphone,
    ) -> None:
        """Initialize connection manager.

        Args:
            settings: Client settings
            capturer: Video source, owned by the manager from now on
            renderer: Display sink, borrowed (the orchestrator releases it)
            audio_source_factory: Opens the local audio source on first use
        """
        self._settings = settings
        self._capturer = capturer
        self._renderer = renderer
        self._audio_source_factory = audio_source_factory
        self._data_channel: SerialDataChannel | None = None

        self._connections: dict[str, RTCPeerConnection] = {}
        self._sinks: dict[str, list[asyncio.Task[None]]] = {}
        self._blackholes: dict[str, MediaBlackhole] = {}
        self._relay = MediaRelay()
        self._video_source: CapturerTrack | None = None
        self._audio_source: MediaStreamTrack | None = None
        self._audio_opened = False
        self._render_enabled = renderer is not None
        self._closed = False

        if renderer is not None:
            renderer.add_close_listener(self._on_renderer_closed)

        logger.info(
            "Connection manager initialized",
            extra={
                "video": capturer is not None,
                "audio": not settings.no_audio,
                "renderer": renderer is not None,
                "video_codec": settings.video_codec,
                "audio_codec": settings.audio_codec,
                "priority": settings.priority,
            },
        )

    @property
    def connection_ids(self) -> list[str]:
        return list(self._connections)

    @property
    def has_renderer(self) -> bool:
        return self._renderer is not None

    @property
    def data_channel(self) -> SerialDataChannel | None:
        return self._data_channel

    def set_data_channel(self, data_channel: SerialDataChannel | None) -> None:
        """Attach the bridge that receives every remote data channel."""
        self._data_channel = data_channel

    def get_connection(self, connection_id: str) -> RTCPeerConnection:
        """Look up a connection.

        Raises:
            KeyError: If no such connection exists
        """
        return self._connections[connection_id]

    async def create_connection(
        self, connection_id: str, ice_servers: list[dict[str, Any]] | None = None
    ) -> RTCPeerConnection:
        """Create a peer connection with the local tracks attached.

        An existing connection with the same id is closed first.

        Args:
            connection_id: Backend-chosen identifier
            ice_servers: ICE servers as {"urls", "username", "credential"} dicts
                (None uses the default STUN server, an empty list uses none)

        Returns:
            New peer connection

        Raises:
            RuntimeError: If the manager has been closed
        """
        if self._closed:
            raise RuntimeError("Connection manager is closed")
        if connection_id in self._connections:
            await self.close_connection(connection_id)

        configuration = None
        if ice_servers is not None:
            configuration = RTCConfiguration(
                iceServers=[
                    RTCIceServer(
                        urls=server["urls"],
                        username=server.get("username"),
                        credential=server.get("credential"),
                    )
                    for server in ice_servers
                ]
            )

        pc = RTCPeerConnection(configuration)
        self._connections[connection_id] = pc
        self._sinks[connection_id] = []
        self._add_local_media(pc)
        self._register_events(connection_id, pc)

        logger.info("Peer connection created", extra={"connection_id": connection_id})
        return pc

    async def create_offer(self, connection_id: str) -> RTCSessionDescription:
        """Create and apply a local offer (creating the connection if needed)."""
        pc = await self._get_or_create(connection_id)
        offer = await pc.createOffer()
        await pc.setLocalDescription(offer)
        return self._local_description(pc)

    async def accept_offer(self, connection_id: str, sdp: str) -> RTCSessionDescription:
        """Apply a remote offer and return the local answer."""
        pc = await self._get_or_create(connection_id)
        await pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type="offer"))
        answer = await pc.createAnswer()
        await pc.setLocalDescription(answer)
        return self._local_description(pc)

    async def accept_answer(self, connection_id: str, sdp: str) -> None:
        """Apply a remote answer to a connection that sent an offer."""
        pc = self.get_connection(connection_id)
        await pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type="answer"))

    async def add_ice_candidate(
        self,
        connection_id: str,
        candidate: str,
        sdp_mid: str | None = None,
        sdp_mline_index: int | None = None,
    ) -> None:
        """Add a trickled remote ICE candidate.

        An empty candidate string marks the end of candidates and is ignored.
        """
        if not candidate:
            return
        pc = self.get_connection(connection_id)
        if candidate.startswith("candidate:"):
            candidate = candidate.split(":", 1)[1]
        ice = candidate_from_sdp(candidate)
        ice.sdpMid = sdp_mid
        ice.sdpMLineIndex = sdp_mline_index
        await pc.addIceCandidate(ice)

    async def close_connection(self, connection_id: str) -> None:
        """Close one connection and its sinks. Unknown ids are ignored."""
        pc = self._connections.pop(connection_id, None)
        if pc is None:
            return

        sinks = self._sinks.pop(connection_id, [])
        for task in sinks:
            task.cancel()
        if sinks:
            await asyncio.gather(*sinks, return_exceptions=True)
        blackhole = self._blackholes.pop(connection_id, None)
        if blackhole is not None:
            await blackhole.stop()

        await pc.close()
        logger.info("Peer connection closed", extra={"connection_id": connection_id})

    async def close(self) -> None:
        """Close every connection and release the owned capturer. Idempotent."""
        if self._closed:
            return
        self._closed = True

        for connection_id in list(self._connections):
            await self.close_connection(connection_id)

        if self._video_source is not None:
            self._video_source.stop()
        if self._audio_source is not None:
            self._audio_source.stop()
        if self._capturer is not None:
            self._capturer.close()
            self._capturer = None

        self._data_channel = None
        self._renderer = None
        logger.info("Connection manager closed")

    async def _get_or_create(self, connection_id: str) -> RTCPeerConnection:
        pc = self._connections.get(connection_id)
        if pc is None:
            pc = await self.create_connection(connection_id)
        return pc

    def _local_description(self, pc: RTCPeerConnection) -> RTCSessionDescription:
        desc = pc.localDescription
        sdp = set_bandwidth(desc.sdp, "video", self._settings.video_bitrate)
        sdp = set_bandwidth(sdp, "audio", self._settings.audio_bitrate)
        return RTCSessionDescription(sdp=sdp, type=desc.type)

    def _add_local_media(self, pc: RTCPeerConnection) -> None:
        receive_video = self._renderer is not None

        if self._capturer is not None:
            if self._video_source is None:
                self._video_source = CapturerTrack(self._capturer)
            direction = "sendrecv" if receive_video else "sendonly"
            transceiver = pc.addTransceiver(
                self._relay.subscribe(self._video_source), direction=direction
            )
            self._set_codec(transceiver, "video", self._settings.video_codec)
        elif receive_video:
            transceiver = pc.addTransceiver("video", direction="recvonly")
            self._set_codec(transceiver, "video", self._settings.video_codec)

        if self._settings.no_audio:
            return
        if not self._audio_opened:
            self._audio_source = self._audio_source_factory()
            self._audio_opened = True
        if self._audio_source is not None:
            transceiver = pc.addTransceiver(
                self._relay.subscribe(self._audio_source), direction="sendrecv"
            )
            self._set_codec(transceiver, "audio", self._settings.audio_codec)

    def _set_codec(self, transceiver: Any, kind: str, codec: str) -> None:
        codecs = prefer_codec(kind, codec)
        if not codecs:
            logger.warning(
                "Codec not supported, using defaults", extra={"kind": kind, "codec": codec}
            )
            return
        transceiver.setCodecPreferences(codecs)

    def _register_events(self, connection_id: str, pc: RTCPeerConnection) -> None:
        @pc.on("connectionstatechange")
        async def on_connectionstatechange() -> None:
            logger.info(
                "Connection state changed",
                extra={"connection_id": connection_id, "state": pc.connectionState},
            )
            if pc.connectionState == "failed":
                await self.close_connection(connection_id)

        @pc.on("datachannel")
        def on_datachannel(channel: Any) -> None:
            if self._data_channel is not None:
                self._data_channel.on_data_channel(channel)

        @pc.on("track")
        def on_track(track: MediaStreamTrack) -> None:
            logger.info(
                "Remote track received",
                extra={"connection_id": connection_id, "kind": track.kind},
            )
            if track.kind == "video" and self._renderer is not None:
                sink_id = f"{connection_id}:{track.id}"
                task = asyncio.ensure_future(self._pump_video(sink_id, track))
                self._sinks.setdefault(connection_id, []).append(task)
                return

            # Remote media nobody displays still has to be consumed
            blackhole = self._blackholes.get(connection_id)
            if blackhole is None:
                blackhole = self._blackholes[connection_id] = MediaBlackhole()
            blackhole.addTrack(track)
            asyncio.ensure_future(blackhole.start())

    async def _pump_video(self, sink_id: str, track: MediaStreamTrack) -> None:
        renderer = self._renderer
        if renderer is None:
            return
        renderer.add_track(sink_id)
        try:
            while True:
                frame = await track.recv()
                if self._render_enabled:
                    renderer.on_frame(sink_id, frame.to_ndarray(format="bgr24"))
        except MediaStreamError:
            logger.info("Remote video track ended", extra={"sink_id": sink_id})
        finally:
            renderer.remove_track(sink_id)

    def _on_renderer_closed(self) -> None:
        # Runs on the reactor thread via the renderer's dispatch hook
        self._render_enabled = False
        logger.info("Renderer window closed, remote video no longer displayed")
