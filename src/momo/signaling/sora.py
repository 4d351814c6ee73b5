"""Sora broker backend.

Joins a Sora channel over an outbound WebSocket. Sora always offers; the
client answers and later answers renegotiations. The session either starts
with the reactor (auto connect) or when POST /connect arrives on the local
control endpoint.
"""

import logging
from typing import Any

from aiohttp import web

from momo.config import BackendKind
from momo.rtc import ConnectionManager
from momo.signaling.base import serve_app
from momo.signaling.broker import BrokerBackend
from momo.signaling.protocol import (
    PongMessage,
    SessionDescriptionMessage,
    SoraConnectMessage,
    SoraMedia,
    SoraNotifyMessage,
    SoraOfferMessage,
    SoraRenegotiationAnswer,
    SoraUpdateMessage,
)

logger = logging.getLogger(__name__)

CONNECT_PATH = "/connect"

# Reply type for each renegotiation request
_RENEGOTIATION_REPLIES = {"update": "update", "re-offer": "re-answer"}


class SoraBackend(BrokerBackend):
    """Sora signaling client with an optional local control endpoint."""

    @property
    def kind(self) -> BackendKind:
        return BackendKind.SORA

    def run(self) -> None:
        broker = self._settings.broker
        if self._endpoint is not None:
            self._reactor.spawn(
                serve_app(self.build_control_app(), self._endpoint), name="sora-control"
            )
        if broker.auto_connect:
            self.start_session()
        elif self._endpoint is None:
            logger.warning(
                "Sora backend has neither auto connect nor a control port, it will never connect"
            )

    def build_control_app(self) -> web.Application:
        """Build the control endpoint application."""
        app = web.Application()
        app.router.add_post(CONNECT_PATH, self.handle_connect)
        return app

    async def handle_connect(self, request: web.Request) -> web.Response:
        """Start the Sora session on request."""
        if not self.start_session():
            return web.json_response({"error": "already connected"}, status=409)
        logger.info("Sora connect requested", extra={"remote": request.remote})
        return web.json_response({"status": "connecting"})

    def registration_message(self) -> SoraConnectMessage:
        settings = self._settings
        video: SoraMedia | bool = False
        if not settings.no_video:
            video = SoraMedia(codec_type=settings.video_codec, bit_rate=settings.video_bitrate)
        audio: SoraMedia | bool = False
        if not settings.no_audio:
            audio = SoraMedia(codec_type=settings.audio_codec, bit_rate=settings.audio_bitrate)

        receives_video = self._manager.valid and self._manager.get().has_renderer
        return SoraConnectMessage(
            role="sendrecv" if receives_video else "sendonly",
            channel_id=settings.broker.channel_id,
            metadata=settings.metadata,
            video=video,
            audio=audio,
        )

    async def handle_message(self, message_type: str | None, data: dict[str, Any]) -> None:
        manager: ConnectionManager = self._manager.get()

        if message_type == "offer":
            offer = SoraOfferMessage.model_validate(data)
            logger.info("Sora offer received", extra={"client_id": offer.client_id})
            await manager.create_connection(self.connection_id, offer.ice_servers)
            answer = await manager.accept_offer(self.connection_id, offer.sdp)
            await self.send(SessionDescriptionMessage(type="answer", sdp=answer.sdp))

        elif message_type in _RENEGOTIATION_REPLIES:
            update = SoraUpdateMessage.model_validate(data)
            answer = await manager.accept_offer(self.connection_id, update.sdp)
            await self.send(
                SoraRenegotiationAnswer(type=_RENEGOTIATION_REPLIES[update.type], sdp=answer.sdp)
            )

        elif message_type == "ping":
            await self.send(PongMessage())

        elif message_type == "notify":
            notify = SoraNotifyMessage.model_validate(data)
            logger.info("Sora notification", extra={"event_type": notify.event_type})

        else:
            logger.warning("Unknown Sora message type", extra={"type": message_type})
