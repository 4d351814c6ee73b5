"""Ayame broker backend.

Registers in an Ayame room over an outbound WebSocket. Ayame relays between
exactly two peers: the client that joins second makes the offer.
"""

import logging
import uuid
from typing import Any

from momo.config import BackendKind
from momo.errors import SignalingBackendError
from momo.signaling.broker import BrokerBackend
from momo.signaling.protocol import (
    AyameAcceptMessage,
    AyameRegisterMessage,
    AyameRejectMessage,
    CandidateMessage,
    PongMessage,
    SessionDescriptionMessage,
)

logger = logging.getLogger(__name__)


class AyameBackend(BrokerBackend):
    """Ayame signaling client. Connects as soon as the reactor runs."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.client_id = uuid.uuid4().hex
        self._ice_servers: list[dict[str, Any]] | None = None

    @property
    def kind(self) -> BackendKind:
        return BackendKind.AYAME

    def run(self) -> None:
        self.start_session()

    def registration_message(self) -> AyameRegisterMessage:
        broker = self._settings.broker
        return AyameRegisterMessage(
            roomId=broker.channel_id,
            clientId=self.client_id,
            signalingKey=broker.signaling_key,
        )

    async def handle_message(self, message_type: str | None, data: dict[str, Any]) -> None:
        """Handle one Ayame message.

        Raises:
            SignalingBackendError: If the room rejects the registration
        """
        manager = self._manager.get()

        if message_type == "accept":
            accept = AyameAcceptMessage.model_validate(data)
            self._ice_servers = accept.iceServers
            logger.info(
                "Ayame registration accepted", extra={"is_exist_client": accept.isExistClient}
            )
            if accept.isExistClient:
                await manager.create_connection(self.connection_id, self._ice_servers)
                offer = await manager.create_offer(self.connection_id)
                await self.send(SessionDescriptionMessage(type="offer", sdp=offer.sdp))

        elif message_type == "reject":
            reject = AyameRejectMessage.model_validate(data)
            raise SignalingBackendError(f"Ayame rejected registration: {reject.reason}")

        elif message_type == "offer":
            offer_msg = SessionDescriptionMessage.model_validate(data)
            await manager.create_connection(self.connection_id, self._ice_servers)
            answer = await manager.accept_offer(self.connection_id, offer_msg.sdp)
            await self.send(SessionDescriptionMessage(type="answer", sdp=answer.sdp))

        elif message_type == "answer":
            answer_msg = SessionDescriptionMessage.model_validate(data)
            await manager.accept_answer(self.connection_id, answer_msg.sdp)

        elif message_type == "candidate":
            candidate_msg = CandidateMessage.model_validate(data)
            await manager.add_ice_candidate(
                self.connection_id,
                candidate_msg.ice.candidate,
                candidate_msg.ice.sdpMid,
                candidate_msg.ice.sdpMLineIndex,
            )

        elif message_type == "ping":
            await self.send(PongMessage())

        elif message_type == "bye":
            logger.info("Remote peer left the room")
            await manager.close_connection(self.connection_id)

        else:
            logger.warning("Unknown Ayame message type", extra={"type": message_type})
