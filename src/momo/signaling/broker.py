"""Shared WebSocket client logic for session broker backends."""

import json
import logging
from abc import abstractmethod
from collections.abc import Callable
from typing import Any

import websockets
from pydantic import BaseModel, ValidationError
from websockets.asyncio.client import ClientConnection

from momo.config import Settings
from momo.errors import SignalingBackendError
from momo.handle import Handle
from momo.reactor import Reactor
from momo.rtc import NEGOTIATION_ERRORS, ConnectionManager
from momo.signaling.base import Endpoint, SignalingBackend
from momo.signaling.protocol import dump

logger = logging.getLogger(__name__)

Connector = Callable[[str], Any]


class BrokerBackend(SignalingBackend):
    """Backend holding one outbound WebSocket to a broker.

    Subclasses provide the registration message and the message handler; the
    base class owns the connection, the peer connection id, and error policy.
    """

    def __init__(
        self,
        reactor: Reactor,
        endpoint: Endpoint | None,
        manager: Handle[ConnectionManager],
        settings: Settings,
        connect: Connector = websockets.connect,
    ) -> None:
        """Initialize broker backend.

        Args:
            reactor: Reactor that runs every backend operation
            endpoint: Optional local control endpoint
            manager: Non-owning handle to the connection manager
            settings: Client settings
            connect: WebSocket client factory (websockets.connect)
        """
        super().__init__(reactor, endpoint, manager, settings)
        self._connect = connect
        self._websocket: ClientConnection | None = None
        self._session_task: Any = None
        self.connection_id = settings.broker.kind.value

    @property
    def is_connected(self) -> bool:
        return self._websocket is not None

    @property
    def session_active(self) -> bool:
        """Whether a broker session is connecting or connected."""
        return self._session_task is not None and not self._session_task.done()

    def start_session(self) -> bool:
        """Register a broker session on the reactor.

        Returns:
            False if a session is already active
        """
        if self.session_active:
            return False
        self._session_task = self._reactor.spawn(
            self.session(), name=f"{self.kind.value}-session"
        )
        return True

    async def session(self) -> None:
        """Connect, register, and handle messages until the broker hangs up.

        Raises:
            SignalingBackendError: If the broker cannot be reached or the
                connection fails
        """
        url = self._settings.broker.signaling_url
        logger.info("Connecting to broker", extra={"broker": self.kind.value, "url": url})
        try:
            async with self._connect(url) as websocket:
                self._websocket = websocket
                await self.send(self.registration_message())
                async for raw_message in websocket:
                    if isinstance(raw_message, bytes):
                        raw_message = raw_message.decode("utf-8")
                    await self.dispatch(raw_message)
            logger.info("Broker closed the connection", extra={"broker": self.kind.value})
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise SignalingBackendError(f"{self.kind.value} signaling failed: {e}") from e
        finally:
            self._websocket = None
            if self._manager.valid:
                await self._manager.get().close_connection(self.connection_id)

    async def dispatch(self, raw_message: str) -> None:
        """Parse and handle one broker message.

        Malformed messages and negotiation failures are logged and skipped.
        """
        try:
            data = json.loads(raw_message)
            if not isinstance(data, dict):
                logger.error(
                    "Broker message is not a JSON object",
                    extra={"broker": self.kind.value, "received": type(data).__name__},
                )
                return
            await self.handle_message(data.get("type"), data)
        except json.JSONDecodeError as e:
            logger.error(
                "Invalid JSON from broker", extra={"broker": self.kind.value, "error": str(e)}
            )
        except (ValidationError, *NEGOTIATION_ERRORS) as e:
            logger.error(
                "Error processing broker message",
                extra={"broker": self.kind.value, "error": str(e)},
            )

    async def send(self, message: BaseModel) -> None:
        """Send a message to the broker if connected."""
        if self._websocket is None:
            logger.warning("Not connected, dropping message", extra={"broker": self.kind.value})
            return
        await self._websocket.send(dump(message))

    @abstractmethod
    def registration_message(self) -> BaseModel:
        """First message sent after the WebSocket opens."""
        pass

    @abstractmethod
    async def handle_message(self, message_type: str | None, data: dict[str, Any]) -> None:
        """Handle one decoded broker message."""
        pass
