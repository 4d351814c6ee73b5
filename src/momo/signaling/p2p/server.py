"""Direct-peer backend.

Serves the browser page from a document root and accepts WebSocket signaling
on /ws. Each WebSocket is one peer connection on the connection manager.
"""

import asyncio
import json
import logging
import uuid
from pathlib import Path

from aiohttp import WSCloseCode, WSMsgType, web
from pydantic import ValidationError

from momo.config import BackendKind, Settings
from momo.errors import HandleReleasedError
from momo.handle import Handle
from momo.reactor import Reactor
from momo.rtc import NEGOTIATION_ERRORS, ConnectionManager
from momo.signaling.base import Endpoint, SignalingBackend, serve_app
from momo.signaling.p2p.http_util import bad_request, mime_type, not_found, server_error
from momo.signaling.protocol import (
    CandidateMessage,
    ErrorMessage,
    SessionDescriptionMessage,
    dump,
)

logger = logging.getLogger(__name__)

SIGNALING_PATH = "/ws"

# Seconds to wait for the browser to acknowledge a close frame
WEBSOCKET_CLOSE_TIMEOUT = 1.0


class P2PSession:
    """Signaling for one browser WebSocket."""

    def __init__(
        self,
        websocket: web.WebSocketResponse,
        manager: Handle[ConnectionManager],
        connection_id: str,
    ) -> None:
        self._websocket = websocket
        self._manager = manager
        self.connection_id = connection_id

    async def run(self) -> None:
        """Handle messages until the browser closes the socket."""
        async for message in self._websocket:
            if message.type == WSMsgType.TEXT:
                await self.handle_message(message.data)
            elif message.type == WSMsgType.ERROR:
                logger.warning(
                    "WebSocket error",
                    extra={
                        "connection_id": self.connection_id,
                        "error": str(self._websocket.exception()),
                    },
                )

    async def handle_message(self, raw_message: str) -> None:
        """Dispatch one signaling message.

        Failures are reported to the browser and stay local to this session.
        """
        try:
            data = json.loads(raw_message)
            if not isinstance(data, dict):
                logger.error(
                    "Message is not a JSON object",
                    extra={"connection_id": self.connection_id},
                )
                await self._send(ErrorMessage(message="Invalid message: expected a JSON object"))
                return

            message_type = data.get("type")
            manager = self._manager.get()

            if message_type == "connect":
                offer = await manager.create_offer(self.connection_id)
                await self._send(SessionDescriptionMessage(type="offer", sdp=offer.sdp))

            elif message_type == "offer":
                offer_msg = SessionDescriptionMessage.model_validate(data)
                answer = await manager.accept_offer(self.connection_id, offer_msg.sdp)
                await self._send(SessionDescriptionMessage(type="answer", sdp=answer.sdp))

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

            elif message_type == "close":
                await manager.close_connection(self.connection_id)

            else:
                logger.warning(
                    "Unknown message type",
                    extra={"connection_id": self.connection_id, "type": message_type},
                )

        except json.JSONDecodeError as e:
            logger.error(
                "Invalid JSON message",
                extra={"connection_id": self.connection_id, "error": str(e)},
            )
            await self._send(ErrorMessage(message=f"Invalid JSON: {e}"))
        except (ValidationError, *NEGOTIATION_ERRORS) as e:
            logger.error(
                "Error processing message",
                extra={"connection_id": self.connection_id, "error": str(e)},
            )
            await self._send(ErrorMessage(message=f"Message processing error: {e}"))
        except HandleReleasedError:
            logger.warning(
                "Message received after shutdown, ignoring",
                extra={"connection_id": self.connection_id},
            )

    async def close(self) -> None:
        """Drop this session's peer connection."""
        if self._manager.valid:
            await self._manager.get().close_connection(self.connection_id)

    async def _send(self, message: SessionDescriptionMessage | ErrorMessage) -> None:
        if self._websocket.closed:
            return
        await self._websocket.send_str(dump(message))


class P2PServer(SignalingBackend):
    """HTTP + WebSocket server for browsers connecting directly."""

    def __init__(
        self,
        reactor: Reactor,
        endpoint: Endpoint | None,
        manager: Handle[ConnectionManager],
        settings: Settings,
    ) -> None:
        if endpoint is None:
            raise ValueError("Direct-peer backend requires a bind endpoint")
        super().__init__(reactor, endpoint, manager, settings)
        self._document_root = Path(settings.p2p.document_root)
        self._sessions: dict[str, P2PSession] = {}
        self._websockets: set[web.WebSocketResponse] = set()

        logger.info(
            "Direct-peer backend initialized",
            extra={"endpoint": str(endpoint), "document_root": str(self._document_root)},
        )

    @property
    def kind(self) -> BackendKind:
        return BackendKind.DIRECT_PEER

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def build_app(self) -> web.Application:
        """Build the aiohttp application (signaling route before static files)."""
        app = web.Application()
        app.router.add_get(SIGNALING_PATH, self.handle_websocket)
        app.router.add_route("*", "/{path:.*}", self.handle_static)
        app.on_shutdown.append(self.close_websockets)
        return app

    def run(self) -> None:
        if self._endpoint is None:
            raise ValueError("Direct-peer backend requires a bind endpoint")
        self._reactor.spawn(serve_app(self.build_app(), self._endpoint), name="p2p-server")

    async def close_websockets(self, app: web.Application) -> None:
        """Close every open browser WebSocket so the server can shut down."""
        websockets = list(self._websockets)
        if websockets:
            logger.info("Closing WebSocket sessions", extra={"count": len(websockets)})
        for websocket in websockets:
            await websocket.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")

    async def handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Accept a browser WebSocket and run its signaling session."""
        websocket = web.WebSocketResponse(timeout=WEBSOCKET_CLOSE_TIMEOUT)
        await websocket.prepare(request)

        session = P2PSession(websocket, self._manager, f"p2p-{uuid.uuid4().hex[:12]}")
        self._sessions[session.connection_id] = session
        self._websockets.add(websocket)
        logger.info(
            "New WebSocket session",
            extra={"connection_id": session.connection_id, "remote": request.remote},
        )

        try:
            await session.run()
        finally:
            self._sessions.pop(session.connection_id, None)
            self._websockets.discard(websocket)
            await session.close()
            logger.info("WebSocket session closed", extra={"connection_id": session.connection_id})
        return websocket

    async def handle_static(self, request: web.Request) -> web.Response:
        """Serve a file from the document root."""
        if request.method not in ("GET", "HEAD"):
            return bad_request(request, "Unknown HTTP-method")

        target = request.raw_path.split("?", 1)[0]
        if not target.startswith("/") or ".." in target:
            return bad_request(request, "Illegal request-target")

        # request.path is percent-decoded, so %2e%2e only shows up as ".." here
        path = (self._document_root / request.path.lstrip("/")).resolve()
        if not path.is_relative_to(self._document_root.resolve()):
            return bad_request(request, "Illegal request-target")
        if request.path.endswith("/"):
            path = path / "index.html"

        try:
            body = await asyncio.to_thread(path.read_bytes)
        except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
            return not_found(request, request.path)
        except OSError as e:
            return server_error(request, str(e))

        response = web.Response(body=body, content_type=mime_type(path.name))
        if not request.keep_alive:
            response.force_close()
        return response
