"""Unit tests for the direct-peer backend.

Tests the static file server, the HTTP helpers, and the WebSocket
signaling session.
"""

import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import HttpVersion10, WSCloseCode, WSMsgType
from aiohttp.test_utils import TestClient, TestServer, make_mocked_request
from aiortc import RTCSessionDescription

from momo.config import BackendKind, P2PConfig
from momo.handle import Handle
from momo.signaling.base import Endpoint
from momo.signaling.p2p import (
    P2PServer,
    P2PSession,
    bad_request,
    mime_type,
    not_found,
    server_error,
)
from momo.signaling.p2p.http_util import DEFAULT_MIME_TYPE
from tests.helpers.factories import make_settings


@pytest.fixture
def manager() -> MagicMock:
    manager = MagicMock()
    manager.create_offer = AsyncMock(
        return_value=RTCSessionDescription(sdp="v=0 offer", type="offer")
    )
    manager.accept_offer = AsyncMock(
        return_value=RTCSessionDescription(sdp="v=0 answer", type="answer")
    )
    manager.accept_answer = AsyncMock()
    manager.add_ice_candidate = AsyncMock()
    manager.close_connection = AsyncMock()
    return manager


@pytest.fixture
def document_root(tmp_path: Path) -> Path:
    (tmp_path / "index.html").write_text("<h1>momo</h1>")
    (tmp_path / "app.js").write_text("console.log('momo');")
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "index.html").write_text("<p>sub</p>")
    return tmp_path


@pytest.fixture
def server(manager: MagicMock, document_root: Path) -> P2PServer:
    settings = make_settings(p2p=P2PConfig(document_root=str(document_root)))
    endpoint = Endpoint("0.0.0.0", 8080)  # noqa: S104
    return P2PServer(MagicMock(), endpoint, Handle(manager), settings)


class TestHttpUtil:
    """Test MIME lookup and error responses."""

    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("/index.html", "text/html"),
            ("/INDEX.HTML", "text/html"),
            ("/style.css", "text/css"),
            ("/app.js", "application/javascript"),
            ("/photo.JPG", "image/jpeg"),
            ("/icon.svg", "image/svg+xml"),
            ("/data.xyz", DEFAULT_MIME_TYPE),
            ("/noextension", DEFAULT_MIME_TYPE),
        ],
    )
    def test_mime_type(self, path: str, expected: str) -> None:
        assert mime_type(path) == expected

    def test_default_mime_type(self) -> None:
        assert DEFAULT_MIME_TYPE == "application/text"

    def test_not_found_names_target(self) -> None:
        request = make_mocked_request("GET", "/missing.html")
        response = not_found(request, "/missing.html")

        assert response.status == 404
        assert response.content_type == "text/html"
        assert response.text == "The resource '/missing.html' was not found."

    def test_server_error_names_error(self) -> None:
        request = make_mocked_request("GET", "/")
        response = server_error(request, "disk on fire")

        assert response.status == 500
        assert response.text == "An error occurred: 'disk on fire'"

    def test_bad_request_body_is_reason(self) -> None:
        request = make_mocked_request("GET", "/")
        response = bad_request(request, "Illegal request-target")

        assert response.status == 400
        assert response.text == "Illegal request-target"

    def test_keep_alive_mirrored(self) -> None:
        """Test error responses close the connection when the request will not be kept alive."""
        keep_alive = bad_request(make_mocked_request("GET", "/"), "x")
        closing = bad_request(make_mocked_request("GET", "/", version=HttpVersion10), "x")

        assert keep_alive.keep_alive is None
        assert closing.keep_alive is False


class TestStaticFiles:
    """Test static file serving from the document root."""

    @pytest.mark.asyncio
    async def test_serves_file(self, server: P2PServer) -> None:
        response = await server.handle_static(make_mocked_request("GET", "/app.js"))

        assert response.status == 200
        assert response.content_type == "application/javascript"
        assert response.body == b"console.log('momo');"

    @pytest.mark.asyncio
    async def test_trailing_slash_serves_index(self, server: P2PServer) -> None:
        response = await server.handle_static(make_mocked_request("GET", "/"))
        assert response.status == 200
        assert response.content_type == "text/html"
        assert response.body == b"<h1>momo</h1>"

        response = await server.handle_static(make_mocked_request("GET", "/sub/"))
        assert response.body == b"<p>sub</p>"

    @pytest.mark.asyncio
    async def test_head_allowed(self, server: P2PServer) -> None:
        response = await server.handle_static(make_mocked_request("HEAD", "/index.html"))
        assert response.status == 200

    @pytest.mark.asyncio
    async def test_missing_file(self, server: P2PServer) -> None:
        response = await server.handle_static(make_mocked_request("GET", "/nope.html"))

        assert response.status == 404
        assert response.text == "The resource '/nope.html' was not found."

    @pytest.mark.asyncio
    async def test_directory_without_slash(self, server: P2PServer) -> None:
        response = await server.handle_static(make_mocked_request("GET", "/sub"))
        assert response.status == 404

    @pytest.mark.asyncio
    async def test_unknown_method(self, server: P2PServer) -> None:
        response = await server.handle_static(make_mocked_request("DELETE", "/index.html"))

        assert response.status == 400
        assert response.text == "Unknown HTTP-method"

    @pytest.mark.asyncio
    async def test_parent_traversal_rejected(self, server: P2PServer) -> None:
        response = await server.handle_static(make_mocked_request("GET", "/../secret.txt"))

        assert response.status == 400
        assert response.text == "Illegal request-target"

    @pytest.mark.asyncio
    async def test_percent_encoded_traversal_rejected(
        self, manager: MagicMock, tmp_path: Path
    ) -> None:
        """Test an encoded parent segment cannot reach files outside the document root."""
        document_root = tmp_path / "html"
        document_root.mkdir()
        (document_root / "index.html").write_text("<h1>momo</h1>")
        (tmp_path / "secret.txt").write_text("TOPSECRET")
        settings = make_settings(p2p=P2PConfig(document_root=str(document_root)))
        endpoint = Endpoint("0.0.0.0", 8080)  # noqa: S104
        server = P2PServer(MagicMock(), endpoint, Handle(manager), settings)

        async with TestServer(server.build_app()) as test_server:
            reader, writer = await asyncio.open_connection(test_server.host, test_server.port)
            writer.write(
                b"GET /%2e%2e/secret.txt HTTP/1.1\r\n"
                b"Host: localhost\r\n"
                b"Connection: close\r\n\r\n"
            )
            await writer.drain()
            response = await reader.read()
            writer.close()
            await writer.wait_closed()

        assert response.startswith(b"HTTP/1.1 400")
        assert b"Illegal request-target" in response
        assert b"TOPSECRET" not in response

    @pytest.mark.asyncio
    async def test_http10_response_closes(self, server: P2PServer) -> None:
        request = make_mocked_request("GET", "/index.html", version=HttpVersion10)
        response = await server.handle_static(request)
        assert response.keep_alive is False


class TestP2PSession:
    """Test WebSocket signaling message handling."""

    @pytest.fixture
    def websocket(self) -> MagicMock:
        websocket = MagicMock()
        websocket.closed = False
        websocket.send_str = AsyncMock()
        return websocket

    @pytest.fixture
    def session(self, websocket: MagicMock, manager: MagicMock) -> P2PSession:
        self.handle = Handle(manager)
        return P2PSession(websocket, self.handle, "p2p-test")

    def sent(self, websocket: MagicMock) -> list[dict]:
        return [json.loads(call.args[0]) for call in websocket.send_str.call_args_list]

    @pytest.mark.asyncio
    async def test_connect_sends_offer(
        self, session: P2PSession, websocket: MagicMock, manager: MagicMock
    ) -> None:
        await session.handle_message(json.dumps({"type": "connect"}))

        manager.create_offer.assert_awaited_once_with("p2p-test")
        assert self.sent(websocket) == [{"type": "offer", "sdp": "v=0 offer"}]

    @pytest.mark.asyncio
    async def test_offer_sends_answer(
        self, session: P2PSession, websocket: MagicMock, manager: MagicMock
    ) -> None:
        await session.handle_message(json.dumps({"type": "offer", "sdp": "v=0 remote"}))

        manager.accept_offer.assert_awaited_once_with("p2p-test", "v=0 remote")
        assert self.sent(websocket) == [{"type": "answer", "sdp": "v=0 answer"}]

    @pytest.mark.asyncio
    async def test_answer_applied(
        self, session: P2PSession, websocket: MagicMock, manager: MagicMock
    ) -> None:
        await session.handle_message(json.dumps({"type": "answer", "sdp": "v=0 remote"}))

        manager.accept_answer.assert_awaited_once_with("p2p-test", "v=0 remote")
        websocket.send_str.assert_not_called()

    @pytest.mark.asyncio
    async def test_candidate_added(self, session: P2PSession, manager: MagicMock) -> None:
        message = {
            "type": "candidate",
            "ice": {
                "candidate": "candidate:1 1 udp 2130706431 192.0.2.1 54321 typ host",
                "sdpMid": "0",
                "sdpMLineIndex": 0,
            },
        }
        await session.handle_message(json.dumps(message))

        manager.add_ice_candidate.assert_awaited_once_with(
            "p2p-test", message["ice"]["candidate"], "0", 0
        )

    @pytest.mark.asyncio
    async def test_close_message(self, session: P2PSession, manager: MagicMock) -> None:
        await session.handle_message(json.dumps({"type": "close"}))
        manager.close_connection.assert_awaited_once_with("p2p-test")

    @pytest.mark.asyncio
    async def test_invalid_json(self, session: P2PSession, websocket: MagicMock) -> None:
        await session.handle_message("{not json")

        [error] = self.sent(websocket)
        assert error["type"] == "error"
        assert "Invalid JSON" in error["message"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw_message", ["[1, 2]", "42", '"connect"', "null"])
    async def test_non_object_json_reported(
        self, session: P2PSession, websocket: MagicMock, manager: MagicMock, raw_message: str
    ) -> None:
        await session.handle_message(raw_message)

        [error] = self.sent(websocket)
        assert error["type"] == "error"
        assert "expected a JSON object" in error["message"]
        manager.create_offer.assert_not_called()

    @pytest.mark.asyncio
    async def test_message_after_release_ignored(
        self, session: P2PSession, websocket: MagicMock, manager: MagicMock
    ) -> None:
        self.handle.release()
        await session.handle_message(json.dumps({"type": "connect"}))

        manager.create_offer.assert_not_called()
        websocket.send_str.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_offer(self, session: P2PSession, websocket: MagicMock) -> None:
        """Test a malformed message is reported and the session survives."""
        await session.handle_message(json.dumps({"type": "offer"}))

        [error] = self.sent(websocket)
        assert error["type"] == "error"
        assert "Message processing error" in error["message"]

    @pytest.mark.asyncio
    async def test_negotiation_failure_reported(
        self, session: P2PSession, websocket: MagicMock, manager: MagicMock
    ) -> None:
        manager.accept_answer.side_effect = KeyError("p2p-test")
        await session.handle_message(json.dumps({"type": "answer", "sdp": "v=0"}))

        [error] = self.sent(websocket)
        assert error["type"] == "error"

    @pytest.mark.asyncio
    async def test_unknown_type_ignored(self, session: P2PSession, websocket: MagicMock) -> None:
        await session.handle_message(json.dumps({"type": "bogus"}))
        websocket.send_str.assert_not_called()

    @pytest.mark.asyncio
    async def test_close_after_release_is_noop(
        self, session: P2PSession, manager: MagicMock
    ) -> None:
        self.handle.release()
        await session.close()
        manager.close_connection.assert_not_called()


class TestP2PServer:
    """Test the assembled aiohttp application."""

    def test_kind_and_endpoint(self, server: P2PServer) -> None:
        assert server.kind is BackendKind.DIRECT_PEER
        assert server.endpoint == Endpoint("0.0.0.0", 8080)  # noqa: S104
        assert server.session_count == 0

    def test_requires_endpoint(self, manager: MagicMock) -> None:
        with pytest.raises(ValueError, match="requires a bind endpoint"):
            P2PServer(MagicMock(), None, Handle(manager), make_settings())

    def test_run_spawns_server(self, server: P2PServer) -> None:
        server.run()
        server._reactor.spawn.assert_called_once()
        coro = server._reactor.spawn.call_args.args[0]
        coro.close()

    def test_run_without_endpoint_raises(self, server: P2PServer) -> None:
        server._endpoint = None
        with pytest.raises(ValueError, match="requires a bind endpoint"):
            server.run()
        server._reactor.spawn.assert_not_called()

    @pytest.mark.asyncio
    async def test_shutdown_closes_open_websockets(
        self, server: P2PServer, manager: MagicMock
    ) -> None:
        """Test application shutdown closes browser sockets with going-away."""
        app = server.build_app()
        async with TestClient(TestServer(app)) as client:
            websocket = await client.ws_connect("/ws")
            await websocket.send_str(json.dumps({"type": "connect"}))
            await websocket.receive_json()

            closing = asyncio.create_task(server.close_websockets(app))
            message = await websocket.receive()
            await closing

            assert message.type == WSMsgType.CLOSE
            assert message.data == WSCloseCode.GOING_AWAY

        assert server.session_count == 0
        manager.close_connection.assert_awaited()

    @pytest.mark.asyncio
    async def test_websocket_signaling(self, server: P2PServer, manager: MagicMock) -> None:
        """Test a browser can connect over /ws and receive an offer."""
        async with TestClient(TestServer(server.build_app())) as client:
            websocket = await client.ws_connect("/ws")
            await websocket.send_str(json.dumps({"type": "connect"}))
            message = await websocket.receive_json()
            assert message == {"type": "offer", "sdp": "v=0 offer"}
            assert server.session_count == 1

            await websocket.close()

            page = await client.get("/")
            assert page.status == 200
            assert await page.text() == "<h1>momo</h1>"

        manager.close_connection.assert_awaited()
