"""Direct-peer signaling: static file server plus browser WebSocket signaling."""

from momo.signaling.p2p.http_util import bad_request, mime_type, not_found, server_error
from momo.signaling.p2p.server import P2PServer, P2PSession

__all__ = ["P2PServer", "P2PSession", "bad_request", "mime_type", "not_found", "server_error"]
