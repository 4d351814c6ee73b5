"""HTTP helpers for the direct-peer static file server.

MIME type lookup and the canned error responses. Error responses are HTML,
name the offending input in their body, and mirror the request's keep-alive.
"""

from pathlib import PurePosixPath

from aiohttp import web

DEFAULT_MIME_TYPE = "application/text"

MIME_TYPES = {
    ".htm": "text/html",
    ".html": "text/html",
    ".php": "text/html",
    ".css": "text/css",
    ".txt": "text/plain",
    ".js": "application/javascript",
    ".json": "application/json",
    ".xml": "application/xml",
    ".swf": "application/x-shockwave-flash",
    ".flv": "video/x-flv",
    ".png": "image/png",
    ".jpe": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".jpg": "image/jpeg",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".ico": "image/vnd.microsoft.icon",
    ".tiff": "image/tiff",
    ".tif": "image/tiff",
    ".svg": "image/svg+xml",
    ".svgz": "image/svg+xml",
}


def mime_type(path: str) -> str:
    """Content type for a file path, by extension (case-insensitive).

    Args:
        path: File path or request target

    Returns:
        Content type, or DEFAULT_MIME_TYPE for unknown extensions
    """
    extension = PurePosixPath(path).suffix.lower()
    return MIME_TYPES.get(extension, DEFAULT_MIME_TYPE)


def _html_response(request: web.Request, status: int, body: str) -> web.Response:
    response = web.Response(status=status, text=body, content_type="text/html")
    if not request.keep_alive:
        response.force_close()
    return response


def bad_request(request: web.Request, why: str) -> web.Response:
    """400 response whose body is the reason."""
    return _html_response(request, 400, why)


def not_found(request: web.Request, target: str) -> web.Response:
    """404 response naming the missing resource."""
    return _html_response(request, 404, f"The resource '{target}' was not found.")


def server_error(request: web.Request, what: str) -> web.Response:
    """500 response naming the error."""
    return _html_response(request, 500, f"An error occurred: '{what}'")
