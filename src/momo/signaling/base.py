"""Base signaling backend abstraction.

Defines the contract every signaling backend (direct-peer, Sora, Ayame)
implements: construction against the reactor, an optional local endpoint,
a non-owning handle to the connection manager, and the settings; then a
non-blocking run() that registers the backend's operations on the reactor.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import NamedTuple

from aiohttp import web

from momo.config import BackendKind, Settings
from momo.errors import SignalingBackendError
from momo.handle import Handle
from momo.reactor import Reactor
from momo.rtc import ConnectionManager

logger = logging.getLogger(__name__)

ANY_ADDRESS = "0.0.0.0"  # noqa: S104
LOOPBACK_ADDRESS = "127.0.0.1"

# Seconds an in-flight request may keep the server alive after shutdown starts
SERVER_SHUTDOWN_TIMEOUT = 2.0


class Endpoint(NamedTuple):
    """TCP endpoint a backend binds."""

    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


class SignalingBackend(ABC):
    """Base signaling backend.

    All network callbacks run on the reactor thread. A backend never owns the
    connection manager; it reaches it through the handle for as long as the
    orchestrator keeps it alive.
    """

    def __init__(
        self,
        reactor: Reactor,
        endpoint: Endpoint | None,
        manager: Handle[ConnectionManager],
        settings: Settings,
    ) -> None:
        """Initialize backend.

        Args:
            reactor: Reactor that runs every backend operation
            endpoint: Local endpoint to bind, or None for outbound-only backends
            manager: Non-owning handle to the connection manager
            settings: Client settings
        """
        self._reactor = reactor
        self._endpoint = endpoint
        self._manager = manager
        self._settings = settings

    @property
    @abstractmethod
    def kind(self) -> BackendKind:
        """Backend variant."""
        pass

    @property
    def endpoint(self) -> Endpoint | None:
        """Local endpoint the backend binds, if any."""
        return self._endpoint

    @abstractmethod
    def run(self) -> None:
        """Register listen/connect operations on the reactor.

        Must not block: the operations start once the reactor runs.
        """
        pass


async def serve_app(
    app: web.Application,
    endpoint: Endpoint,
    shutdown_timeout: float = SERVER_SHUTDOWN_TIMEOUT,
) -> None:
    """Serve an aiohttp application until cancelled.

    Args:
        app: Application to serve
        endpoint: Bind address
        shutdown_timeout: Grace period for open handlers once cancelled

    Raises:
        SignalingBackendError: If the endpoint cannot be bound
    """
    runner = web.AppRunner(app, shutdown_timeout=shutdown_timeout)
    await runner.setup()
    try:
        site = web.TCPSite(runner, endpoint.host, endpoint.port)
        try:
            await site.start()
        except OSError as e:
            logger.error(
                "Failed to bind HTTP server",
                extra={"endpoint": str(endpoint), "error": str(e)},
            )
            raise SignalingBackendError(f"Failed to bind {endpoint}: {e}") from e

        logger.info("HTTP server listening", extra={"endpoint": str(endpoint)})
        await asyncio.get_running_loop().create_future()
    finally:
        await runner.cleanup()
        logger.info("HTTP server stopped", extra={"endpoint": str(endpoint)})
