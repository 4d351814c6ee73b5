"""Signal-driven shutdown.

SIGINT and SIGTERM race to request the stop; whichever arrives first performs
the Running -> StopRequested transition and every later delivery is a no-op.
The transition to Stopped happens when the reactor's run call returns.
"""

import logging
import signal
from enum import Enum

from momo.reactor import CancellationContext, Reactor

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownState(str, Enum):
    """Shutdown state machine states."""

    RUNNING = "running"
    STOP_REQUESTED = "stop_requested"
    STOPPED = "stopped"


class ShutdownCoordinator:
    """Installs termination signal handlers and tracks the shutdown state."""

    def __init__(self, cancellation: CancellationContext) -> None:
        """Initialize shutdown coordinator.

        Args:
            cancellation: Stop request shared with the reactor
        """
        self._cancellation = cancellation
        self._reactor: Reactor | None = None
        self._stopped = False

    @property
    def state(self) -> ShutdownState:
        """Current shutdown state."""
        if self._stopped:
            return ShutdownState.STOPPED
        if self._cancellation.stop_requested:
            return ShutdownState.STOP_REQUESTED
        return ShutdownState.RUNNING

    def install(self, reactor: Reactor) -> None:
        """Watch for termination signals on the reactor's loop.

        Must be called from the main thread before any backend starts.
        """
        for sig in SHUTDOWN_SIGNALS:
            reactor.loop.add_signal_handler(sig, self._on_signal)
        self._reactor = reactor
        logger.debug("Shutdown signal handlers installed")

    def uninstall(self) -> None:
        """Remove the signal handlers installed by install()."""
        if self._reactor is None:
            return
        loop = self._reactor.loop
        if not loop.is_closed():
            for sig in SHUTDOWN_SIGNALS:
                loop.remove_signal_handler(sig)
        self._reactor = None

    def mark_stopped(self) -> None:
        """Record that the reactor's run call has returned."""
        self._stopped = True
        logger.info("Shutdown complete, releasing components")

    def _on_signal(self) -> None:
        # May run with reactor internals mid-operation: request the stop only
        self._cancellation.request_stop()
