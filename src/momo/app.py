"""Orchestrator: builds the components, runs the reactor, tears down in order.

Startup follows a fixed sequence (capturer, renderer, connection manager,
serial bridge, signal handlers, backends, dispatch hook) and any failure to
acquire a startup resource ends the process with status 1 before the reactor
runs. Teardown drains the reactor before releasing anything, so no backend
operation or dispatched callback can reach a released component.
"""

import logging
import sys
from collections.abc import Callable, Mapping, Sequence

from momo.capture import CapturerFactory, VideoCapturer, select_capturer_factory
from momo.cli import parse_args
from momo.config import BackendKind, Settings
from momo.errors import ResourceAcquisitionError
from momo.handle import Handle
from momo.reactor import Reactor
from momo.render import DispatchFunction, Renderer
from momo.rtc import ConnectionManager
from momo.serial_data import SerialDataChannel
from momo.shutdown import ShutdownCoordinator
from momo.signaling import (
    ANY_ADDRESS,
    LOOPBACK_ADDRESS,
    AyameBackend,
    Endpoint,
    P2PServer,
    SignalingBackend,
    SoraBackend,
)
from momo.utils.daemon import daemonize
from momo.utils.logging import setup_logging

logger = logging.getLogger(__name__)

BackendFactory = Callable[
    [Reactor, Endpoint | None, Handle[ConnectionManager], Settings], SignalingBackend
]
RendererFactory = Callable[[int, int, bool], Renderer]
DataChannelFactory = Callable[[Reactor, str, int], SerialDataChannel | None]
ManagerFactory = Callable[[Settings, VideoCapturer | None, Renderer | None], ConnectionManager]

BACKEND_FACTORIES: Mapping[BackendKind, BackendFactory] = {
    BackendKind.DIRECT_PEER: P2PServer,
    BackendKind.SORA: SoraBackend,
    BackendKind.AYAME: AyameBackend,
}

# Start order when direct-peer runs next to a broker
_BACKEND_ORDER = (BackendKind.DIRECT_PEER, BackendKind.SORA, BackendKind.AYAME)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


def backend_endpoint(kind: BackendKind, settings: Settings) -> Endpoint | None:
    """Local endpoint a backend binds.

    Direct-peer listens on every interface. Sora exposes its control endpoint
    on loopback only when a port was given. Ayame is outbound only.
    """
    if kind is BackendKind.DIRECT_PEER:
        return Endpoint(ANY_ADDRESS, settings.p2p.port)
    if kind is BackendKind.SORA and settings.broker.port >= 0:
        return Endpoint(LOOPBACK_ADDRESS, settings.broker.port)
    return None


def reactor_dispatch(reactor: Reactor) -> DispatchFunction:
    """Renderer dispatch hook that posts onto the reactor thread.

    Work handed to the hook once the reactor is stopping is dropped.
    """

    def dispatch(callback: Callable[[], None]) -> None:
        if reactor.stopped:
            return
        reactor.post(callback)

    return dispatch


class Orchestrator:
    """Owns every component for one run of the client."""

    def __init__(
        self,
        settings: Settings,
        *,
        capturer_factory: CapturerFactory | None = None,
        renderer_factory: RendererFactory = Renderer,
        data_channel_factory: DataChannelFactory = SerialDataChannel.create,
        manager_factory: ManagerFactory = ConnectionManager,
        backend_factories: Mapping[BackendKind, BackendFactory] = BACKEND_FACTORIES,
        reactor: Reactor | None = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            settings: Validated client settings
            capturer_factory: Capture factory (platform default if omitted)
            renderer_factory: Builds the window renderer
            data_channel_factory: Opens the serial data channel bridge
            manager_factory: Builds the connection manager
            backend_factories: Backend constructor per backend kind
            reactor: Reactor to run on (a new one if omitted)
        """
        self.settings = settings
        self._capturer_factory = capturer_factory
        self._renderer_factory = renderer_factory
        self._data_channel_factory = data_channel_factory
        self._manager_factory = manager_factory
        self._backend_factories = backend_factories

        self.reactor = reactor or Reactor()
        self.coordinator = ShutdownCoordinator(self.reactor.cancellation)
        self.backends: list[SignalingBackend] = []

    def run(self) -> int:
        """Run the client until SIGINT or SIGTERM.

        Returns:
            Process exit status
        """
        settings = self.settings

        capturer: VideoCapturer | None = None
        if not settings.no_video:
            factory = self._capturer_factory or select_capturer_factory()
            capturer = factory.create(settings)
            if capturer is None:
                print("failed to create capturer", file=sys.stderr)
                self.reactor.close()
                return EXIT_FAILURE

        renderer: Renderer | None = None
        if settings.window.enabled:
            window = settings.window
            renderer = self._renderer_factory(window.width, window.height, window.fullscreen)

        manager = self._manager_factory(settings, capturer, renderer)
        handle = Handle(manager)

        bridge: SerialDataChannel | None = None
        try:
            if settings.serial_device:
                bridge = self._data_channel_factory(
                    self.reactor, settings.serial_device, settings.serial_rate
                )
                if bridge is None:
                    print(
                        f"failed to open serial device {settings.serial_device}",
                        file=sys.stderr,
                    )
                    return EXIT_FAILURE
                manager.set_data_channel(bridge)

            self.coordinator.install(self.reactor)

            for kind in _BACKEND_ORDER:
                if kind not in settings.backends:
                    continue
                backend = self._backend_factories[kind](
                    self.reactor, backend_endpoint(kind, settings), handle, settings
                )
                self.backends.append(backend)
                backend.run()
                logger.info(
                    "Signaling backend started",
                    extra={"backend": kind.value, "endpoint": str(backend.endpoint)},
                )

            if renderer is not None:
                renderer.set_dispatch_function(reactor_dispatch(self.reactor))
                renderer.start()

            self.reactor.run()
        finally:
            # Also reached when startup fails part way: release what was acquired
            self.coordinator.mark_stopped()
            if renderer is not None:
                renderer.set_dispatch_function(None)
            self._release(renderer, handle, manager, bridge)

        return EXIT_SUCCESS

    def _release(
        self,
        renderer: Renderer | None,
        handle: Handle[ConnectionManager],
        manager: ConnectionManager,
        bridge: SerialDataChannel | None,
    ) -> None:
        self.reactor.drain()
        if renderer is not None:
            renderer.close()
        handle.release()
        self.reactor.run_teardown(manager.close())
        if bridge is not None:
            bridge.close()
        self.coordinator.uninstall()
        self.reactor.close()
        self.backends.clear()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the momo command.

    Args:
        argv: Arguments without the program name (defaults to sys.argv[1:])

    Returns:
        Process exit status
    """
    settings = parse_args(argv)

    if settings.daemon:
        daemonize()

    try:
        setup_logging(settings.log_level)
    except ResourceAcquisitionError as e:
        print(str(e), file=sys.stderr)
        return EXIT_FAILURE

    logger.info(
        "Starting client",
        extra={"backends": sorted(kind.value for kind in settings.backends)},
    )
    return Orchestrator(settings).run()
