"""Single-threaded reactor shared by every signaling backend.

The reactor wraps one asyncio event loop. Backends register their listen and
connect operations with spawn() before or while the loop runs; other threads
(the renderer's redraw loop) reach the loop only through post(). Stopping is
global: one CancellationContext stops the loop, and every outstanding
operation is cancelled together when the reactor is drained.

Thread-safety: spawn(), drain() and close() belong to the reactor thread.
post(), stop() and the cancellation context may be used from any thread.
"""

import asyncio
import logging
import threading
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

from momo.errors import FatalBackendError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationContext:
    """Once-only stop request shared by the reactor and the shutdown coordinator."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._listeners: list[Callable[[], None]] = []

    @property
    def stop_requested(self) -> bool:
        """Whether a stop has been requested."""
        return self._event.is_set()

    def add_listener(self, listener: Callable[[], None]) -> None:
        """Register a callable run once when the stop is requested.

        Listeners added after the request run immediately.
        """
        with self._lock:
            if not self._event.is_set():
                self._listeners.append(listener)
                return
        listener()

    def request_stop(self) -> bool:
        """Request a stop.

        Returns:
            True for the request that performed the transition, False for
            every later (redundant) request
        """
        with self._lock:
            if self._event.is_set():
                return False
            self._event.set()
            listeners = list(self._listeners)
            self._listeners.clear()

        for listener in listeners:
            listener()
        return True


class Reactor:
    """Cooperative event loop that runs until its cancellation context fires."""

    def __init__(self, cancellation: CancellationContext | None = None) -> None:
        """Initialize reactor.

        Args:
            cancellation: Shared stop request (a private one is created if omitted)
        """
        self.cancellation = cancellation or CancellationContext()
        self._loop = asyncio.new_event_loop()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._in_run = False
        self.cancellation.add_listener(self._wake)

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        """Underlying asyncio event loop."""
        return self._loop

    @property
    def stopped(self) -> bool:
        """Whether the reactor has been asked to stop."""
        return self.cancellation.stop_requested

    @property
    def pending(self) -> int:
        """Number of registered operations that have not finished."""
        return sum(1 for task in self._tasks if not task.done())

    def stop(self) -> None:
        """Ask the reactor to stop. Safe to call from any thread, repeatedly."""
        self.cancellation.request_stop()

    def spawn(
        self, coro: Coroutine[Any, Any, T], *, name: str | None = None
    ) -> "asyncio.Task[T]":
        """Register an operation with the reactor.

        The operation starts running once the reactor runs. Exceptions that
        escape it are logged and stay local to it, except FatalBackendError,
        which stops the whole reactor.

        Args:
            coro: Coroutine to run on the reactor thread
            name: Optional task name for logging

        Returns:
            Task wrapping the operation
        """
        task = self._loop.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def post(self, callback: Callable[..., Any], *args: Any) -> bool:
        """Schedule a callback onto the reactor thread from any thread.

        Work posted once the reactor is stopping is dropped, both at post time
        and when the callback would otherwise run.

        Returns:
            True if the callback was queued
        """
        if self.stopped or self._loop.is_closed():
            return False
        self._loop.call_soon_threadsafe(self._invoke, callback, args)
        return True

    def run(self) -> None:
        """Run until a stop is requested.

        Returns immediately if the stop was requested before the call.
        """
        self._in_run = True
        try:
            if self.stopped:
                return
            logger.info("Reactor running", extra={"operations": self.pending})
            self._loop.run_forever()
        finally:
            self._in_run = False
        logger.info("Reactor stopped")

    def drain(self) -> None:
        """Cancel every outstanding operation and let it unwind.

        Callbacks posted before the stop are flushed and dropped here, so no
        posted work survives the drain.
        """
        if self._loop.is_closed():
            return

        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info("Cancelling reactor operations", extra={"count": len(tasks)})
            self._loop.run_until_complete(asyncio.gather(*tasks, return_exceptions=True))

        self._loop.run_until_complete(asyncio.sleep(0))

    def run_teardown(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run a teardown coroutine to completion after the reactor stopped."""
        return self._loop.run_until_complete(coro)

    def close(self) -> None:
        """Drain and close the event loop. Idempotent."""
        if self._loop.is_closed():
            return
        self.drain()

        # Tasks started by libraries rather than spawn() (media pumps, transports)
        leftovers = [task for task in asyncio.all_tasks(self._loop) if not task.done()]
        for task in leftovers:
            task.cancel()
        if leftovers:
            self._loop.run_until_complete(asyncio.gather(*leftovers, return_exceptions=True))

        self._loop.run_until_complete(self._loop.shutdown_asyncgens())
        self._loop.run_until_complete(self._loop.shutdown_default_executor())
        self._loop.close()

    def _wake(self) -> None:
        if not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._stop_loop)

    def _stop_loop(self) -> None:
        # Only the run() call may be stopped; teardown runs must complete
        if self._in_run:
            self._loop.stop()

    def _invoke(self, callback: Callable[..., Any], args: tuple[Any, ...]) -> None:
        if self.stopped:
            logger.debug("Dropping callback posted to a stopping reactor")
            return
        callback(*args)

    def _on_task_done(self, task: "asyncio.Task[Any]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return

        exc = task.exception()
        if exc is None:
            return

        if isinstance(exc, FatalBackendError):
            logger.error(
                "Fatal backend error, stopping reactor",
                extra={"task": task.get_name(), "error": str(exc)},
            )
            self.stop()
            return

        logger.error(
            "Backend operation failed",
            extra={"task": task.get_name(), "error": str(exc)},
            exc_info=exc,
        )
