"""Window renderer for remote video.

The redraw loop runs on its own thread, driven by a refresh timer. Frames are
pushed in from the reactor thread through on_frame(); anything the redraw
loop needs to do to reactor-owned state goes through the dispatch function
installed by the orchestrator.
"""

import logging
import threading
from collections.abc import Callable

import cv2
import numpy as np

logger = logging.getLogger(__name__)

DispatchFunction = Callable[[Callable[[], None]], None]

WINDOW_NAME = "Momo"
REFRESH_INTERVAL_MS = 16
_QUIT_KEYS = (ord("q"), 27)


class Renderer:
    """Shows every remote video track side by side in one window.

    Thread-safety: add_track/remove_track/on_frame/set_dispatch_function may
    be called from any thread; the window itself is only touched by the
    redraw thread.
    """

    def __init__(
        self,
        width: int,
        height: int,
        fullscreen: bool = False,
        refresh_interval_ms: int = REFRESH_INTERVAL_MS,
    ) -> None:
        """Initialize renderer.

        Args:
            width: Window width in pixels
            height: Window height in pixels
            fullscreen: Use a fullscreen window
            refresh_interval_ms: Redraw period
        """
        self.width = width
        self.height = height
        self.fullscreen = fullscreen
        self._refresh_interval_ms = refresh_interval_ms

        self._lock = threading.Lock()
        self._frames: dict[str, np.ndarray | None] = {}
        self._dispatch: DispatchFunction | None = None
        self._close_listeners: list[Callable[[], None]] = []

        self._running = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def tracks(self) -> list[str]:
        with self._lock:
            return list(self._frames)

    def start(self) -> None:
        """Start the redraw thread."""
        if self._thread is not None:
            return
        self._running.set()
        self._thread = threading.Thread(target=self._render_loop, name="renderer", daemon=True)
        self._thread.start()
        logger.info(
            "Renderer started",
            extra={"width": self.width, "height": self.height, "fullscreen": self.fullscreen},
        )

    def set_dispatch_function(self, dispatch: DispatchFunction | None) -> None:
        """Install (or clear, with None) the hook used to reach the reactor."""
        with self._lock:
            self._dispatch = dispatch

    def dispatch(self, callback: Callable[[], None]) -> bool:
        """Hand a callback to the reactor through the installed hook.

        Returns:
            False if no hook is installed and the callback was dropped
        """
        with self._lock:
            dispatch = self._dispatch
        if dispatch is None:
            return False
        dispatch(callback)
        return True

    def add_close_listener(self, listener: Callable[[], None]) -> None:
        """Register a callback run on the reactor thread when the window closes."""
        self._close_listeners.append(listener)

    def add_track(self, track_id: str) -> None:
        with self._lock:
            self._frames.setdefault(track_id, None)
        logger.info("Renderer track added", extra={"track_id": track_id})

    def remove_track(self, track_id: str) -> None:
        with self._lock:
            self._frames.pop(track_id, None)
        logger.info("Renderer track removed", extra={"track_id": track_id})

    def on_frame(self, track_id: str, frame: np.ndarray) -> None:
        """Store the latest BGR frame for a track."""
        with self._lock:
            if track_id in self._frames:
                self._frames[track_id] = frame

    def compose(self) -> np.ndarray | None:
        """Tile the latest frames horizontally into one window-sized image.

        Returns:
            Composed image, or None when no track has produced a frame
        """
        with self._lock:
            frames = [frame for frame in self._frames.values() if frame is not None]
        if not frames:
            return None

        tile_width = max(1, self.width // len(frames))
        tiles = [cv2.resize(frame, (tile_width, self.height)) for frame in frames]
        return np.hstack(tiles)

    def close(self) -> None:
        """Stop the redraw thread and destroy the window."""
        self._running.clear()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        with self._lock:
            self._frames.clear()
            self._dispatch = None
        logger.info("Renderer closed")

    def _notify_closed(self) -> None:
        for listener in self._close_listeners:
            listener()

    def _render_loop(self) -> None:
        flags = cv2.WINDOW_NORMAL
        cv2.namedWindow(WINDOW_NAME, flags)
        if self.fullscreen:
            cv2.setWindowProperty(WINDOW_NAME, cv2.WND_PROP_FULLSCREEN, cv2.WINDOW_FULLSCREEN)
        else:
            cv2.resizeWindow(WINDOW_NAME, self.width, self.height)

        try:
            while self._running.is_set():
                image = self.compose()
                if image is not None:
                    cv2.imshow(WINDOW_NAME, image)

                key = cv2.waitKey(self._refresh_interval_ms) & 0xFF
                closed = cv2.getWindowProperty(WINDOW_NAME, cv2.WND_PROP_VISIBLE) < 1
                if key in _QUIT_KEYS or closed:
                    logger.info("Renderer window closed by user")
                    self.dispatch(self._notify_closed)
                    break
        finally:
            cv2.destroyWindow(WINDOW_NAME)
