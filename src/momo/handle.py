"""Non-owning handle to an object owned by the orchestrator."""

import weakref
from typing import Generic, TypeVar

from momo.errors import HandleReleasedError

T = TypeVar("T")


class Handle(Generic[T]):
    """Weak, explicitly releasable reference.

    Components that merely use a shared object (backends using the connection
    manager) hold a Handle. Only the owner calls release(); every get() after
    that raises instead of touching a released object.
    """

    def __init__(self, target: T) -> None:
        self._ref = weakref.ref(target)
        self._released = False

    @property
    def valid(self) -> bool:
        """Whether the target can still be used."""
        return not self._released and self._ref() is not None

    def get(self) -> T:
        """Return the target.

        Raises:
            HandleReleasedError: If the owner released the target
        """
        target = None if self._released else self._ref()
        if target is None:
            raise HandleReleasedError("Handle used after its target was released")
        return target

    def release(self) -> None:
        """Invalidate the handle. Called by the owner only."""
        self._released = True
