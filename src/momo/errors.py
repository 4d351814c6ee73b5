"""Error taxonomy for the client.

Configuration and resource errors are terminal and reported at startup.
Signaling errors stay local to the backend that raised them unless the
backend raises FatalBackendError, which asks the whole reactor to stop.
"""


class MomoError(Exception):
    """Base class for all client errors."""


class ConfigurationError(MomoError, ValueError):
    """Malformed, out-of-range, or mutually incompatible settings."""


class ResourceAcquisitionError(MomoError):
    """A startup resource (log sink, capturer, serial port) failed to open."""


class SignalingBackendError(MomoError):
    """Network or protocol failure local to one signaling backend."""


class FatalBackendError(SignalingBackendError):
    """Backend failure that requires the whole reactor to stop."""


class HandleReleasedError(MomoError):
    """A non-owning handle was used after its owner released the target."""
