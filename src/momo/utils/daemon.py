"""Detach the process from its controlling terminal."""

import os
import sys

STDIN_FILENO = 0
STDOUT_FILENO = 1
STDERR_FILENO = 2


def daemonize() -> None:
    """Run the rest of the process as a daemon (posix double fork).

    Must be called before the event loop, log sink, or any device is opened.

    Raises:
        OSError: If forking is unavailable or fails
    """
    if os.fork() > 0:
        os._exit(0)

    os.setsid()

    if os.fork() > 0:
        os._exit(0)

    sys.stdout.flush()
    sys.stderr.flush()
    with open(os.devnull, "rb") as devnull_in, open(os.devnull, "ab") as devnull_out:
        os.dup2(devnull_in.fileno(), STDIN_FILENO)
        os.dup2(devnull_out.fileno(), STDOUT_FILENO)
        os.dup2(devnull_out.fileno(), STDERR_FILENO)
