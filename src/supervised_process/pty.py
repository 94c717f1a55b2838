"""Pseudo-terminal allocation.

Only POSIX pseudo-terminals are supported. Windows has no ``pty`` module, so
allocation raises :class:`PtyNotAvailableError` there and the controller falls
back to anonymous pipes.
"""

import logging
import sys

logger = logging.getLogger(__name__)


class PtyNotAvailableError(Exception):
    """Raised when PTY functionality is not available on the current platform."""


def open_pty_pair() -> tuple[int, int]:
    """Allocate a pseudo-terminal.

    Returns:
        ``(master_fd, slave_fd)``. The caller owns both descriptors.

    Raises:
        PtyNotAvailableError: If the platform has no PTY support or allocation fails.
    """
    if sys.platform == "win32":
        msg = f"PTY not available on {sys.platform}"
        raise PtyNotAvailableError(msg)
    try:
        import pty  # noqa: PLC0415
    except ImportError as e:
        msg = f"PTY not available on {sys.platform}"
        raise PtyNotAvailableError(msg) from e

    try:
        master_fd, slave_fd = pty.openpty()
    except OSError as e:
        msg = f"PTY allocation failed: {e}"
        raise PtyNotAvailableError(msg) from e

    logger.debug("Allocated PTY master=%d slave=%d", master_fd, slave_fd)
    return master_fd, slave_fd
