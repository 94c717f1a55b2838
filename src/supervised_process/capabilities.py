"""Process-wide platform capability probes.

Each probe runs at most once per interpreter and its answer is shared by every
:class:`~supervised_process.process.Process`. Tests that change the conditions
a probe looks at call :func:`reset_capability_cache` afterwards.
"""

from __future__ import annotations

import logging
import os
import signal
import sys
import threading
from collections.abc import Callable

from supervised_process.pty import PtyNotAvailableError, open_pty_pair

logger = logging.getLogger(__name__)

# "1" forces the auxiliary status channel on, "0" forces it off.
STATUS_FALLBACK_ENV = "SUPERVISED_PROCESS_STATUS_FALLBACK"


class CapabilityProbe:
    """Lazily computed, cached boolean platform fact."""

    def __init__(self, name: str, probe: Callable[[], bool]) -> None:
        self.name = name
        self._probe = probe
        self._lock = threading.Lock()
        self._value: bool | None = None

    def __call__(self) -> bool:
        value = self._value
        if value is not None:
            return value
        with self._lock:
            if self._value is None:
                self._value = bool(self._probe())
                logger.debug("Capability %s = %s", self.name, self._value)
            return self._value

    def reset(self) -> None:
        with self._lock:
            self._value = None


def _probe_pty() -> bool:
    try:
        master_fd, slave_fd = open_pty_pair()
    except PtyNotAvailableError as e:
        logger.debug("PTY probe failed: %s", e)
        return False
    os.close(slave_fd)
    os.close(master_fd)
    return True


def _probe_tty() -> bool:
    if sys.platform == "win32":
        return False
    try:
        return os.isatty(1) and os.access("/dev/tty", os.W_OK)
    except OSError:
        return False


def _probe_unreliable_exit_status() -> bool:
    override = os.environ.get(STATUS_FALLBACK_ENV)
    if override is not None:
        return override.strip().lower() in ("1", "true", "yes", "on")
    if sys.platform == "win32":
        return False
    # With SIGCHLD ignored the kernel reaps children itself and their exit
    # status is gone before waitpid() can see it.
    return signal.getsignal(signal.SIGCHLD) == signal.SIG_IGN


pty_supported = CapabilityProbe("pty_supported", _probe_pty)
tty_supported = CapabilityProbe("tty_supported", _probe_tty)
unreliable_exit_status_reporting = CapabilityProbe("unreliable_exit_status_reporting", _probe_unreliable_exit_status)


def reset_capability_cache() -> None:
    """Forget every cached probe result so the next query re-probes."""
    for probe in (pty_supported, tty_supported, unreliable_exit_status_reporting):
        probe.reset()
