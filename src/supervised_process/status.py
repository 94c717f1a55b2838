"""Child process status snapshots and exit-code reconciliation.

:func:`query_status` is the OS status primitive: a non-blocking look at the
child that never raises for a child that is already gone. Its answers can be
imprecise. A child reaped behind our back (for example because ``SIGCHLD`` is
ignored) reports the :data:`UNKNOWN_EXIT_CODE` sentinel, and some status
sources only report the real exit code on the first query after death.
:class:`ExitStatusReconciler` turns those raw snapshots into the status the
controller exposes.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, replace
from subprocess import Popen
from typing import Any

logger = logging.getLogger(__name__)

UNKNOWN_EXIT_CODE = -1


@dataclass(frozen=True)
class ProcessStatus:
    """One observation of a child process."""

    pid: int | None
    running: bool
    exitcode: int = UNKNOWN_EXIT_CODE
    signaled: bool = False
    termsig: int = 0


def _status_from_returncode(pid: int, returncode: int) -> ProcessStatus:
    if returncode < 0 and sys.platform != "win32":
        return ProcessStatus(pid=pid, running=False, signaled=True, termsig=-returncode)
    return ProcessStatus(pid=pid, running=False, exitcode=returncode)


def query_status(proc: Popen[Any]) -> ProcessStatus:
    """Report whether ``proc`` is still running and, if not, how it ended.

    On POSIX the child is reaped with ``waitpid(WNOHANG)`` and the decoded
    result is stored on ``proc.returncode`` so later queries agree with it.
    """
    if proc.returncode is not None:
        return _status_from_returncode(proc.pid, proc.returncode)

    if sys.platform == "win32":
        returncode = proc.poll()
        if returncode is None:
            return ProcessStatus(pid=proc.pid, running=True)
        return _status_from_returncode(proc.pid, returncode)

    try:
        pid, wait_status = os.waitpid(proc.pid, os.WNOHANG)
    except ChildProcessError:
        # Somebody else reaped it, the exit status is lost.
        return ProcessStatus(pid=proc.pid, running=False)

    if pid == 0:
        return ProcessStatus(pid=proc.pid, running=True)

    proc.returncode = os.waitstatus_to_exitcode(wait_status)
    return _status_from_returncode(proc.pid, proc.returncode)


class ExitStatusReconciler:
    """Turns raw status snapshots into a trustworthy final status.

    Three corrections are applied:

    - stale exit codes: the first real exit code seen for a dead child is
      cached and substituted into later snapshots that only carry the sentinel;
    - fallback status: when the auxiliary status channel is in use, the PID and
      exit status it reported override a sentinel snapshot;
    - signal deaths: :meth:`finalize` maps them to ``128 + signal`` and marks
      an unknown exit on an unreliable platform as "signaled, signal unknown".
    """

    def __init__(self, unreliable_reporting: bool = False) -> None:
        self.unreliable_reporting = unreliable_reporting
        self.cached_exit_code: int | None = None
        self.fallback: ProcessStatus | None = None

    def seed_fallback(self, pid: int) -> None:
        """Start tracking the real child reported on the auxiliary channel.

        Until its exit status arrives the child is assumed to be signaled with
        an unknown signal.
        """
        self.fallback = ProcessStatus(pid=pid, running=True, signaled=True, termsig=-1)

    def record_fallback_exit(self, data: bytes) -> None:
        """Parse an exit status line written to the auxiliary channel."""
        if self.fallback is None or not self.fallback.signaled:
            return
        lines = [line for line in data.decode("ascii", errors="replace").splitlines() if line.strip()]
        if not lines:
            return
        try:
            code = int(lines[-1].strip())
        except ValueError:
            logger.debug("Ignoring malformed auxiliary status line: %r", lines[-1])
            return

        if code > 128:
            self.fallback = replace(self.fallback, running=False, exitcode=code, termsig=code - 128)
        else:
            self.fallback = replace(self.fallback, running=False, exitcode=code, signaled=False, termsig=0)

    def reconcile(self, status: ProcessStatus) -> ProcessStatus:
        if status.running:
            return status

        if self.cached_exit_code is None and status.exitcode != UNKNOWN_EXIT_CODE:
            self.cached_exit_code = status.exitcode
        elif self.cached_exit_code is not None and status.exitcode == UNKNOWN_EXIT_CODE:
            status = replace(status, exitcode=self.cached_exit_code)

        if self.fallback is not None and status.exitcode == UNKNOWN_EXIT_CODE and not status.signaled:
            status = replace(
                status,
                pid=self.fallback.pid,
                exitcode=self.fallback.exitcode,
                signaled=self.fallback.signaled,
                termsig=self.fallback.termsig,
            )
        return status

    def finalize(self, status: ProcessStatus) -> tuple[int, ProcessStatus]:
        """Return the exit code exposed to callers and the final status."""
        exit_code = status.exitcode
        if status.signaled and status.termsig > 0:
            exit_code = 128 + status.termsig
        elif exit_code == UNKNOWN_EXIT_CODE and self.unreliable_reporting:
            status = replace(status, signaled=True, termsig=-1)
        return exit_code, status
