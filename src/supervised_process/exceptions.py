"""Exceptions raised by supervised_process.

Only genuine, non-recoverable conditions reach the caller: bad usage, a missing
working directory, a platform without a process primitive, a failed spawn and
an expired timeout. Readiness-poll failures are classified here too, but the
pipe transport always recovers from them locally.
"""

from __future__ import annotations


class ProcessError(Exception):
    """Base exception for all supervised_process errors."""


class InvalidStateError(ProcessError):
    """Raised when an operation is not allowed in the current lifecycle state."""


class WorkingDirectoryNotFoundError(ProcessError):
    """Raised when the requested working directory does not exist."""

    def __init__(self, cwd: str) -> None:
        self.cwd = cwd
        super().__init__(f'The provided cwd "{cwd}" does not exist.')


class PlatformNotSupportedError(ProcessError):
    """Raised when the interpreter cannot create child processes at all."""


class ProcessSpawnError(ProcessError):
    """Raised when the OS refuses to create the child process."""

    def __init__(self, command: str, cwd: str | None, os_error: str | None = None) -> None:
        self.command = command
        self.cwd = cwd
        self.os_error = os_error
        super().__init__(
            f'The command "{command}" failed.\n\nWorking directory: {cwd}\n\nError: {os_error or "unknown"}'
        )


class ProcessTimedOutError(ProcessError, TimeoutError):
    """Raised by wait() when the process outlives its timeout."""

    def __init__(self, command: str, timeout: float) -> None:
        self.command = command
        self.timeout = timeout
        super().__init__(f"Process timed out after {timeout} seconds: {command}")


class PollError(ProcessError):
    """Readiness polling failed; the transport treats this cycle as "no data"."""


class PollInterruptedError(PollError):
    """Readiness polling was interrupted by a signal before any channel was ready."""
