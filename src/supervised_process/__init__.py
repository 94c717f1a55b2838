"""Launch and supervise a child process through a typed lifecycle state machine."""

from __future__ import annotations

__version__ = "1.0.0"

from supervised_process.capabilities import (
    pty_supported,
    reset_capability_cache,
    tty_supported,
    unreliable_exit_status_reporting,
)
from supervised_process.descriptors import FileSpec, PipeSpec, PtySpec
from supervised_process.exceptions import (
    InvalidStateError,
    PlatformNotSupportedError,
    PollError,
    PollInterruptedError,
    ProcessError,
    ProcessSpawnError,
    ProcessTimedOutError,
    WorkingDirectoryNotFoundError,
)
from supervised_process.pipes import AbstractPipes, UnixPipes
from supervised_process.process import Process, ProcessState, TerminalMode
from supervised_process.process_utils import get_process_tree_info, kill_process_tree
from supervised_process.pty import PtyNotAvailableError
from supervised_process.status import UNKNOWN_EXIT_CODE, ProcessStatus
from supervised_process.subprocess_runner import execute_subprocess_run, subprocess_run
from supervised_process.windows_pipes import WindowsPipes

__all__ = [
    "UNKNOWN_EXIT_CODE",
    "AbstractPipes",
    "FileSpec",
    "InvalidStateError",
    "PipeSpec",
    "PlatformNotSupportedError",
    "PollError",
    "PollInterruptedError",
    "Process",
    "ProcessError",
    "ProcessSpawnError",
    "ProcessState",
    "ProcessStatus",
    "ProcessTimedOutError",
    "PtyNotAvailableError",
    "PtySpec",
    "TerminalMode",
    "UnixPipes",
    "WindowsPipes",
    "WorkingDirectoryNotFoundError",
    "execute_subprocess_run",
    "get_process_tree_info",
    "kill_process_tree",
    "pty_supported",
    "reset_capability_cache",
    "subprocess_run",
    "tty_supported",
    "unreliable_exit_status_reporting",
]
