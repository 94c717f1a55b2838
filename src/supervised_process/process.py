"""Supervise one external command from spawn to exit status.

## Basic Usage

### Run a command and collect its exit code
```python
process = Process(["ls", "-la"])
exit_code = process.run()  # output is discarded when no callback is given
```

### Stream output as it arrives
```python
def on_output(stream: str, data: bytes) -> None:
    print(stream, data)  # stream is "out" or "err"

process = Process("make build", cwd="/project", timeout=300)
process.start(on_output)
while process.is_running():
    do_other_work()
exit_code = process.wait()
```

### Terminal modes
```python
# Let the child believe it talks to a terminal; its output arrives as "out"
process = Process(["python", "-i"], input=b"print(1)\\n", terminal_mode="pty")
process.run(on_output)
```

## Lifecycle

``READY --start()--> STARTED --(child seen dead)--> TERMINATED``

Every state-visible accessor first performs an observation cycle: query the
child's status, move output from the transport to the callback, and finalize
if the child is gone. The process is single-threaded; nothing drains the
child's output unless the caller observes or waits.

## Exit codes

- ``0``-``255``: the child's own exit status.
- ``128 + n``: the child was killed by signal ``n``.
- ``-1``: unknown. Only reported where the platform loses exit statuses
  (``SIGCHLD`` ignored and no auxiliary status available); the final
  :class:`ProcessStatus` is then marked signaled with ``termsig == -1``.
"""

from __future__ import annotations

import contextlib
import enum
import logging
import os
import shlex
import signal
import subprocess
import sys
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, BinaryIO

from supervised_process.capabilities import pty_supported, tty_supported, unreliable_exit_status_reporting
from supervised_process.descriptors import AUXILIARY, STDOUT, PipeSpec
from supervised_process.exceptions import (
    InvalidStateError,
    PlatformNotSupportedError,
    ProcessError,
    ProcessSpawnError,
    ProcessTimedOutError,
    WorkingDirectoryNotFoundError,
)
from supervised_process.pipes import AbstractPipes, ProcessInput, UnixPipes
from supervised_process.process_utils import get_process_tree_info, kill_process_tree
from supervised_process.pty import PtyNotAvailableError
from supervised_process.spawn import open_process
from supervised_process.status import ExitStatusReconciler, ProcessStatus, query_status
from supervised_process.windows_pipes import WindowsPipes

logger = logging.getLogger(__name__)

# Sleep between observations in wait() while the child is alive.
WAIT_POLL_INTERVAL = 0.001

# Runs the command in the background so the shell can report its PID and exit
# status on fd 3 even when our own view of the exit status is unreliable.
_STATUS_WRAPPER = (
    "{{ ({command}) <&3 3<&- 3>/dev/null & }} 3<&0; "
    "pid=$!; echo $pid >&3; wait $pid 2>/dev/null; code=$?; echo $code >&3; exit $code"
)

OutputCallback = Callable[[str, bytes], None]


class ProcessState(str, enum.Enum):
    READY = "ready"
    STARTED = "started"
    TERMINATED = "terminated"


class TerminalMode(str, enum.Enum):
    NONE = "none"
    TTY = "tty"
    PTY = "pty"


def _process_primitive_available() -> bool:
    return sys.platform not in ("emscripten", "wasi")


class Process:
    """
    One external command and the state machine around it.

    The child is always started through the shell. List commands are quoted
    for the platform's shell first, so list and string commands behave the
    same way.
    """

    def __init__(
        self,
        command: str | list[str],
        cwd: str | Path | None = None,
        env: Mapping[str, str | None] | None = None,
        input: ProcessInput = None,  # noqa: A002
        timeout: float | None = None,  # None means wait() never gives up
        terminal_mode: TerminalMode | str = TerminalMode.NONE,
    ) -> None:
        """
        Initialize the Process instance.

        Args:
            command: The command as a shell string or a list of arguments.
            cwd: Working directory for the child. Must exist.
            env: Environment overrides merged over the inherited environment.
                A None value removes the variable.
            input: Bytes, text or a binary stream fed to the child's standard input.
            timeout: Seconds wait() allows before killing the process tree.
            terminal_mode: "none" for pipes, "tty" to use the controlling
                terminal, "pty" to allocate a pseudo-terminal.

        Raises:
            PlatformNotSupportedError: If this interpreter cannot spawn processes.
            WorkingDirectoryNotFoundError: If ``cwd`` does not exist.
        """
        if not _process_primitive_available():
            error_message = f"Creating child processes is not supported on {sys.platform}."
            raise PlatformNotSupportedError(error_message)

        self._is_windows = sys.platform == "win32"
        self.command = command
        self._command_line = self._compile_command(command)
        self._cwd: str | None = None
        self.cwd = cwd
        self.env: dict[str, str | None] = dict(env or {})
        self.input = input
        self.timeout = timeout
        self._terminal_mode = TerminalMode(terminal_mode)

        self._state = ProcessState.READY
        self._exit_code: int | None = None
        self._status: ProcessStatus | None = None
        self._proc: subprocess.Popen[bytes] | None = None
        self._pid: int | None = None
        self._pipes: AbstractPipes | None = None
        self._callback: OutputCallback | None = None
        self._reconciler = ExitStatusReconciler()
        self._stdout = bytearray()
        self._stderr = bytearray()
        self._start_time: float | None = None
        self._end_time: float | None = None

    def __enter__(self) -> Process:
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: Any | None) -> None:
        self.close()

    def __del__(self) -> None:
        if getattr(self, "_state", None) is ProcessState.STARTED:
            # No tree kill here: its grace period would stall the garbage collector.
            with contextlib.suppress(OSError, ProcessError):
                self._finalize(kill_tree=False)

    def __repr__(self) -> str:
        return f"<Process {self._command_line!r} state={self._state.value} exit_code={self._exit_code}>"

    # Configuration

    @property
    def command_line(self) -> str:
        """The command line handed to the shell."""
        return self._command_line

    @property
    def cwd(self) -> str | None:
        return self._cwd

    @cwd.setter
    def cwd(self, cwd: str | Path | None) -> None:
        self._ensure_not_running("change the working directory")
        if cwd is not None:
            cwd = str(cwd)
            if not os.path.isdir(cwd):
                raise WorkingDirectoryNotFoundError(cwd)
        self._cwd = cwd

    @property
    def terminal_mode(self) -> TerminalMode:
        return self._terminal_mode

    @terminal_mode.setter
    def terminal_mode(self, mode: TerminalMode | str) -> None:
        self._ensure_not_running("change the terminal mode")
        self._terminal_mode = TerminalMode(mode)

    def enable_tty(self, state: bool = True) -> Process:
        """Bind the child's standard streams to the controlling terminal."""
        self.terminal_mode = TerminalMode.TTY if state else TerminalMode.NONE
        return self

    def enable_pty(self, state: bool = True) -> Process:
        """Run the child on a freshly allocated pseudo-terminal."""
        self.terminal_mode = TerminalMode.PTY if state else TerminalMode.NONE
        return self

    def _compile_command(self, command: str | list[str]) -> str:
        if isinstance(command, str):
            return command
        if self._is_windows:
            return subprocess.list2cmdline(command)
        return shlex.join(command)

    def _ensure_not_running(self, action: str) -> None:
        if getattr(self, "_state", ProcessState.READY) is ProcessState.STARTED:
            error_message = f"Cannot {action} while the process is running."
            raise InvalidStateError(error_message)

    # Lifecycle

    def run(self, callback: OutputCallback | None = None, env: Mapping[str, str | None] | None = None) -> int:
        """Start the process and wait for it. Returns the exit code."""
        self.start(callback, env)
        return self.wait()

    def start(self, callback: OutputCallback | None = None, env: Mapping[str, str | None] | None = None) -> None:
        """
        Spawn the child and return once its first status has been observed.

        Args:
            callback: Receives ``("out" | "err", data)`` for every chunk of
                output. Without a callback the output is discarded.
            env: Per-run environment overrides, applied over the instance's ``env``.

        Raises:
            InvalidStateError: If the process is already running.
            ProcessSpawnError: If the OS could not create the child.
        """
        if self.is_running():
            error_message = "Process is already running."
            raise InvalidStateError(error_message)

        self._reset()
        self._callback = callback
        read_mode = callback is not None
        merged_env = self._merge_env(env)
        self._reconciler = ExitStatusReconciler(unreliable_exit_status_reporting())

        pipes = self._create_pipes(read_mode)
        try:
            proc, channels = self._spawn(pipes, merged_env)
        except PtyNotAvailableError as e:
            logger.warning("PTY requested but not available, falling back to pipes: %s", e)
            pipes.close()
            pipes = UnixPipes(tty=False, pty=False, input=self.input, read_mode=read_mode)
            proc, channels = self._spawn(pipes, merged_env)

        pipes.open_channels(channels)
        self._pipes = pipes
        self._proc = proc
        self._pid = proc.pid
        self._state = ProcessState.STARTED
        self._start_time = time.time()

        auxiliary = channels.get(AUXILIARY)
        if auxiliary is not None:
            self._pid = self._read_auxiliary_pid(auxiliary, proc.pid)
            self._reconciler.seed_fallback(self._pid)

        logger.debug("Started pid %s: %s", self._pid, self._command_line)
        self.update_status(blocking=True)

    def wait(self, timeout: float | None = None) -> int:
        """
        Block until the child exits and return its exit code.

        Args:
            timeout: Seconds to wait. None falls back to the instance timeout;
                if both are None, waits indefinitely.

        Raises:
            InvalidStateError: If the process has not been started.
            ProcessTimedOutError: If the deadline passes; the process tree is killed first.
        """
        if not self.is_started():
            error_message = 'Process must be started before calling "wait()".'
            raise InvalidStateError(error_message)

        effective_timeout = timeout if timeout is not None else self.timeout
        deadline = time.monotonic() + effective_timeout if effective_timeout is not None else None

        while self._state is ProcessState.STARTED:
            self.update_status(blocking=True)
            if self._state is not ProcessState.STARTED:
                break
            if deadline is not None and time.monotonic() > deadline:
                self._handle_timeout(effective_timeout)  # type: ignore[arg-type]
            time.sleep(WAIT_POLL_INTERVAL)

        assert self._exit_code is not None
        return self._exit_code

    def update_status(self, blocking: bool = False) -> None:
        """Observe the child once: read its status, forward output, finalize if it died."""
        if self._state is not ProcessState.STARTED:
            return
        assert self._proc is not None

        raw = query_status(self._proc)
        self._read_pipes(raw.running and blocking, close=not raw.running)
        if not raw.running:
            # The child is gone: collect whatever it left in the channels.
            while self._read_pipes(blocking=False, close=True):
                pass

        self._status = self._reconciler.reconcile(raw)
        if not raw.running:
            self.close()

    def close(self) -> int | None:
        """
        Finalize the process and release everything it owns.

        A child that is still running is killed first. Returns the exit code,
        or None if the process was never started. Safe to call repeatedly.
        """
        return self._finalize(kill_tree=True)

    def _finalize(self, kill_tree: bool) -> int | None:
        if self._state is ProcessState.TERMINATED:
            return self._exit_code
        if self._state is ProcessState.READY:
            if self._pipes is not None:
                self._pipes.close()
            return None

        status = self._status
        if self._proc is not None and (status is None or status.running):
            status = self._kill_and_reap(kill_tree)

        assert status is not None
        exit_code, status = self._reconciler.finalize(status)

        if self._proc is not None:
            if self._proc.returncode is None:
                self._proc.returncode = exit_code
            self._proc = None
        if self._pipes is not None:
            self._pipes.close()

        self._status = status
        self._exit_code = exit_code
        self._state = ProcessState.TERMINATED
        self._end_time = time.time()
        # The callback may hold a reference back to this process.
        self._callback = None

        logger.info("Process %s exited with code %s: %s", self._pid, exit_code, self._command_line)
        return exit_code

    # Signals

    def send_signal(self, signum: int) -> None:
        """Send ``signum`` to the child. A no-op unless the process is running."""
        if not self.is_running() or self._proc is None:
            return
        if self._is_windows:
            self._proc.send_signal(signum)
            return
        assert self._pid is not None
        with contextlib.suppress(ProcessLookupError):
            os.kill(self._pid, signum)

    def terminate(self) -> None:
        """Ask the child to exit (SIGTERM)."""
        if self._is_windows:
            if self.is_running() and self._proc is not None:
                self._proc.terminate()
            return
        self.send_signal(signal.SIGTERM)

    def kill(self) -> None:
        """
        Immediately kill the child and all of its descendants.

        The exit status is collected by the next observation. Safe to call
        when the process already exited or was never started.
        """
        if self._state is not ProcessState.STARTED or self._proc is None:
            return
        try:
            kill_process_tree(self._proc.pid)
        except (OSError, subprocess.SubprocessError, AttributeError, ImportError) as e:
            logger.warning("Failed to kill process tree for %s: %s", self._proc.pid, e)
            with contextlib.suppress(ProcessLookupError, PermissionError, OSError):
                self._proc.kill()

    # State

    def is_started(self) -> bool:
        return self._state is not ProcessState.READY

    def is_running(self) -> bool:
        if self._state is not ProcessState.STARTED:
            return False
        self.update_status()
        return self._state is ProcessState.STARTED

    def is_terminated(self) -> bool:
        self.update_status()
        return self._state is ProcessState.TERMINATED

    @property
    def state(self) -> ProcessState:
        self.update_status()
        return self._state

    @property
    def exit_code(self) -> int | None:
        """The exit code, or None until the process has terminated."""
        self.update_status()
        return self._exit_code

    @property
    def process_status(self) -> ProcessStatus | None:
        """The latest reconciled status snapshot."""
        self.update_status()
        return self._status

    def has_been_signaled(self) -> bool:
        status = self.process_status
        return status is not None and not status.running and status.signaled

    @property
    def term_signal(self) -> int | None:
        """Signal that killed the child; -1 if a signal death is assumed but unknown."""
        status = self.process_status
        if status is None or status.running or not status.signaled:
            return None
        return status.termsig

    @property
    def pid(self) -> int | None:
        """PID of the command itself, even when it runs under the status wrapper."""
        return self._pid

    @property
    def output(self) -> bytes:
        """Everything read from the child's output channel so far."""
        self.update_status()
        return bytes(self._stdout)

    @property
    def error_output(self) -> bytes:
        """Everything read from the child's error channel so far."""
        self.update_status()
        return bytes(self._stderr)

    @property
    def start_time(self) -> float | None:
        return self._start_time

    @property
    def end_time(self) -> float | None:
        return self._end_time

    @property
    def duration(self) -> float | None:
        """Seconds between start and finalization, or None while unfinished."""
        if self._start_time is None or self._end_time is None:
            return None
        return self._end_time - self._start_time

    # Internals

    def _reset(self) -> None:
        if self._pipes is not None:
            self._pipes.close()
        self._pipes = None
        self._proc = None
        self._pid = None
        self._callback = None
        self._exit_code = None
        self._status = None
        self._stdout = bytearray()
        self._stderr = bytearray()
        self._start_time = None
        self._end_time = None
        self._state = ProcessState.READY

    def _merge_env(self, env: Mapping[str, str | None] | None) -> dict[str, str]:
        merged = dict(os.environ)
        for overrides in (self.env, env or {}):
            for name, value in overrides.items():
                if value is None:
                    merged.pop(name, None)
                else:
                    merged[name] = str(value)
        return merged

    def _create_pipes(self, read_mode: bool) -> AbstractPipes:
        if self._is_windows:
            if self._terminal_mode is not TerminalMode.NONE:
                logger.warning(
                    "%s requested but not available on Windows, falling back to pipes", self._terminal_mode.name
                )
            return WindowsPipes(input=self.input, read_mode=read_mode)

        tty = pty = False
        if self._terminal_mode is TerminalMode.TTY:
            tty = tty_supported()
            if not tty:
                logger.warning("TTY requested but not available, falling back to pipes")
        elif self._terminal_mode is TerminalMode.PTY:
            pty = pty_supported()
            if not pty:
                logger.warning("PTY requested but not available, falling back to pipes")

        return UnixPipes(tty=tty, pty=pty, input=self.input, read_mode=read_mode)

    def _spawn(
        self, pipes: AbstractPipes, env: dict[str, str]
    ) -> tuple[subprocess.Popen[bytes], dict[int, BinaryIO]]:
        descriptors = pipes.get_descriptors()
        command_line = self._command_line
        if self._reconciler.unreliable_reporting and not self._is_windows:
            descriptors[AUXILIARY] = PipeSpec("w")
            command_line = _STATUS_WRAPPER.format(command=command_line)

        try:
            return open_process(command_line, descriptors, env, self._cwd)
        except OSError as e:
            pipes.close()
            raise ProcessSpawnError(self._command_line, self._cwd, str(e)) from e

    def _read_auxiliary_pid(self, stream: BinaryIO, default: int) -> int:
        line = stream.readline()
        try:
            return int(line.strip())
        except ValueError:
            logger.debug("No PID on the auxiliary channel (got %r), using %d", line, default)
            return default

    def _read_pipes(self, blocking: bool, close: bool) -> bool:
        if self._pipes is None:
            return False
        result = self._pipes.read_and_write(blocking, close)
        if result is None:
            return False

        for index, data in result.items():
            if index == AUXILIARY:
                self._reconciler.record_fallback_exit(data)
                continue
            if index == STDOUT:
                self._stdout += data
                stream_name = "out"
            else:
                self._stderr += data
                stream_name = "err"
            if self._callback is not None:
                self._callback(stream_name, data)
        return True

    def _kill_and_reap(self, kill_tree: bool) -> ProcessStatus:
        assert self._proc is not None
        if kill_tree:
            self.kill()
        else:
            with contextlib.suppress(OSError):
                self._proc.kill()
        raw = query_status(self._proc)
        while raw.running:
            time.sleep(WAIT_POLL_INTERVAL)
            raw = query_status(self._proc)
        if self._pipes is not None:
            while self._read_pipes(blocking=False, close=True):
                pass
        return self._reconciler.reconcile(raw)

    def _handle_timeout(self, timeout: float) -> None:
        if self._proc is not None:
            logger.debug("Timed out process tree:\n%s", get_process_tree_info(self._proc.pid))
        logger.warning("Killing timed out process: %s", self._command_line)
        self.close()
        raise ProcessTimedOutError(self._command_line, timeout)
