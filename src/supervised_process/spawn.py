"""The OS process-creation primitive.

:func:`open_process` starts a command through the shell with the standard
streams bound as a descriptor set describes, and hands back the parent's ends
of whatever channels were opened, keyed like the descriptor set.
"""

from __future__ import annotations

import contextlib
import logging
import os
import signal
import subprocess
import sys
from collections.abc import Callable, Mapping
from typing import IO, Any, BinaryIO

from supervised_process.descriptors import AUXILIARY, STDERR, STDIN, STDOUT, DescriptorSpec, FileSpec, PipeSpec, PtySpec
from supervised_process.pty import open_pty_pair

logger = logging.getLogger(__name__)


def _binary_mode(mode: str) -> str:
    mode = mode.replace("c", "w")
    return mode if "b" in mode else mode + "b"


def _auxiliary_preexec(write_fd: int) -> Callable[[], None]:
    def _setup() -> None:
        # The wrapper shell must be able to wait() for its own child.
        signal.signal(signal.SIGCHLD, signal.SIG_DFL)
        # The standard streams are already in place and subprocess keeps its
        # error pipe off fd 3 (see open_process), so nothing needed lives there.
        if write_fd != AUXILIARY:
            os.dup2(write_fd, AUXILIARY)

    return _setup


def open_process(
    command: str,
    descriptors: Mapping[int, DescriptorSpec],
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
) -> tuple[subprocess.Popen[bytes], dict[int, BinaryIO]]:
    """Start ``command`` through the shell.

    Args:
        command: Compiled command line.
        descriptors: Descriptor set for fds 0-2 and optionally the auxiliary fd 3.
        env: Complete environment for the child.
        cwd: Working directory for the child.

    Returns:
        The process handle and the parent ends of the opened channels. Pipe and
        pseudo-terminal channels are unbuffered binary streams; file bindings
        have no parent end.

    Raises:
        OSError: If the child could not be created.
        PtyNotAvailableError: If a pseudo-terminal was requested and none could be allocated.
    """
    std: dict[int, Any] = {}
    channels: dict[int, BinaryIO] = {}
    child_files: list[IO[bytes]] = []
    child_fds: list[int] = []
    master_fd: int | None = None
    slave_fd: int | None = None
    preexec_fn: Callable[[], None] | None = None
    pass_fds: tuple[int, ...] = ()

    try:
        auxiliary = descriptors.get(AUXILIARY)
        if auxiliary is not None:
            if sys.platform == "win32" or not isinstance(auxiliary, PipeSpec):
                msg = "The auxiliary status channel requires a POSIX pipe"
                raise ValueError(msg)
            # Opened first and held until Popen returns: if fd 3 is free it lands on
            # one of our ends, so subprocess never puts its error pipe there.
            read_fd, write_fd = os.pipe()
            channels[AUXILIARY] = open(read_fd, "rb", buffering=0)  # noqa: SIM115
            child_fds.append(write_fd)
            preexec_fn = _auxiliary_preexec(write_fd)
            pass_fds = (AUXILIARY,)

        for index, spec in sorted(descriptors.items()):
            if index == AUXILIARY:
                continue
            if isinstance(spec, PipeSpec):
                std[index] = subprocess.PIPE
            elif isinstance(spec, FileSpec):
                handle = open(spec.path, _binary_mode(spec.mode), buffering=0)  # noqa: SIM115
                child_files.append(handle)
                std[index] = handle
            elif isinstance(spec, PtySpec):
                if master_fd is None:
                    master_fd, slave_fd = open_pty_pair()
                    child_fds.append(slave_fd)
                std[index] = slave_fd
                if index == STDIN:
                    channels[STDIN] = open(os.dup(master_fd), "wb", buffering=0)  # noqa: SIM115
                elif STDOUT not in channels:
                    channels[STDOUT] = open(os.dup(master_fd), "rb", buffering=0)  # noqa: SIM115
            else:
                msg = f"Unsupported descriptor specification for fd {index}: {spec!r}"
                raise TypeError(msg)

        logger.debug("Spawning %r with descriptors %s", command, dict(descriptors))
        proc = subprocess.Popen(  # noqa: S602
            command,
            shell=True,
            stdin=std.get(STDIN),
            stdout=std.get(STDOUT),
            stderr=std.get(STDERR),
            cwd=cwd,
            env=dict(env) if env is not None else None,
            bufsize=0,
            pass_fds=pass_fds,
            preexec_fn=preexec_fn,  # noqa: PLW1509
            start_new_session=master_fd is not None,
        )
    except BaseException:
        for stream in channels.values():
            with contextlib.suppress(OSError):
                stream.close()
        raise
    finally:
        for handle in child_files:
            with contextlib.suppress(OSError):
                handle.close()
        for fd in child_fds:
            with contextlib.suppress(OSError):
                os.close(fd)
        if master_fd is not None:
            with contextlib.suppress(OSError):
                os.close(master_fd)

    for index, stream in ((STDIN, proc.stdin), (STDOUT, proc.stdout), (STDERR, proc.stderr)):
        if stream is not None:
            channels[index] = stream  # type: ignore[assignment]

    return proc, channels
