"""File-backed transport for platforms without pipe readiness polling.

Windows cannot ``select()`` on anonymous pipes, so the child's output and
error streams are bound to temporary files which the parent reads
incrementally. Input still goes through an anonymous pipe.
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
import warnings
from collections.abc import Mapping
from typing import BinaryIO

from supervised_process.descriptors import STDERR, STDIN, STDOUT, DescriptorSpec, FileSpec, PipeSpec
from supervised_process.multiplexer import BLOCKING_POLL_TIMEOUT
from supervised_process.pipes import AbstractPipes, ProcessInput, ReadResult

logger = logging.getLogger(__name__)


class WindowsPipes(AbstractPipes):
    """Transport that relays output through temporary files."""

    def __init__(self, input: ProcessInput, read_mode: bool) -> None:  # noqa: A002
        super().__init__(input, read_mode)
        self._files: dict[int, str] = {}
        if read_mode:
            for index, suffix in ((STDOUT, ".out"), (STDERR, ".err")):
                fd, path = tempfile.mkstemp(prefix="supervised_process_", suffix=suffix)
                os.close(fd)
                self._files[index] = path
            logger.debug("Relaying child output through %s", ", ".join(self._files.values()))

    def get_descriptors(self) -> dict[int, DescriptorSpec]:
        if not self._read_mode:
            return {STDIN: PipeSpec("r"), STDOUT: FileSpec(os.devnull, "w"), STDERR: FileSpec(os.devnull, "w")}
        return {
            STDIN: PipeSpec("r"),
            STDOUT: FileSpec(self._files[STDOUT], "w"),
            STDERR: FileSpec(self._files[STDERR], "w"),
        }

    def open_channels(self, channels: Mapping[int, BinaryIO]) -> None:
        super().open_channels(channels)
        for index, path in self._files.items():
            self.pipes[index] = open(path, "rb", buffering=0)  # noqa: SIM115

    def unblock(self) -> None:
        # Regular files never block; the input pipe is written in bounded chunks.
        self._unblocked = True

    def read_and_write(self, blocking: bool, close: bool = False) -> ReadResult | None:
        self.unblock()
        self.write()

        read: ReadResult = {}
        for index in (STDOUT, STDERR):
            stream = self.pipes.get(index)
            if stream is None:
                continue
            data = stream.read()
            if data:
                read[index] = data
            elif close:
                # The child is gone and everything it wrote has been read.
                self._close_channel(index)

        if blocking and not read:
            time.sleep(BLOCKING_POLL_TIMEOUT)

        return read or None

    def close(self) -> None:
        super().close()
        for path in self._files.values():
            try:
                os.unlink(path)
            except FileNotFoundError:
                continue
            except OSError as err:
                unlink_error_msg = f"Could not remove transport file {path}: {err}"
                warnings.warn(unlink_error_msg, stacklevel=2)
        self._files = {}

