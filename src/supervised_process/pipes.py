"""Pipe transports: the channels between a Process and its child.

A transport negotiates the descriptor set for one run (:meth:`get_descriptors`),
receives the parent ends once the child exists (:meth:`open_channels`) and then
moves data without ever blocking longer than one readiness poll
(:meth:`read_and_write`). Channel indices follow the child's descriptors:
0 input, 1 output, 2 error, 3 auxiliary status.
"""

from __future__ import annotations

import abc
import contextlib
import io
import logging
import os
import warnings
from collections.abc import Mapping
from typing import IO, Any, BinaryIO, Union

from supervised_process.descriptors import STDERR, STDIN, STDOUT, DescriptorSpec, FileSpec, PipeSpec, PtySpec
from supervised_process.exceptions import PollError, PollInterruptedError
from supervised_process.multiplexer import BLOCKING_POLL_TIMEOUT, CHUNK_SIZE, drain_channel, select_readable

logger = logging.getLogger(__name__)

ProcessInput = Union[bytes, str, IO[bytes], None]
ReadResult = dict[int, bytes]


class AbstractPipes(abc.ABC):
    """Owns the channels of one child process."""

    def __init__(self, input: ProcessInput, read_mode: bool) -> None:  # noqa: A002
        self.pipes: dict[int, BinaryIO] = {}
        self.last_error: str | None = None
        self._read_mode = read_mode
        self._unblocked = False
        self._input_buffer = b""
        self._input_stream: IO[bytes] | None = None
        self._dropped: list[BinaryIO] = []

        if isinstance(input, str):
            self._input_buffer = input.encode("utf-8")
        elif isinstance(input, (bytes, bytearray, memoryview)):
            self._input_buffer = bytes(input)
        elif input is not None:
            self._input_stream = input

    def __del__(self) -> None:
        if getattr(self, "pipes", None) or getattr(self, "_dropped", None):
            self.close()

    def is_read_mode(self) -> bool:
        return self._read_mode

    def is_opened(self) -> bool:
        return bool(self.pipes)

    @abc.abstractmethod
    def get_descriptors(self) -> dict[int, DescriptorSpec]:
        """Descriptor set to request from the OS for this run."""

    @abc.abstractmethod
    def read_and_write(self, blocking: bool, close: bool = False) -> ReadResult | None:
        """Feed pending input and collect available output.

        Args:
            blocking: Wait up to ``BLOCKING_POLL_TIMEOUT`` for output instead of polling.
            close: Close channels that reached end-of-file.

        Returns:
            Output per channel index, omitting channels that yielded nothing,
            or None when nothing at all was read.
        """

    def open_channels(self, channels: Mapping[int, BinaryIO]) -> None:
        """Take ownership of the parent ends opened for the child."""
        self.pipes = dict(channels)

    def unblock(self) -> None:
        """Switch every channel and the input source to non-blocking mode, once."""
        if self._unblocked:
            return

        for stream in self.pipes.values():
            os.set_blocking(stream.fileno(), False)

        if self._input_stream is not None:
            with contextlib.suppress(AttributeError, io.UnsupportedOperation, OSError):
                os.set_blocking(self._input_stream.fileno(), False)

        self._unblocked = True

    def write(self) -> None:
        """Push as much pending input to the child as it accepts right now.

        Standard input is closed once the input is exhausted, so children
        reading it see end-of-file.
        """
        stdin = self.pipes.get(STDIN)
        if stdin is None:
            return

        while True:
            if not self._input_buffer:
                if self._input_stream is None:
                    self._close_channel(STDIN)
                    return
                try:
                    chunk: Any = self._input_stream.read(CHUNK_SIZE)
                except BlockingIOError:
                    return
                if chunk is None:
                    return
                if not chunk:
                    self._input_stream = None
                    continue
                self._input_buffer = chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk)

            try:
                written = stdin.write(self._input_buffer)
            except BlockingIOError:
                return
            except BrokenPipeError:
                logger.debug("Child closed its input, discarding %d pending bytes", len(self._input_buffer))
                self._input_buffer = b""
                self._input_stream = None
                self._close_channel(STDIN)
                return

            if written is None:
                return
            self._input_buffer = self._input_buffer[written:]

    def close(self) -> None:
        """Close every channel still owned. Safe to call repeatedly."""
        for stream in [*self.pipes.values(), *self._dropped]:
            try:
                stream.close()
            except OSError as err:
                close_error_msg = f"Pipe transport failed to close a channel: {err}"
                warnings.warn(close_error_msg, stacklevel=2)
        self.pipes = {}
        self._dropped = []

    def _close_channel(self, index: int) -> None:
        stream = self.pipes.pop(index, None)
        if stream is None:
            return
        logger.debug("Closing channel %d", index)
        try:
            stream.close()
        except OSError as err:
            close_error_msg = f"Pipe transport failed to close channel {index}: {err}"
            warnings.warn(close_error_msg, stacklevel=2)


class UnixPipes(AbstractPipes):
    """POSIX transport over anonymous pipes, the controlling terminal or a pseudo-terminal."""

    def __init__(self, tty: bool, pty: bool, input: ProcessInput, read_mode: bool) -> None:  # noqa: A002
        super().__init__(input, read_mode)
        if tty and pty:
            msg = "tty and pty modes are mutually exclusive"
            raise ValueError(msg)
        self.tty = tty
        self.pty = pty

    def get_descriptors(self) -> dict[int, DescriptorSpec]:
        if not self._read_mode:
            # Nobody consumes the output, so pipes would fill up and stall the child.
            return {STDIN: PipeSpec("r"), STDOUT: FileSpec(os.devnull, "w"), STDERR: FileSpec(os.devnull, "w")}

        if self.tty:
            return {
                STDIN: FileSpec("/dev/tty", "r"),
                STDOUT: FileSpec("/dev/tty", "w"),
                STDERR: FileSpec("/dev/tty", "w"),
            }

        if self.pty:
            return {STDIN: PtySpec(), STDOUT: PtySpec(), STDERR: PtySpec()}

        return {STDIN: PipeSpec("r"), STDOUT: PipeSpec("w"), STDERR: PipeSpec("w")}

    def read_and_write(self, blocking: bool, close: bool = False) -> ReadResult | None:
        self.unblock()
        self.write()

        readable = {index: stream for index, stream in self.pipes.items() if index != STDIN}
        if not readable:
            return None

        try:
            ready = select_readable(readable, BLOCKING_POLL_TIMEOUT if blocking else 0)
        except PollInterruptedError as e:
            # Forget the channels; the controller learns about the child's death from its status.
            self.last_error = str(e)
            logger.debug("Readiness poll interrupted, dropping channels: %s", e)
            self._dropped.extend(self.pipes.values())
            self.pipes = {}
            return None
        except PollError as e:
            self.last_error = str(e)
            logger.debug("Readiness poll failed: %s", e)
            return None

        read: ReadResult = {}
        for index in ready:
            data, eof = drain_channel(readable[index])
            if data:
                read[index] = data
            if eof and close:
                logger.debug("Channel %d reached end-of-file", index)
                self._close_channel(index)

        return read or None
