"""Descriptor specifications handed to the process-creation primitive.

A descriptor set is a ``dict[int, DescriptorSpec]`` keyed by the child's file
descriptor number: 0 is standard input, 1 standard output, 2 standard error
and 3 the optional auxiliary status channel. Modes are always given from the
child's point of view, so the child *reads* its input pipe (``"r"``) and
*writes* its output pipes (``"w"``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Union

STDIN = 0
STDOUT = 1
STDERR = 2
AUXILIARY = 3


@dataclass(frozen=True)
class PipeSpec:
    """An anonymous pipe; ``mode`` is the end the child holds."""

    mode: Literal["r", "w"]


@dataclass(frozen=True)
class FileSpec:
    """Bind the descriptor to a named file or device such as ``/dev/tty``."""

    path: str
    mode: str


@dataclass(frozen=True)
class PtySpec:
    """A pseudo-terminal endpoint. All PtySpec entries of one set share a terminal."""


DescriptorSpec = Union[PipeSpec, FileSpec, PtySpec]
