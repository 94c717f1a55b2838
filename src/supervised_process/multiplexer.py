"""Stateless readiness polling and draining of child output channels.

The functions here only borrow the channels they are given; opening, closing
and forgetting channels is the pipe transport's job.
"""

import errno
import logging
import selectors
from collections.abc import Mapping
from typing import BinaryIO

from supervised_process.exceptions import PollError, PollInterruptedError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192
# How long a blocking observation may wait for output before checking on the child again.
BLOCKING_POLL_TIMEOUT = 0.2


def select_readable(channels: Mapping[int, BinaryIO], timeout: float) -> list[int]:
    """Wait up to ``timeout`` seconds for channels to become readable.

    Returns:
        Indices of the ready channels in ascending order (output before error).

    Raises:
        PollInterruptedError: If a signal interrupted the poll.
        PollError: If polling failed for any other reason.
    """
    if not channels:
        return []

    try:
        with selectors.DefaultSelector() as selector:
            for index, stream in channels.items():
                selector.register(stream.fileno(), selectors.EVENT_READ, index)
            events = selector.select(timeout)
    except InterruptedError as e:
        raise PollInterruptedError(str(e)) from e
    except OSError as e:
        if e.errno == errno.EINTR:
            raise PollInterruptedError(str(e)) from e
        raise PollError(str(e)) from e
    except (ValueError, KeyError) as e:
        # closed file object, or the same descriptor registered twice
        raise PollError(str(e)) from e

    return sorted(key.data for key, _ in events)


def drain_channel(stream: BinaryIO) -> tuple[bytes, bool]:
    """Read what ``stream`` has available without blocking.

    Reads ``CHUNK_SIZE`` chunks until a short read, a read that would block,
    or end-of-file.

    Returns:
        ``(data, eof)``; ``data`` may be empty.
    """
    chunks: list[bytes] = []
    eof = False
    while True:
        try:
            data = stream.read(CHUNK_SIZE)
        except BlockingIOError:
            break
        except OSError as e:
            # A PTY master reports EIO once the child side is gone.
            if e.errno != errno.EIO:
                logger.debug("Channel read error, treating as end-of-file: %s", e)
            eof = True
            break

        if data is None:
            break
        if not data:
            eof = True
            break

        chunks.append(data)
        if len(data) < CHUNK_SIZE:
            break

    return b"".join(chunks), eof
