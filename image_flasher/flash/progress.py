"""Chunked, cancellable copy with progress reporting.

``copy_with_progress`` moves bytes from a reader to a writer one bounded
chunk at a time. Cancellation is checked between chunks, so a cancel
request takes effect within one chunk's I/O and a chunk is never left
half-written by this function.
"""

import logging
import threading
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)

# Default chunk size for I/O operations (1 MiB)
DEFAULT_BLOCK_SIZE = 1024 * 1024

# Log progress every 64 MiB
_LOG_INTERVAL = 64 * 1024 * 1024

ProgressCallback = Callable[[int], None]


class Reader(Protocol):
    def read(self, size: int = ..., /) -> bytes: ...


class Writer(Protocol):
    def write(self, data: bytes, /) -> int | None: ...


class CopyInterruptedError(Exception):
    """Base exception for copies that stopped before the source ran dry.

    Attributes:
        bytes_copied: Bytes fully written before the interruption.
    """

    def __init__(self, message: str, bytes_copied: int) -> None:
        super().__init__(message)
        self.bytes_copied = bytes_copied


class CopyCanceledError(CopyInterruptedError):
    """Copy stopped because cancellation was requested."""

    def __init__(self, bytes_copied: int) -> None:
        super().__init__(f"Copy canceled after {bytes_copied} bytes", bytes_copied)


class CopyIOError(CopyInterruptedError):
    """Copy stopped because reading or writing failed."""

    def __init__(self, bytes_copied: int, cause: OSError) -> None:
        super().__init__(f"I/O error after {bytes_copied} bytes: {cause}", bytes_copied)
        self.cause = cause


def _write_all(dest: Writer, chunk: bytes) -> None:
    # Raw (unbuffered) files may accept fewer bytes than offered
    view = memoryview(chunk)
    while view:
        written = dest.write(view)
        if not isinstance(written, int):
            return
        if written <= 0:
            raise OSError("device accepted no data")
        view = view[written:]


def copy_with_progress(
    dest: Writer,
    source: Reader,
    *,
    cancel: threading.Event | None = None,
    progress: ProgressCallback | None = None,
    block_size: int = DEFAULT_BLOCK_SIZE,
    limit: int | None = None,
) -> int:
    """Copy source to dest in bounded chunks until exhausted.

    Args:
        dest: Object with a ``write`` method.
        source: Object with a ``read`` method.
        cancel: Event that, once set, stops the copy before the next chunk.
        progress: Called with the cumulative byte count after each chunk.
        block_size: Maximum bytes per chunk.
        limit: Copy at most this many bytes.

    Returns:
        Number of bytes copied.

    Raises:
        CopyCanceledError: Cancel event was set.
        CopyIOError: Reading or writing raised OSError.
    """
    copied = 0
    next_log = _LOG_INTERVAL

    while limit is None or copied < limit:
        if cancel is not None and cancel.is_set():
            logger.warning("Copy canceled after %d bytes", copied)
            raise CopyCanceledError(copied)

        read_size = block_size if limit is None else min(block_size, limit - copied)
        try:
            chunk = source.read(read_size)
            if not chunk:
                break
            _write_all(dest, chunk)
        except OSError as e:
            logger.error("I/O error after %d bytes: %s", copied, e)
            raise CopyIOError(copied, e) from e

        copied += len(chunk)
        if progress is not None:
            progress(copied)
        if copied >= next_log:
            logger.debug("Copy progress: %d bytes", copied)
            next_log += _LOG_INTERVAL

    return copied


__all__ = [
    "DEFAULT_BLOCK_SIZE",
    "CopyCanceledError",
    "CopyIOError",
    "CopyInterruptedError",
    "ProgressCallback",
    "copy_with_progress",
]
