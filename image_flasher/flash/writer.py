"""Writer module for device flashing.

This module handles the actual device I/O:
- Stream an image onto a device in bounded chunks, optionally teeing
  every written byte into a checksum
- Flush and sync so the data is on the medium before returning
- Read exactly the written region back and compare digests

The device is opened by one phase at a time and always closed before
control returns to the caller.
"""

import hashlib
import logging
import os
import threading

from image_flasher.errors import FlasherError
from image_flasher.flash.progress import (
    DEFAULT_BLOCK_SIZE,
    CopyCanceledError,
    CopyIOError,
    ProgressCallback,
    Reader,
    Writer,
    copy_with_progress,
)
from image_flasher.types import Device, FlashResult

logger = logging.getLogger(__name__)

# Digest used for both the write-time and verify-time checksums
CHECKSUM_ALGORITHM = "sha256"


def new_hasher() -> "hashlib._Hash":
    """Return a fresh checksum accumulator."""
    return hashlib.new(CHECKSUM_ALGORITHM)


class FlashError(FlasherError):
    """Error while writing to the device.

    Attributes:
        device_path: Target device.
        bytes_written: Bytes already written when the error occurred.
    """

    def __init__(
        self, message: str, error_code: str, device_path: str, bytes_written: int = 0
    ) -> None:
        super().__init__(message, error_code)
        self.device_path = device_path
        self.bytes_written = bytes_written


class DevicePermissionError(FlashError):
    """Permission denied when opening the device."""

    def __init__(self, device_path: str) -> None:
        super().__init__(
            f"Permission denied opening device: {device_path}. "
            "Try running with elevated privileges.",
            error_code="DEVICE_PERMISSION_DENIED",
            device_path=device_path,
        )


class FlashWriteError(FlashError):
    """I/O error during the write phase."""

    def __init__(self, device_path: str, bytes_written: int, reason: str) -> None:
        super().__init__(
            f"Error writing to {device_path} after {bytes_written} bytes: {reason}",
            error_code="FLASH_IO_ERROR",
            device_path=device_path,
            bytes_written=bytes_written,
        )


class FlashCanceledError(FlashError):
    """Write phase was canceled."""

    def __init__(self, device_path: str, bytes_written: int) -> None:
        super().__init__(
            f"Flash to {device_path} canceled after {bytes_written} bytes",
            error_code="FLASH_CANCELED",
            device_path=device_path,
            bytes_written=bytes_written,
        )


class VerificationError(FlasherError):
    """Base exception for verification failures.

    Attributes:
        device_path: Verified device.
        bytes_written: Bytes the write phase reported.
    """

    def __init__(
        self, message: str, error_code: str, device_path: str, bytes_written: int
    ) -> None:
        super().__init__(message, error_code)
        self.device_path = device_path
        self.bytes_written = bytes_written


class VerifyReadError(VerificationError):
    """I/O error or cancellation while reading the device back."""

    def __init__(self, device_path: str, bytes_written: int, reason: str) -> None:
        super().__init__(
            f"Could not read back {device_path} for verification: {reason}",
            error_code="VERIFY_IO_ERROR",
            device_path=device_path,
            bytes_written=bytes_written,
        )


class ChecksumMismatchError(VerificationError):
    """Digest read back from the device differs from the digest written."""

    def __init__(
        self,
        device_path: str,
        bytes_written: int,
        expected: bytes,
        actual: bytes,
        bytes_read: int,
    ) -> None:
        super().__init__(
            f"Checksum mismatch on {device_path}: the data read back does not "
            f"match what was written. Expected: {expected.hex()[:16]}..., "
            f"Got: {actual.hex()[:16]}... ({bytes_read} of {bytes_written} bytes "
            "read). The write itself is unreliable; the card may be defective.",
            error_code="CHECKSUM_MISMATCH",
            device_path=device_path,
            bytes_written=bytes_written,
        )
        self.expected = expected
        self.actual = actual
        self.bytes_read = bytes_read


class ChecksumWriter:
    """Sink that feeds every byte it accepts into a hasher.

    When ``sink`` is given, data is written there first and only the
    bytes the sink accepted are hashed; without a sink the writer only
    hashes.
    """

    def __init__(self, hasher: "hashlib._Hash", sink: Writer | None = None) -> None:
        self.hasher = hasher
        self.sink = sink

    def write(self, data: bytes) -> int:
        if self.sink is None:
            self.hasher.update(data)
            return len(data)

        written = self.sink.write(data)
        if not isinstance(written, int):
            written = len(data)
        self.hasher.update(data[:written])
        return written

    def digest(self) -> bytes:
        return self.hasher.digest()


def flash_to_device(
    image: Reader,
    device: Device,
    *,
    verify: bool,
    cancel: threading.Event | None = None,
    progress: ProgressCallback | None = None,
    block_size: int = DEFAULT_BLOCK_SIZE,
) -> FlashResult:
    """Stream an image onto a device from offset 0.

    Args:
        image: Readable image stream.
        device: Target device.
        verify: Whether to accumulate a checksum of the written bytes.
        cancel: Event that stops the copy between chunks.
        progress: Called with the cumulative byte count.
        block_size: Chunk size for writes.

    Returns:
        FlashResult with the byte count and, if verify, the digest.

    Raises:
        DevicePermissionError: Device could not be opened for writing.
        FlashCanceledError: Cancel event was set mid-copy.
        FlashWriteError: Read, write or sync failed.
    """
    device_path = device.device_path
    logger.info("Writing image to %s (verify=%s)", device_path, verify)

    bytes_written = 0
    checksummer: ChecksumWriter | None = None
    try:
        with open(device_path, "r+b", buffering=0) as dst:
            output: Writer = dst
            if verify:
                checksummer = ChecksumWriter(new_hasher(), sink=dst)
                output = checksummer

            try:
                bytes_written = copy_with_progress(
                    output,
                    image,
                    cancel=cancel,
                    progress=progress,
                    block_size=block_size,
                )
            except CopyCanceledError as e:
                raise FlashCanceledError(device_path, e.bytes_copied) from e
            except CopyIOError as e:
                raise FlashWriteError(device_path, e.bytes_copied, str(e.cause)) from e

            os.fsync(dst.fileno())

        # Flush everything else the kernel still holds
        os.sync()

    except PermissionError as e:
        logger.error("Permission denied opening device: %s", e)
        raise DevicePermissionError(device_path) from e
    except OSError as e:
        logger.error("I/O error writing to device: %s", e)
        raise FlashWriteError(device_path, bytes_written, str(e)) from e

    logger.info("Wrote %d bytes to %s", bytes_written, device_path)

    checksum = checksummer.digest() if checksummer is not None else None
    if checksum is not None:
        logger.debug("Write checksum: %s", checksum.hex()[:16])
    return FlashResult(bytes_written=bytes_written, checksum=checksum)


def _drop_page_cache(fd: int) -> None:
    if hasattr(os, "posix_fadvise"):
        try:
            os.posix_fadvise(fd, 0, 0, os.POSIX_FADV_DONTNEED)
        except OSError as e:
            logger.debug("posix_fadvise failed, verify may read cached data: %s", e)


def verify_device(
    result: FlashResult,
    device: Device,
    *,
    cancel: threading.Event | None = None,
    progress: ProgressCallback | None = None,
    block_size: int = DEFAULT_BLOCK_SIZE,
) -> None:
    """Read back exactly the written region and compare digests.

    Args:
        result: Result of the write phase; must carry a checksum.
        device: Device that was written.
        cancel: Event that stops the read between chunks.
        progress: Called with the cumulative byte count.
        block_size: Chunk size for reads.

    Raises:
        ValueError: result carries no checksum.
        VerifyReadError: Device could not be read or verify was canceled.
        ChecksumMismatchError: Digests differ.
    """
    if result.checksum is None:
        raise ValueError("verify_device() requires a FlashResult with a checksum")

    device_path = device.device_path
    logger.info("Verifying %d bytes of %s", result.bytes_written, device_path)

    checksummer = ChecksumWriter(new_hasher())
    try:
        with open(device_path, "rb", buffering=0) as src:
            _drop_page_cache(src.fileno())
            bytes_read = copy_with_progress(
                checksummer,
                src,
                cancel=cancel,
                progress=progress,
                block_size=block_size,
                limit=result.bytes_written,
            )
    except CopyCanceledError as e:
        raise VerifyReadError(device_path, result.bytes_written, "canceled") from e
    except CopyIOError as e:
        raise VerifyReadError(device_path, result.bytes_written, str(e.cause)) from e
    except OSError as e:
        logger.error("Could not open %s for verification: %s", device_path, e)
        raise VerifyReadError(device_path, result.bytes_written, str(e)) from e

    actual = checksummer.digest()
    logger.debug("Device checksum: %s", actual.hex()[:16])

    if bytes_read != result.bytes_written or actual != result.checksum:
        logger.error(
            "Checksum verification FAILED: expected=%s, got=%s, read=%d/%d",
            result.checksum.hex()[:16],
            actual.hex()[:16],
            bytes_read,
            result.bytes_written,
        )
        raise ChecksumMismatchError(
            device_path, result.bytes_written, result.checksum, actual, bytes_read
        )

    logger.info("Checksum verification passed")


__all__ = [
    "CHECKSUM_ALGORITHM",
    "ChecksumMismatchError",
    "ChecksumWriter",
    "DevicePermissionError",
    "FlashCanceledError",
    "FlashError",
    "FlashWriteError",
    "VerificationError",
    "VerifyReadError",
    "flash_to_device",
    "new_hasher",
    "verify_device",
]
