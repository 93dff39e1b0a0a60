"""Tests for flash/writer.py - write operations and checksum verification."""

import hashlib
import io
import os
import tempfile
import threading
from unittest.mock import patch

import pytest

from image_flasher.flash.writer import (
    CHECKSUM_ALGORITHM,
    ChecksumMismatchError,
    ChecksumWriter,
    DevicePermissionError,
    FlashCanceledError,
    FlashWriteError,
    VerifyReadError,
    flash_to_device,
    new_hasher,
    verify_device,
)
from image_flasher.types import Device, FlashResult


@pytest.fixture
def fake_device():
    """A regular file standing in for a block device."""
    with tempfile.NamedTemporaryFile(delete=False) as f:
        # Pre-existing contents beyond the image must not affect verification
        f.write(b"\xaa" * (2 * 1024 * 1024))
    try:
        yield Device(device_path=f.name, display_name="Fake Disk")
    finally:
        os.unlink(f.name)


def _read(device: Device, size: int) -> bytes:
    with open(device.device_path, "rb") as f:
        return f.read(size)


class TestChecksumWriter:
    """Tests for ChecksumWriter."""

    def test_tee(self):
        """Data reaches the sink and the hasher."""
        sink = io.BytesIO()
        writer = ChecksumWriter(new_hasher(), sink=sink)
        writer.write(b"hello ")
        writer.write(b"world")
        assert sink.getvalue() == b"hello world"
        assert writer.digest() == hashlib.sha256(b"hello world").digest()

    def test_hash_only(self):
        """Without a sink only the digest is accumulated."""
        writer = ChecksumWriter(new_hasher())
        assert writer.write(b"abc") == 3
        assert writer.digest() == hashlib.sha256(b"abc").digest()

    def test_hashes_only_accepted_bytes(self):
        """Bytes the sink did not take are not hashed."""

        class Partial:
            def write(self, data):
                return 2

        writer = ChecksumWriter(new_hasher(), sink=Partial())
        assert writer.write(b"abcd") == 2
        assert writer.digest() == hashlib.sha256(b"ab").digest()

    def test_algorithm_is_stable(self):
        """Hashing the same bytes twice yields the same digest."""
        a, b = new_hasher(), new_hasher()
        a.update(b"payload")
        b.update(b"payload")
        assert a.digest() == b.digest()
        assert a.name == CHECKSUM_ALGORITHM
        assert a.digest_size >= 16


class TestFlashToDevice:
    """Tests for flash_to_device function."""

    def test_write_with_verify(self, fake_device):
        """Image is written at offset 0 and its digest returned."""
        content = os.urandom(300_000)
        result = flash_to_device(
            io.BytesIO(content), fake_device, verify=True, block_size=64 * 1024
        )

        assert result.bytes_written == len(content)
        assert result.checksum == hashlib.sha256(content).digest()
        assert _read(fake_device, len(content)) == content

    def test_write_without_verify(self, fake_device):
        """No checksum is produced when verify is off."""
        result = flash_to_device(io.BytesIO(b"data"), fake_device, verify=False)
        assert result.bytes_written == 4
        assert result.checksum is None
        assert result.checksum_hex is None

    def test_device_tail_untouched(self, fake_device):
        """Bytes past the image are left as they were."""
        flash_to_device(io.BytesIO(b"\x00" * 10), fake_device, verify=False)
        assert _read(fake_device, 12) == b"\x00" * 10 + b"\xaa\xaa"

    def test_syncs(self, fake_device):
        """Data is fsync'ed and the system synced before returning."""
        with (
            patch("image_flasher.flash.writer.os.fsync") as mock_fsync,
            patch("image_flasher.flash.writer.os.sync") as mock_sync,
        ):
            flash_to_device(io.BytesIO(b"data"), fake_device, verify=False)
        mock_fsync.assert_called_once()
        mock_sync.assert_called_once()

    def test_progress(self, fake_device):
        """Progress callback sees the cumulative count."""
        seen: list[int] = []
        flash_to_device(
            io.BytesIO(b"z" * 10_000),
            fake_device,
            verify=False,
            progress=seen.append,
            block_size=4096,
        )
        assert seen == [4096, 8192, 10_000]

    def test_cancel_reports_bytes_written(self, fake_device):
        """Cancellation surfaces the bytes already on the device."""
        cancel = threading.Event()

        def progress(done: int) -> None:
            if done >= 8192:
                cancel.set()

        with pytest.raises(FlashCanceledError) as exc_info:
            flash_to_device(
                io.BytesIO(b"q" * 100_000),
                fake_device,
                verify=True,
                cancel=cancel,
                progress=progress,
                block_size=4096,
            )
        assert exc_info.value.bytes_written == 8192
        assert exc_info.value.error_code == "FLASH_CANCELED"
        assert _read(fake_device, 8194) == b"q" * 8192 + b"\xaa\xaa"

    def test_source_read_error(self, fake_device):
        """A failing image read is a FlashWriteError."""

        class BrokenImage:
            def __init__(self):
                self.calls = 0

            def read(self, size=-1):
                self.calls += 1
                if self.calls > 1:
                    raise OSError("corrupt stream")
                return b"r" * size

        with pytest.raises(FlashWriteError) as exc_info:
            flash_to_device(BrokenImage(), fake_device, verify=False, block_size=4096)
        assert exc_info.value.bytes_written == 4096
        assert exc_info.value.error_code == "FLASH_IO_ERROR"

    def test_missing_device(self):
        """A device that cannot be opened is a FlashWriteError."""
        device = Device("/nonexistent/dev/sdz", "Ghost")
        with pytest.raises(FlashWriteError) as exc_info:
            flash_to_device(io.BytesIO(b"data"), device, verify=False)
        assert exc_info.value.bytes_written == 0

    def test_permission_denied(self, fake_device):
        """PermissionError on open maps to DevicePermissionError."""
        with patch("builtins.open", side_effect=PermissionError("denied")):
            with pytest.raises(DevicePermissionError) as exc_info:
                flash_to_device(io.BytesIO(b"data"), fake_device, verify=False)
        assert exc_info.value.error_code == "DEVICE_PERMISSION_DENIED"


class TestVerifyDevice:
    """Tests for verify_device function."""

    def test_round_trip(self, fake_device):
        """A healthy device verifies against its write-time checksum."""
        content = os.urandom(200_000)
        result = flash_to_device(io.BytesIO(content), fake_device, verify=True)
        verify_device(result, fake_device)

    def test_reads_only_written_region(self, fake_device):
        """Device bytes past bytes_written do not affect the digest."""
        result = flash_to_device(io.BytesIO(b"short"), fake_device, verify=True)
        seen: list[int] = []
        verify_device(result, fake_device, progress=seen.append)
        assert seen == [5]

    def test_single_bit_corruption(self, fake_device):
        """Flipping one bit after a 1 MiB write is a ChecksumMismatchError."""
        content = os.urandom(1_048_576)
        result = flash_to_device(io.BytesIO(content), fake_device, verify=True)
        assert result.bytes_written == 1_048_576

        with open(fake_device.device_path, "r+b") as f:
            f.seek(123_456)
            byte = f.read(1)[0]
            f.seek(123_456)
            f.write(bytes([byte ^ 0x01]))

        with pytest.raises(ChecksumMismatchError) as exc_info:
            verify_device(result, fake_device)
        error = exc_info.value
        assert error.error_code == "CHECKSUM_MISMATCH"
        assert error.bytes_written == 1_048_576
        assert error.expected == result.checksum
        assert error.actual != result.checksum
        assert "Checksum mismatch" in error.message

    def test_short_device(self, fake_device):
        """A device shorter than bytes_written fails verification."""
        data = b"\xaa" * 100
        result = FlashResult(
            bytes_written=10 * 1024 * 1024,
            checksum=hashlib.sha256(data).digest(),
        )
        with pytest.raises(ChecksumMismatchError) as exc_info:
            verify_device(result, fake_device)
        assert exc_info.value.bytes_read == 2 * 1024 * 1024

    def test_requires_checksum(self, fake_device):
        """Verification without a checksum is a programming error."""
        with pytest.raises(ValueError):
            verify_device(FlashResult(bytes_written=4), fake_device)

    def test_missing_device(self):
        """Unreadable device is a VerifyReadError."""
        result = FlashResult(bytes_written=4, checksum=b"\x00" * 32)
        with pytest.raises(VerifyReadError) as exc_info:
            verify_device(result, Device("/nonexistent/dev/sdz", "Ghost"))
        assert exc_info.value.error_code == "VERIFY_IO_ERROR"

    def test_cancel(self, fake_device):
        """Cancellation during read-back is a VerifyReadError."""
        result = flash_to_device(io.BytesIO(b"c" * 10), fake_device, verify=True)
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(VerifyReadError):
            verify_device(result, fake_device, cancel=cancel)
