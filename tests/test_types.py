"""Tests for shared types."""

import dataclasses

import pytest

from image_flasher.types import (
    Device,
    FlashConfig,
    FlashResult,
    VerificationResult,
)


class TestFlashConfig:
    """Tests for FlashConfig."""

    def test_defaults(self) -> None:
        """Defaults are interactive with verification."""
        config = FlashConfig()
        assert config.image is None
        assert config.device is None
        assert config.interactive is True
        assert config.verify is True

    def test_immutable(self) -> None:
        """FlashConfig cannot be changed after creation."""
        config = FlashConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.device = "/dev/sdb"  # type: ignore[misc]


class TestDevice:
    """Tests for Device."""

    def test_fields(self) -> None:
        """Device keeps mountpoints in order."""
        device = Device("/dev/sdb", "USB Disk", ("/mnt/x", "/mnt/y"))
        assert device.device_path == "/dev/sdb"
        assert device.display_name == "USB Disk"
        assert device.mountpoints == ("/mnt/x", "/mnt/y")
        assert device.size_bytes is None

    def test_no_mountpoints_by_default(self) -> None:
        """Mountpoints default to empty."""
        assert Device("/dev/sdb", "USB Disk").mountpoints == ()


class TestFlashResult:
    """Tests for FlashResult."""

    def test_checksum_hex(self) -> None:
        """Checksum is rendered as hex."""
        assert FlashResult(3, b"\x01\xab").checksum_hex == "01ab"

    def test_no_checksum(self) -> None:
        """Absent checksum stays absent."""
        result = FlashResult(3)
        assert result.checksum is None
        assert result.checksum_hex is None


class TestVerificationResult:
    """Tests for VerificationResult."""

    def test_values(self) -> None:
        """Values are stable strings for JSON output."""
        assert VerificationResult.MATCH.value == "match"
        assert VerificationResult.SKIPPED == "skipped"

    def test_members(self) -> None:
        """A mismatch raises instead of being a result value."""
        assert {r.value for r in VerificationResult} == {"match", "skipped"}
