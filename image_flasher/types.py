"""Shared type definitions for image_flasher.

This module contains dataclasses and enums shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum


class VerificationResult(str, Enum):
    """Result of flash verification."""

    MATCH = "match"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class FlashConfig:
    """Inputs for a single flash run.

    Attributes:
        image: Explicit image path; when unset the working directory is scanned.
        device: Explicit device path; must match an enumerated device.
        interactive: Whether the user may be prompted.
        verify: Whether to read the device back and compare checksums.
    """

    image: str | None = None
    device: str | None = None
    interactive: bool = True
    verify: bool = True


@dataclass(frozen=True)
class Device:
    """A detachable block device that may be flashed.

    Attributes:
        device_path: Block device path (e.g., '/dev/sdb').
        display_name: Human-readable name (usually the model string).
        mountpoints: Mountpoints of the device and its partitions, in order.
        size_bytes: Size of the device in bytes (if known).
        transport: Bus the device is attached through (e.g., 'usb').
    """

    device_path: str
    display_name: str
    mountpoints: tuple[str, ...] = field(default_factory=tuple)
    size_bytes: int | None = None
    transport: str | None = None


@dataclass(frozen=True)
class FlashResult:
    """Result of the write phase.

    Attributes:
        bytes_written: Number of bytes copied onto the device.
        checksum: Digest of everything written, present only when
            verification was requested.
    """

    bytes_written: int
    checksum: bytes | None = None

    @property
    def checksum_hex(self) -> str | None:
        """Return the checksum as a hex string, if any."""
        return self.checksum.hex() if self.checksum is not None else None


@dataclass
class FlashOutcome:
    """Summary of a completed flash run."""

    image_name: str
    device_path: str
    bytes_written: int
    checksum: str | None
    verification_result: VerificationResult


__all__ = [
    "Device",
    "FlashConfig",
    "FlashOutcome",
    "FlashResult",
    "VerificationResult",
]
