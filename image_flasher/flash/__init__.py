"""Image flashing module.

This module handles:
- Image source resolution (with transparent decompression)
- Detachable device enumeration and selection
- Unmounting before raw writes
- Chunked, cancellable writes with fsync
- Checksum verification by reading the written region back

Safety rules:
- Never auto-select a device when more than one is attached
- Explicit confirmation in interactive runs
- Synchronous, flushed writes before verification
"""

from image_flasher.flash.device import (
    AmbiguousDeviceError,
    DeviceEnumerationError,
    DeviceError,
    DeviceNotFoundError,
    NoDevicesFoundError,
    list_detachable_devices,
    resolve_device,
)
from image_flasher.flash.selection import (
    InvalidSelectionError,
    choose_candidate,
    parse_selection,
)
from image_flasher.flash.service import UserCanceledError, run_flash
from image_flasher.flash.source import (
    ImageOpenError,
    ImageStream,
    NoImageFoundError,
    SourceError,
    find_image_files,
    open_image,
    resolve_source,
)
from image_flasher.flash.ui import ConsoleUi, Ui
from image_flasher.flash.unmount import UnmountError, unmount_device
from image_flasher.flash.writer import (
    ChecksumMismatchError,
    FlashCanceledError,
    FlashError,
    FlashWriteError,
    VerificationError,
    flash_to_device,
    verify_device,
)

__all__ = [
    # Selection
    "InvalidSelectionError",
    "choose_candidate",
    "parse_selection",
    # Source
    "ImageOpenError",
    "ImageStream",
    "NoImageFoundError",
    "SourceError",
    "find_image_files",
    "open_image",
    "resolve_source",
    # Device
    "AmbiguousDeviceError",
    "DeviceEnumerationError",
    "DeviceError",
    "DeviceNotFoundError",
    "NoDevicesFoundError",
    "list_detachable_devices",
    "resolve_device",
    # Unmount
    "UnmountError",
    "unmount_device",
    # Writer
    "ChecksumMismatchError",
    "FlashCanceledError",
    "FlashError",
    "FlashWriteError",
    "VerificationError",
    "flash_to_device",
    "verify_device",
    # Service
    "UserCanceledError",
    "run_flash",
    # UI
    "ConsoleUi",
    "Ui",
]
