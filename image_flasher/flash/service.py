"""Flash service layer.

This module runs a complete flash:
1. Resolve the image source and the target device
2. Confirm with the user (interactive runs only)
3. Unmount the device
4. Write the image, optionally accumulating a checksum
5. Verify by reading back, when a checksum was produced

Every error is terminal for the run. Nothing is written before both
selections succeed and the user has confirmed.
"""

import logging
import threading
from collections.abc import Callable, Sequence
from functools import partial
from pathlib import Path

from image_flasher.config import Settings, get_settings
from image_flasher.errors import FlasherError
from image_flasher.flash.device import list_detachable_devices, resolve_device
from image_flasher.flash.selection import CandidatePolicy, choose_candidate
from image_flasher.flash.source import resolve_source
from image_flasher.flash.ui import Ui
from image_flasher.flash.unmount import unmount_device
from image_flasher.flash.writer import flash_to_device, verify_device
from image_flasher.types import (
    Device,
    FlashConfig,
    FlashOutcome,
    VerificationResult,
)

logger = logging.getLogger(__name__)

# Called with (phase, cumulative bytes); phase is "write" or "verify"
PhaseProgress = Callable[[str, int], None]


class UserCanceledError(FlasherError):
    """User declined the confirmation prompt or canceled before the write."""

    def __init__(self, device_path: str) -> None:
        super().__init__(
            f"Canceled by user; nothing was written to {device_path}",
            error_code="USER_CANCELED",
        )
        self.device_path = device_path


def is_affirmative(answer: str) -> bool:
    """Return True if answer is a non-empty prefix of "yes" (any case)."""
    answer = answer.strip().lower()
    return bool(answer) and "yes".startswith(answer)


def confirm_flash(config: FlashConfig, ui: Ui, device: Device) -> None:
    """Announce the target and, when interactive, ask for confirmation.

    Raises:
        UserCanceledError: User did not answer yes.
    """
    ui.say(f"Going to flash to {device.device_path}.")
    if not config.interactive:
        return

    answer = ui.ask("Are you sure?")
    if not is_affirmative(answer):
        logger.info("User declined flashing %s", device.device_path)
        raise UserCanceledError(device.device_path)


def _check_not_canceled(cancel: threading.Event | None, device: Device) -> None:
    if cancel is not None and cancel.is_set():
        logger.info("Cancel requested before writing to %s", device.device_path)
        raise UserCanceledError(device.device_path)


def run_flash(
    config: FlashConfig,
    ui: Ui,
    *,
    settings: Settings | None = None,
    cancel: threading.Event | None = None,
    progress: PhaseProgress | None = None,
    directory: str | Path | None = None,
    enumerate_devices: Callable[[], Sequence[Device]] = list_detachable_devices,
    policy: CandidatePolicy = choose_candidate,
) -> FlashOutcome:
    """Flash an image onto a detachable device.

    Args:
        config: Flash configuration for this run.
        ui: Prompt/output surface.
        settings: Application settings (optional).
        cancel: Event that aborts the write or verify phase between chunks.
        progress: Receives (phase, cumulative bytes) during I/O.
        directory: Directory to scan for images when none is configured.
        enumerate_devices: Lists detachable devices.
        policy: Picks one image among several candidates.

    Returns:
        FlashOutcome describing what was written.

    Raises:
        SourceError: No image could be resolved or opened.
        DeviceError: No single device could be resolved.
        InvalidSelectionError: Interactive menu answer was invalid.
        UserCanceledError: User declined the confirmation, or cancel was
            set before the write began.
        UnmountError: A mountpoint could not be unmounted.
        FlashError: Write phase failed; carries bytes_written.
        VerificationError: Verify phase failed; carries bytes_written.
    """
    if settings is None:
        settings = get_settings()

    logger.info(
        "Flash requested: image=%s, device=%s, interactive=%s, verify=%s",
        config.image,
        config.device,
        config.interactive,
        config.verify,
    )

    with resolve_source(
        config,
        ui,
        directory=directory,
        extensions=settings.image_extensions,
        policy=policy,
    ) as image:
        device = resolve_device(config, ui, enumerate_devices=enumerate_devices)
        confirm_flash(config, ui, device)
        _check_not_canceled(cancel, device)
        unmount_device(device, ui)
        _check_not_canceled(cancel, device)

        result = flash_to_device(
            image,
            device,
            verify=config.verify,
            cancel=cancel,
            progress=partial(progress, "write") if progress else None,
            block_size=settings.block_size,
        )

    verification_result = VerificationResult.SKIPPED
    if result.checksum is not None:
        ui.say(f"verifying {result.bytes_written} bytes on {device.device_path}")
        verify_device(
            result,
            device,
            cancel=cancel,
            progress=partial(progress, "verify") if progress else None,
            block_size=settings.block_size,
        )
        verification_result = VerificationResult.MATCH

    logger.info(
        "Flash succeeded: %d bytes written to %s, verification=%s",
        result.bytes_written,
        device.device_path,
        verification_result.value,
    )

    return FlashOutcome(
        image_name=image.name,
        device_path=device.device_path,
        bytes_written=result.bytes_written,
        checksum=result.checksum_hex,
        verification_result=verification_result,
    )


__all__ = [
    "PhaseProgress",
    "UserCanceledError",
    "confirm_flash",
    "is_affirmative",
    "run_flash",
]
