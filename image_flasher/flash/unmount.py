"""Unmount a device's filesystems before a raw write."""

import logging
import subprocess

from image_flasher.errors import FlasherError
from image_flasher.flash.ui import Ui
from image_flasher.types import Device

logger = logging.getLogger(__name__)


class UnmountError(FlasherError):
    """A mountpoint could not be unmounted."""

    def __init__(self, mountpoint: str, reason: str) -> None:
        super().__init__(
            f"Failed to unmount {mountpoint}: {reason}",
            error_code="UNMOUNT_FAILED",
        )
        self.mountpoint = mountpoint
        self.reason = reason


def unmount_device(device: Device, ui: Ui) -> None:
    """Unmount every mountpoint of a device, in order.

    Stops at the first failure. Mountpoints already unmounted stay
    unmounted and later ones are not attempted.

    Args:
        device: Device whose mountpoints should be detached.
        ui: Output surface used to announce each unmount.

    Raises:
        UnmountError: `umount` failed or could not be run.
    """
    for mountpoint in device.mountpoints:
        ui.say(f"unmounting {mountpoint}")
        logger.info("Unmounting %s (%s)", mountpoint, device.device_path)
        try:
            result = subprocess.run(
                ["umount", mountpoint],
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            logger.error("Could not run umount for %s: %s", mountpoint, e)
            raise UnmountError(mountpoint, str(e)) from e

        if result.returncode != 0:
            reason = result.stderr.strip() or f"exit code {result.returncode}"
            logger.error("umount %s failed: %s", mountpoint, reason)
            raise UnmountError(mountpoint, reason)


__all__ = ["UnmountError", "unmount_device"]
