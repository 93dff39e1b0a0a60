"""Device discovery and selection for flashing.

This module handles everything needed to pick a target device:
- Enumerate detachable (USB/SD/MMC) whole-disk devices
- Never offer the disk holding the root filesystem
- Resolve exactly one device from config, auto-selection or a prompt

Auto-selection is only allowed when exactly one candidate exists.
"""

import json
import logging
import re
import shutil
import subprocess
from collections.abc import Callable, Sequence
from pathlib import Path

from image_flasher.errors import FlasherError
from image_flasher.flash.selection import prompt_selection
from image_flasher.flash.ui import Ui
from image_flasher.types import Device, FlashConfig

logger = logging.getLogger(__name__)

# Transports that are always treated as detachable
_DETACHABLE_TRANSPORTS = {"usb", "mmc"}


class DeviceError(FlasherError):
    """Base exception for device selection errors."""


class DeviceEnumerationError(DeviceError):
    """Detachable devices could not be listed."""

    def __init__(self, reason: str) -> None:
        super().__init__(
            f"Could not enumerate devices: {reason}",
            error_code="DEVICE_ENUMERATION_FAILED",
        )


class NoDevicesFoundError(DeviceError):
    """No detachable devices are attached."""

    def __init__(self) -> None:
        super().__init__(
            "No detachable devices found. Insert a USB/SD card and try again.",
            error_code="NO_DEVICES_FOUND",
        )


class DeviceNotFoundError(DeviceError):
    """Configured device is not among the detachable devices."""

    def __init__(self, device_path: str) -> None:
        super().__init__(
            f"Configured device not found among detachable devices: {device_path}",
            error_code="DEVICE_NOT_FOUND",
        )
        self.device_path = device_path


class AmbiguousDeviceError(DeviceError):
    """More than one candidate device and no way to ask."""

    def __init__(self, device_paths: list[str]) -> None:
        paths_str = ", ".join(device_paths)
        super().__init__(
            f"Ambiguous device: {len(device_paths)} detachable devices found "
            f"({paths_str}). Specify the device explicitly.",
            error_code="AMBIGUOUS_DEVICE",
        )
        self.device_paths = device_paths


# Patterns for partition detection
# /dev/sdX1, /dev/hdX1, /dev/vdX1
_PARTITION_PATTERN_SD = re.compile(r"^/dev/[shv]d[a-z]+(\d+)$")
# /dev/nvme0n1p1, /dev/nvme0n1p2
_PARTITION_PATTERN_NVME = re.compile(r"^/dev/nvme\d+n\d+p(\d+)$")
# /dev/mmcblk0p1, /dev/mmcblk0p2
_PARTITION_PATTERN_MMC = re.compile(r"^/dev/mmcblk\d+p(\d+)$")


def _partition_to_whole_device(partition_path: str) -> str:
    """Convert a partition path to its whole device path.

    Args:
        partition_path: Path to a partition (e.g., '/dev/sda1').

    Returns:
        Path to the whole device (e.g., '/dev/sda').
    """
    match = _PARTITION_PATTERN_SD.match(partition_path)
    if match:
        return partition_path[: -len(match.group(1))]

    if _PARTITION_PATTERN_NVME.match(partition_path) or _PARTITION_PATTERN_MMC.match(
        partition_path
    ):
        return partition_path[: partition_path.rfind("p")]

    return partition_path


def get_mount_points(device_path: str) -> list[str]:
    """Get mount points for a device and its partitions.

    Parses /proc/mounts to find any mounted partitions associated
    with the given device.

    Args:
        device_path: Path to the device (e.g., '/dev/sda').

    Returns:
        List of mount points in /proc/mounts order (empty if none mounted).
    """
    mount_points: list[str] = []
    device_name = Path(device_path).name

    try:
        with open("/proc/mounts") as f:
            for line in f:
                parts = line.split()
                if len(parts) < 2:
                    continue
                mounted_name = Path(parts[0]).name
                if mounted_name == device_name or (
                    mounted_name.startswith(device_name)
                    and len(mounted_name) > len(device_name)
                    and (
                        mounted_name[len(device_name)].isdigit()
                        or mounted_name[len(device_name)] == "p"
                    )
                ):
                    # Matches the disk itself or partitions like sda1, mmcblk0p1
                    mount_points.append(parts[1])
    except OSError:
        logger.warning("Could not read /proc/mounts, skipping mount check")

    return mount_points


def get_root_device() -> str | None:
    """Get the whole device that contains the root filesystem.

    Returns:
        Path to the root device, or None if unknown.
    """
    try:
        with open("/proc/mounts") as f:
            for line in f:
                parts = line.split()
                if len(parts) >= 2 and parts[1] == "/":
                    return _partition_to_whole_device(parts[0])
    except OSError:
        logger.warning("Could not read /proc/mounts to determine root device")

    return None


def _collect_mountpoints(entry: dict) -> list[str]:
    """Collect mountpoints of an lsblk entry and its children, depth first."""
    mounts: list[str] = []
    points = entry.get("mountpoints")
    if points is None:
        points = [entry.get("mountpoint")]
    mounts.extend(str(mp) for mp in points if mp)
    for child in entry.get("children") or []:
        mounts.extend(_collect_mountpoints(child))
    return mounts


def _parse_lsblk(payload: dict, root_device: str | None) -> list[Device]:
    """Turn `lsblk -J` output into detachable Device entries."""
    devices: list[Device] = []
    for entry in payload.get("blockdevices", []):
        if entry.get("type") != "disk":
            continue
        path = entry.get("path") or f"/dev/{entry.get('name')}"
        transport = entry.get("tran")
        removable = entry.get("rm") in (True, 1, "1", "true")
        if not (removable or transport in _DETACHABLE_TRANSPORTS):
            continue

        mounts = _collect_mountpoints(entry)
        if path == root_device or "/" in mounts:
            logger.debug("Skipping %s: holds the root filesystem", path)
            continue

        size = entry.get("size")
        devices.append(
            Device(
                device_path=path,
                display_name=str(entry.get("model") or entry.get("name") or "disk").strip(),
                mountpoints=tuple(mounts),
                size_bytes=int(size) if size is not None else None,
                transport=transport,
            )
        )
    return devices


def _list_from_lsblk(lsblk: str, root_device: str | None) -> list[Device]:
    try:
        proc = subprocess.run(
            [
                lsblk,
                "-J",
                "-b",
                "-o",
                "NAME,PATH,SIZE,MODEL,TYPE,TRAN,RM,MOUNTPOINT",
            ],
            capture_output=True,
            text=True,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as e:
        raise DeviceEnumerationError(f"lsblk failed: {e}") from e

    try:
        payload = json.loads(proc.stdout)
    except json.JSONDecodeError as e:
        raise DeviceEnumerationError(f"lsblk returned invalid JSON: {e}") from e

    return _parse_lsblk(payload, root_device)


def _list_from_sysfs(sys_block: Path, root_device: str | None) -> list[Device]:
    devices: list[Device] = []
    if not sys_block.exists():
        return devices

    for entry in sorted(sys_block.iterdir(), key=lambda p: p.name):
        if not (entry / "device").exists():
            continue
        removable_path = entry / "removable"
        removable = (
            removable_path.read_text().strip() == "1"
            if removable_path.exists()
            else False
        )
        path = f"/dev/{entry.name}"
        if not removable or path == root_device:
            continue

        model_path = entry / "device" / "model"
        model = model_path.read_text().strip() if model_path.exists() else entry.name
        size_path = entry / "size"
        try:
            # Size is in 512-byte sectors
            size = int(size_path.read_text().strip()) * 512
        except (OSError, ValueError):
            size = None

        devices.append(
            Device(
                device_path=path,
                display_name=model,
                mountpoints=tuple(get_mount_points(path)),
                size_bytes=size,
            )
        )
    return devices


def list_detachable_devices(sys_block: Path = Path("/sys/block")) -> list[Device]:
    """List whole-disk detachable devices eligible for flashing.

    Uses `lsblk` when available and falls back to probing sysfs. The
    device holding the root filesystem is always excluded.

    Args:
        sys_block: sysfs block directory used by the fallback probe.

    Returns:
        Detachable devices in enumeration order.

    Raises:
        DeviceEnumerationError: `lsblk` failed or returned garbage.
    """
    root_device = get_root_device()
    lsblk = shutil.which("lsblk")
    if lsblk:
        devices = _list_from_lsblk(lsblk, root_device)
    else:
        logger.debug("lsblk not available, probing %s", sys_block)
        devices = _list_from_sysfs(sys_block, root_device)

    logger.debug("Detachable devices: %s", [d.device_path for d in devices])
    return devices


def resolve_device(
    config: FlashConfig,
    ui: Ui,
    *,
    enumerate_devices: Callable[[], Sequence[Device]] = list_detachable_devices,
) -> Device:
    """Resolve exactly one target device for a flash run.

    Args:
        config: Flash configuration.
        ui: Prompt/output surface.
        enumerate_devices: Lists currently attached detachable devices.

    Returns:
        The selected Device.

    Raises:
        NoDevicesFoundError: No detachable devices.
        DeviceNotFoundError: Configured device is not detachable/attached.
        AmbiguousDeviceError: Non-interactive with more than one candidate.
        InvalidSelectionError: Interactive answer is not a valid entry.
    """
    detachables = list(enumerate_devices())
    if not detachables:
        logger.error("No detachable devices found")
        raise NoDevicesFoundError()

    if config.device:
        for device in detachables:
            if device.device_path == config.device:
                logger.info("Using configured device %s", device.device_path)
                return device
        logger.error("Configured device not found: %s", config.device)
        raise DeviceNotFoundError(config.device)

    if not config.interactive:
        if len(detachables) != 1:
            paths = [d.device_path for d in detachables]
            logger.error("Refusing to auto-select among %s", paths)
            raise AmbiguousDeviceError(paths)
        logger.info("Auto-selected only device %s", detachables[0].device_path)
        return detachables[0]

    index = prompt_selection(
        ui,
        [f"{d.device_path} ({d.display_name})" for d in detachables],
        "Which device should we choose?",
    )
    return detachables[index]


__all__ = [
    "AmbiguousDeviceError",
    "DeviceEnumerationError",
    "DeviceError",
    "DeviceNotFoundError",
    "NoDevicesFoundError",
    "get_mount_points",
    "get_root_device",
    "list_detachable_devices",
    "resolve_device",
]
