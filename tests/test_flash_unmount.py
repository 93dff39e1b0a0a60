"""Tests for flash/unmount.py."""

from unittest.mock import MagicMock, call, patch

import pytest

from image_flasher.flash.unmount import UnmountError, unmount_device
from image_flasher.types import Device


def _completed(returncode: int, stderr: str = "") -> MagicMock:
    return MagicMock(returncode=returncode, stderr=stderr)


class TestUnmountDevice:
    """Tests for unmount_device function."""

    def test_no_mountpoints(self, ui):
        """Nothing to do for an unmounted device."""
        with patch("image_flasher.flash.unmount.subprocess.run") as mock_run:
            unmount_device(Device("/dev/sdb", "USB"), ui)
        mock_run.assert_not_called()
        assert ui.messages == []

    def test_all_unmounted_in_order(self, ui):
        """Each mountpoint is announced and unmounted in order."""
        device = Device("/dev/sdb", "USB", ("/mnt/a", "/mnt/b"))
        with patch(
            "image_flasher.flash.unmount.subprocess.run",
            return_value=_completed(0),
        ) as mock_run:
            unmount_device(device, ui)

        assert [c.args[0] for c in mock_run.call_args_list] == [
            ["umount", "/mnt/a"],
            ["umount", "/mnt/b"],
        ]
        assert ui.messages == ["unmounting /mnt/a", "unmounting /mnt/b"]

    def test_second_of_three_fails(self, ui):
        """Failure on the second mountpoint stops before the third."""
        device = Device("/dev/sdb", "USB", ("/mnt/a", "/mnt/b", "/mnt/c"))
        with patch(
            "image_flasher.flash.unmount.subprocess.run",
            side_effect=[_completed(0), _completed(32, "umount: /mnt/b: target is busy.")],
        ) as mock_run:
            with pytest.raises(UnmountError) as exc_info:
                unmount_device(device, ui)

        assert mock_run.call_count == 2
        assert mock_run.call_args_list[0] == call(
            ["umount", "/mnt/a"], capture_output=True, text=True, check=False
        )
        assert exc_info.value.mountpoint == "/mnt/b"
        assert "target is busy" in exc_info.value.message
        assert exc_info.value.error_code == "UNMOUNT_FAILED"
        assert ui.messages == ["unmounting /mnt/a", "unmounting /mnt/b"]

    def test_umount_missing(self, ui):
        """A missing umount binary is an UnmountError."""
        device = Device("/dev/sdb", "USB", ("/mnt/a",))
        with patch(
            "image_flasher.flash.unmount.subprocess.run",
            side_effect=FileNotFoundError("umount"),
        ):
            with pytest.raises(UnmountError):
                unmount_device(device, ui)

    def test_exit_code_without_stderr(self, ui):
        """The exit code is reported when umount prints nothing."""
        device = Device("/dev/sdb", "USB", ("/mnt/a",))
        with patch(
            "image_flasher.flash.unmount.subprocess.run",
            return_value=_completed(1),
        ):
            with pytest.raises(UnmountError) as exc_info:
                unmount_device(device, ui)
        assert exc_info.value.reason == "exit code 1"
