"""Image Flasher - write disk images to removable block devices.

This package streams a (possibly compressed) disk image onto a removable
USB/SD device with interactive safety checks and optional read-back
checksum verification.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
