"""Base exception for image_flasher.

Every error raised by the flash pipeline derives from FlasherError and
carries a human-readable message plus a stable error code that the CLI
surfaces in JSON output.
"""


class FlasherError(Exception):
    """Base exception for all flash pipeline errors."""

    def __init__(self, message: str, error_code: str) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code


__all__ = ["FlasherError"]
