"""Configuration settings for image_flasher.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from image_flasher.types import FlashConfig

DEFAULT_IMAGE_EXTENSIONS = [
    ".img",
    ".iso",
    ".raw",
    ".img.gz",
    ".img.xz",
    ".img.bz2",
    ".img.zip",
    ".iso.gz",
    ".iso.xz",
    ".zip",
]


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the IMAGE_FLASHER_
    prefix. CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="IMAGE_FLASHER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Selection
    image: str | None = Field(
        default=None,
        description="Image to flash (scans the working directory if not set)",
    )
    device: str | None = Field(
        default=None,
        description="Target device path (chosen among detachable devices if not set)",
    )
    image_extensions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_IMAGE_EXTENSIONS),
        description="File name suffixes considered when scanning for images",
    )

    # Operational modes
    interactive: bool = Field(
        default=True,
        description="Prompt for selections and confirmation",
    )
    verify: bool = Field(
        default=True,
        description="Read the device back and compare checksums after writing",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # I/O
    block_size: int = Field(
        default=1024 * 1024,
        ge=4096,
        le=64 * 1024 * 1024,
        description="Chunk size in bytes for device reads and writes",
    )

    def to_flash_config(self, **overrides: Any) -> FlashConfig:
        """Build the immutable per-run FlashConfig.

        Args:
            **overrides: Values that take precedence over settings
                (None values are ignored).

        Returns:
            FlashConfig for a single run.
        """
        values: dict[str, Any] = {
            "image": self.image,
            "device": self.device,
            "interactive": self.interactive,
            "verify": self.verify,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return FlashConfig(**values)


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = [
    "DEFAULT_IMAGE_EXTENSIONS",
    "Settings",
    "get_settings",
    "print_settings_json",
]
