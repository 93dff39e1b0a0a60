"""Image source resolution.

This module turns configuration into exactly one readable image stream:
- Open an explicitly configured image
- Otherwise scan a directory for image-like files and pick one
- Transparently decompress gzip, bzip2, xz and zip containers
"""

import bz2
import gzip
import logging
import lzma
import os
import zipfile
import zlib
from pathlib import Path
from typing import BinaryIO

from image_flasher.config import DEFAULT_IMAGE_EXTENSIONS
from image_flasher.errors import FlasherError
from image_flasher.flash.selection import CandidatePolicy, choose_candidate
from image_flasher.flash.ui import Ui
from image_flasher.types import FlashConfig

logger = logging.getLogger(__name__)

# Magic numbers for recognized containers
_GZIP_MAGIC = b"\x1f\x8b"
_BZIP2_MAGIC = b"BZh"
_XZ_MAGIC = b"\xfd7zXZ\x00"
_ZIP_MAGIC = b"PK\x03\x04"

_SUFFIX_FORMATS = {
    ".gz": "gzip",
    ".bz2": "bzip2",
    ".xz": "xz",
    ".lzma": "xz",
    ".zip": "zip",
}


class SourceError(FlasherError):
    """Base exception for image source errors."""


class NoImageFoundError(SourceError):
    """No candidate image files were found."""

    def __init__(self, directory: str) -> None:
        super().__init__(
            f"No image files found in {directory}. "
            "Pass an image path explicitly.",
            error_code="NO_IMAGE_FOUND",
        )
        self.directory = directory


class ImageOpenError(SourceError):
    """Image file could not be opened or decoded."""

    def __init__(self, image_path: str, reason: str) -> None:
        super().__init__(
            f"Could not open image {image_path}: {reason}",
            error_code="IMAGE_OPEN_FAILED",
        )
        self.image_path = image_path


class ImageStream:
    """Readable, possibly decompressing, byte stream over an image file.

    Closing the stream closes every handle opened to produce it.

    Attributes:
        path: Path of the image file.
        compression: Detected container format, or None for raw images.
    """

    def __init__(
        self,
        path: Path,
        reader: BinaryIO,
        compression: str | None = None,
        extra_handles: list[BinaryIO | zipfile.ZipFile] | None = None,
    ) -> None:
        self.path = path
        self.compression = compression
        self._reader = reader
        self._extra_handles = extra_handles or []
        self.closed = False

    @property
    def name(self) -> str:
        return self.path.name

    def read(self, size: int = -1) -> bytes:
        """Read up to size decompressed bytes.

        Raises:
            OSError: Read failed or the container is corrupt or truncated.
        """
        try:
            return self._reader.read(size)
        except (EOFError, lzma.LZMAError, zlib.error, zipfile.BadZipFile) as e:
            raise OSError(f"corrupt {self.compression} stream in {self.path}: {e}") from e

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._reader.close()
        for handle in reversed(self._extra_handles):
            handle.close()

    def __enter__(self) -> "ImageStream":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<ImageStream(path='{self.path}', compression={self.compression!r})>"


def detect_compression(path: str | Path) -> str | None:
    """Detect the container format of an image file.

    Magic bytes win; the file suffix is used only when the header is not
    recognized.

    Args:
        path: Path to the image file.

    Returns:
        One of 'gzip', 'bzip2', 'xz', 'zip', or None for raw data.
    """
    with open(path, "rb") as f:
        header = f.read(6)

    if header.startswith(_GZIP_MAGIC):
        return "gzip"
    if header.startswith(_BZIP2_MAGIC):
        return "bzip2"
    if header.startswith(_XZ_MAGIC):
        return "xz"
    if header.startswith(_ZIP_MAGIC):
        return "zip"

    suffix = Path(path).suffix.lower()
    if suffix in _SUFFIX_FORMATS and header:
        logger.warning(
            "File %s has suffix %s but no matching header; reading raw",
            path,
            suffix,
        )
    return None


def _open_zip_member(path: Path) -> ImageStream:
    archive = zipfile.ZipFile(path)
    try:
        members = [info for info in archive.infolist() if not info.is_dir()]
        if not members:
            raise ImageOpenError(str(path), "zip archive contains no files")
        member = members[0]
        if len(members) > 1:
            logger.warning(
                "Zip archive %s has %d files, using %s",
                path.name,
                len(members),
                member.filename,
            )
        reader = archive.open(member)
    except BaseException:
        archive.close()
        raise
    return ImageStream(path, reader, "zip", extra_handles=[archive])


def open_image(image_path: str | Path) -> ImageStream:
    """Open an image file for reading, decompressing if needed.

    Args:
        image_path: Path to the image file.

    Returns:
        ImageStream yielding the decompressed image bytes.

    Raises:
        ImageOpenError: File missing, unreadable, or a corrupt container.
    """
    path = Path(image_path)

    try:
        compression = detect_compression(path)
        logger.debug("Opening image %s (compression=%s)", path, compression)

        if compression == "gzip":
            return ImageStream(path, gzip.open(path, "rb"), compression)
        if compression == "bzip2":
            return ImageStream(path, bz2.open(path, "rb"), compression)
        if compression == "xz":
            return ImageStream(path, lzma.open(path, "rb"), compression)
        if compression == "zip":
            return _open_zip_member(path)
        return ImageStream(path, open(path, "rb"))

    except FileNotFoundError as e:
        raise ImageOpenError(str(path), "file not found") from e
    except zipfile.BadZipFile as e:
        raise ImageOpenError(str(path), f"bad zip archive: {e}") from e
    except OSError as e:
        raise ImageOpenError(str(path), str(e)) from e


def find_image_files(
    directory: str | Path | None = None,
    extensions: list[str] | None = None,
) -> list[Path]:
    """List image-like files in a directory.

    Args:
        directory: Directory to scan (defaults to the working directory).
        extensions: File name suffixes to accept (case-insensitive).

    Returns:
        Matching regular files, sorted by name.
    """
    root = Path(directory) if directory is not None else Path(os.getcwd())
    suffixes = tuple(
        ext.lower() for ext in (extensions or DEFAULT_IMAGE_EXTENSIONS)
    )

    candidates = [
        entry
        for entry in sorted(root.iterdir(), key=lambda p: p.name)
        if entry.is_file() and entry.name.lower().endswith(suffixes)
    ]
    logger.debug("Found %d candidate image(s) in %s", len(candidates), root)
    return candidates


def resolve_source(
    config: FlashConfig,
    ui: Ui,
    *,
    directory: str | Path | None = None,
    extensions: list[str] | None = None,
    policy: CandidatePolicy = choose_candidate,
) -> ImageStream:
    """Resolve exactly one image stream for a flash run.

    Args:
        config: Flash configuration.
        ui: Prompt/output surface.
        directory: Directory to scan when no image is configured.
        extensions: File name suffixes considered image-like.
        policy: Picks one of several candidates.

    Returns:
        Open ImageStream; the caller owns it and must close it.

    Raises:
        NoImageFoundError: Scan found no candidates.
        InvalidSelectionError: Interactive choice was not valid.
        ImageOpenError: Chosen image could not be opened.
    """
    if config.image:
        logger.info("Using configured image %s", config.image)
        return open_image(config.image)

    candidates = find_image_files(directory, extensions)
    if not candidates:
        root = str(directory) if directory is not None else os.getcwd()
        logger.error("No image files found in %s", root)
        raise NoImageFoundError(root)

    chosen = policy(candidates, config.interactive, ui)
    logger.info("Selected image %s among %d candidate(s)", chosen, len(candidates))
    ui.say(f"using image {chosen}")
    return open_image(chosen)


__all__ = [
    "ImageOpenError",
    "ImageStream",
    "NoImageFoundError",
    "SourceError",
    "detect_compression",
    "find_image_files",
    "open_image",
    "resolve_source",
]
