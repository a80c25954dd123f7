"""Utility functions for reading photos from disk and formatting sizes."""

import logging
import mimetypes
from pathlib import Path

from snapme_claim.models import UploadFile

logger = logging.getLogger(__name__)

# Extensions picked up when scanning a directory; type checks happen on upload
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp", ".heic"}


def is_image_file(path: Path) -> bool:
    """Check if a file looks like an image by its extension.

    Args:
        path: Path to the file to check

    Returns:
        True if the file has an image extension, False otherwise
    """
    return path.is_file() and path.suffix.lower() in IMAGE_EXTENSIONS


def load_upload_file(path: Path) -> UploadFile:
    """Read a file from disk into an :class:`UploadFile`.

    Raises:
        FileNotFoundError: If the file doesn't exist
    """
    if not path.exists():
        raise FileNotFoundError(f"Photo file not found: {path}")
    content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    return UploadFile(file_name=path.name, content=path.read_bytes(), content_type=content_type)


def scan_photo_files(directory: Path) -> list[UploadFile]:
    """Load every image file directly inside ``directory``, sorted by name.

    Raises:
        FileNotFoundError: If directory doesn't exist
        NotADirectoryError: If directory is not a directory
    """
    if not directory.exists():
        raise FileNotFoundError(f"Directory does not exist: {directory}")

    if not directory.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {directory}")

    files = []
    for path in sorted(directory.iterdir()):
        if not is_image_file(path):
            logger.debug(f"Skipping non-image: {path}")
            continue
        files.append(load_upload_file(path))

    logger.info(f"Found {len(files)} photo(s) in {directory}")
    return files


def format_size(size: int | None) -> str:
    if not size:
        return "-"
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.2f} MB"
