"""Storage service for image files on local disk."""

import os
import tempfile
from pathlib import Path

from image_catalog.errors import StorageIOError
from image_catalog.services.naming import sanitize_filename


def ensure_directory(directory: Path) -> Path:
    """Create a directory (and parents) if it does not exist yet."""
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StorageIOError(f"Cannot create directory {directory}: {e}") from e
    return directory


def get_file_path(uploads_dir: Path, filename: str) -> Path:
    """Return the storage path for a filename, sanitizing it first."""
    return uploads_dir / sanitize_filename(filename)


def file_exists(uploads_dir: Path, filename: str) -> bool:
    """Check if a file is present in the uploads directory."""
    return get_file_path(uploads_dir, filename).is_file()


def write_file(uploads_dir: Path, filename: str, data: bytes) -> Path:
    """Write file bytes, replacing any existing file of the same name.

    The bytes go to a temp file in the same directory first and are then
    renamed over the target, so a reader sees either the old or the new file.

    Args:
        uploads_dir: Uploads directory
        filename: Target filename (sanitized here)
        data: File contents

    Returns:
        Path of the written file

    Raises:
        StorageIOError: If the file cannot be written
    """
    target = get_file_path(uploads_dir, filename)
    tmp_name: str | None = None
    try:
        ensure_directory(uploads_dir)
        fd, tmp_name = tempfile.mkstemp(dir=str(uploads_dir), prefix=".upload-", suffix=".tmp")
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, target)
        tmp_name = None
    except OSError as e:
        raise StorageIOError(f"Failed to write {target.name}: {e}") from e
    finally:
        if tmp_name and os.path.exists(tmp_name):
            os.remove(tmp_name)
    return target


def delete_file(uploads_dir: Path, filename: str) -> bool:
    """Remove a stored file.

    Returns:
        True if the file existed and was removed, False if it was absent

    Raises:
        StorageIOError: If the file exists but cannot be removed
    """
    target = get_file_path(uploads_dir, filename)
    try:
        target.unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        raise StorageIOError(f"Failed to delete {target.name}: {e}") from e
    return True
