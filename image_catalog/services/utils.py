"""Shared utility functions for app services."""

from typing import Any

_TRUE_VALUES = {"1", "true", "yes", "on"}


def format_file_size(size_bytes: int) -> str:
    """Format a file size in bytes to a human-readable string (e.g. "1.5 MB")."""
    size_float = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if abs(size_float) < 1024.0:
            return f"{size_float:.1f} {unit}"
        size_float = size_float / 1024.0
    return f"{size_float:.1f} PB"


def parse_bool(value: Any, default: bool = False) -> bool:
    """Interpret a form or query value such as "true"/"false" as a boolean."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES
