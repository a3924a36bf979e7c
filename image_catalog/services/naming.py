"""Filename sanitization, URL construction and delete-target resolution.

``sanitize_filename`` is the single place that decides what a stored file is
called. Storage paths, public URLs and delete resolution all go through it.
"""

import json
import mimetypes
import posixpath
import re
from collections.abc import Iterable
from typing import Any
from urllib.parse import quote, unquote, urlparse

FALLBACK_FILENAME = "file"
FILES_ROUTE = "/files"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")

_IMAGE_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".bmp": "image/bmp",
    ".avif": "image/avif",
}


def sanitize_filename(name: str | None) -> str:
    """Reduce an arbitrary client-supplied name to a safe flat filename.

    Path components are dropped (both ``/`` and ``\\`` separators), every
    character outside ``[A-Za-z0-9._-]`` becomes ``_``, and leading dots and
    underscores are stripped so the result is never hidden. Names that end
    up empty become ``"file"``.

    Args:
        name: Raw name, e.g. from a multipart upload

    Returns:
        A non-empty filename safe to join onto the uploads directory
    """
    if not name:
        return FALLBACK_FILENAME
    base = name.replace("\\", "/").split("/")[-1]
    cleaned = _UNSAFE_CHARS.sub("_", base.strip())
    cleaned = cleaned.lstrip("._").strip()
    return cleaned or FALLBACK_FILENAME


def to_public_url(filename: str, public_base_url: str = "") -> str:
    """Build the URL a stored file is served from.

    Without a public base the URL is same-origin (``/files/<name>``).
    """
    safe = sanitize_filename(filename)
    if public_base_url:
        return f"{public_base_url.rstrip('/')}{FILES_ROUTE}/{quote(safe)}"
    return f"{FILES_ROUTE}/{safe}"


def guess_mime(filename: str) -> str:
    """Infer a content type from the file extension."""
    ext = posixpath.splitext(filename)[1].lower()
    if ext in _IMAGE_MIME_TYPES:
        return _IMAGE_MIME_TYPES[ext]
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"


def is_absolute_url(text: str) -> bool:
    """Check whether text parses as an absolute http(s) URL."""
    parsed = urlparse(text)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def filename_from_identifier(item: str) -> str | None:
    """Map one raw delete identifier to a canonical filename.

    Absolute URLs resolve to the URL-decoded basename of their path.
    Anything else is treated as a filename after trimming.

    Returns:
        The sanitized filename, or None if nothing usable remains
    """
    text = item.strip()
    if not text:
        return None
    if is_absolute_url(text):
        text = unquote(posixpath.basename(urlparse(text).path))
    elif text.startswith("/"):
        text = unquote(posixpath.basename(text))
    if not text.strip():
        return None
    return sanitize_filename(text)


def split_identifiers(raw: Any) -> list[str]:
    """Flatten the accepted delete-target shapes into a list of strings.

    Accepts a list of strings, a JSON array encoded as a string, or a single
    string holding newline- or comma-separated entries.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        text = raw.strip()
        if text.startswith("["):
            try:
                decoded = json.loads(text)
            except json.JSONDecodeError:
                decoded = None
            if isinstance(decoded, list):
                return split_identifiers(decoded)
        return [part for part in re.split(r"[\r\n,]+", text) if part.strip()]
    if isinstance(raw, Iterable):
        items: list[str] = []
        for entry in raw:
            if isinstance(entry, str):
                items.append(entry)
            elif entry is not None:
                items.append(str(entry))
        return items
    return [str(raw)]


def resolve_identifiers(raw: Any) -> list[str]:
    """Resolve heterogeneous delete targets to a deduplicated filename list.

    Order of first appearance is preserved.
    """
    resolved = (filename_from_identifier(item) for item in split_identifiers(raw))
    return list(dict.fromkeys(name for name in resolved if name))
