"""Static file serving for uploaded images."""

from flask import Blueprint, Response, send_from_directory

from image_catalog.config import get_settings
from image_catalog.errors import NotFoundError
from image_catalog.services import storage_service
from image_catalog.services.naming import guess_mime, sanitize_filename

files_bp = Blueprint("files", __name__)

CACHE_CONTROL = "public, max-age=31536000, immutable"


@files_bp.route("/files/<path:filename>", methods=["GET"])
def serve_file(filename: str) -> Response:
    """Serve a stored image with a long-lived cache header.

    Only canonical filenames are served; anything that would not survive
    sanitization (path separators, leading dots) is reported as missing.
    """
    settings = get_settings()
    if sanitize_filename(filename) != filename or not storage_service.file_exists(
        settings.uploads_dir, filename
    ):
        raise NotFoundError("File not found", {"filename": filename})

    response = send_from_directory(
        settings.uploads_dir,
        filename,
        mimetype=guess_mime(filename),
        max_age=31536000,
    )
    response.headers["Cache-Control"] = CACHE_CONTROL
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response
