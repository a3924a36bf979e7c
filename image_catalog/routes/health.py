"""Liveness probe."""

from flask import Blueprint, Response, jsonify

from image_catalog.config import get_package_version, get_settings

health_bp = Blueprint("health", __name__)


@health_bp.route("/health", methods=["GET"])
def health() -> tuple[Response, int]:
    """Report that the server is up and where it keeps its data."""
    settings = get_settings()
    return jsonify(
        {
            "ok": True,
            "uploads_dir": str(settings.uploads_dir),
            "data_dir": str(settings.data_dir),
            "version": get_package_version(),
        }
    ), 200
