"""Settings API routes for image_catalog"""

from flask import Blueprint, Response, jsonify, request

from image_catalog import get_services
from image_catalog.config import clamp_concurrency, get_package_version, get_settings
from image_catalog.errors import ValidationError
from image_catalog.services.log_service import get_log_service

settings_bp = Blueprint("settings", __name__)

# Directories and port are fixed at startup
EDITABLE_KEYS = {"public_base_url", "upload_concurrency", "display_name", "log_directory"}


@settings_bp.route("", methods=["GET"])
def get_all_settings() -> tuple[Response, int]:
    """Get all current settings.

    Returns:
        JSON response with all settings
    """
    settings = get_settings()
    return jsonify({**settings.all(), "version": get_package_version()}), 200


@settings_bp.route("", methods=["PUT"])
def update_settings() -> tuple[Response, int]:
    """Update settings.

    Request body:
        JSON object with settings to update

    Returns:
        JSON response with updated settings
    """
    if not request.is_json:
        raise ValidationError("JSON body required")

    data = request.get_json(silent=True)
    if not data or not isinstance(data, dict):
        raise ValidationError("Empty body")

    filtered_data = {k: v for k, v in data.items() if k in EDITABLE_KEYS}
    if not filtered_data:
        raise ValidationError(
            "No valid settings provided", {"allowed_keys": sorted(EDITABLE_KEYS)}
        )

    if "upload_concurrency" in filtered_data:
        filtered_data["upload_concurrency"] = clamp_concurrency(filtered_data["upload_concurrency"])
    if "public_base_url" in filtered_data:
        filtered_data["public_base_url"] = str(filtered_data["public_base_url"] or "").strip()

    settings = get_settings()
    settings.update(filtered_data)

    # Apply to the running upload manager
    uploads = get_services().uploads
    uploads.public_base_url = settings.public_base_url
    uploads.default_concurrency = settings.upload_concurrency

    log = get_log_service()
    log.info(
        "settings",
        "settings_updated",
        f"Updated settings: {', '.join(filtered_data.keys())}",
        {"changed_keys": list(filtered_data.keys())},
    )

    return jsonify(settings.all()), 200
