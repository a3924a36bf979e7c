"""Delete API routes for removing stored images and their records."""

from typing import Any

from flask import Blueprint, Response, jsonify, request

from image_catalog import get_services
from image_catalog.services.naming import split_identifiers

delete_bp = Blueprint("delete", __name__)


def _delete_targets() -> tuple[list[Any], list[str]]:
    """Extract raw identifiers and legacy URLs from the request.

    Accepts a JSON body ``{"items": [...]}``, the legacy keys ``filenames``
    and ``urls``, a bare JSON list, or a form/query ``items`` field holding
    newline or comma separated text.
    """
    raw: list[Any] = []
    urls: list[str] = []

    data = request.get_json(silent=True) if request.is_json else None
    if isinstance(data, list):
        raw.append(data)
    elif isinstance(data, dict):
        for key in ("items", "filenames"):
            if data.get(key) is not None:
                raw.append(data[key])
        legacy_urls = data.get("urls")
        if isinstance(legacy_urls, list):
            urls = [u for u in legacy_urls if isinstance(u, str)]
        elif isinstance(legacy_urls, str):
            urls = [legacy_urls]

    text = request.values.get("items")
    if text:
        raw.append(text)
    return raw, urls


@delete_bp.route("/delete", methods=["POST"])
@delete_bp.route("/images", methods=["DELETE"])
def delete_images() -> tuple[Response, int]:
    """Delete images by filename or URL.

    Returns:
        JSON with one result per resolved filename
    """
    raw, urls = _delete_targets()
    manager = get_services().deletes

    # Flatten each source into one identifier list before resolution
    identifiers: list[str] = []
    for source in raw:
        identifiers.extend(split_identifiers(source))

    results = manager.delete_items(identifiers, urls)
    return jsonify({"deleted": [r.to_dict() for r in results], "count": len(results)}), 200
