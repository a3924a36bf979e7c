"""Catalog listing routes: JSON and CSV views of the image records."""

from flask import Blueprint, Response, jsonify, request

from image_catalog import get_services

images_bp = Blueprint("images", __name__)

CSV_DOWNLOAD_NAME = "images.csv"


def _csv_response(filter_text: str | None) -> Response:
    body = get_services().catalog.export_csv(filter_text)
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{CSV_DOWNLOAD_NAME}"'},
    )


@images_bp.route("/images", methods=["GET"])
def list_images() -> Response | tuple[Response, int]:
    """List catalog records, most recently updated first.

    Query params:
        q: Case-insensitive substring matched against filename, url and mime
        format: "csv" to download the listing instead of JSON

    Returns:
        JSON with images and count, or a CSV attachment
    """
    filter_text = request.args.get("q")
    if request.args.get("format", "").lower() == "csv":
        return _csv_response(filter_text)

    records = get_services().catalog.list_images(filter_text)
    return jsonify({"images": [r.to_dict() for r in records], "count": len(records)}), 200


@images_bp.route("/images.csv", methods=["GET"])
def export_images_csv() -> Response:
    """Download the (optionally filtered) catalog as CSV."""
    return _csv_response(request.args.get("q"))
