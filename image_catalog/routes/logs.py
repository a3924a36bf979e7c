"""Logs API routes for image_catalog"""

from flask import Blueprint, Response, jsonify, request

from image_catalog.services.log_service import get_log_service

logs_bp = Blueprint("logs", __name__)


@logs_bp.route("/entries", methods=["GET"])
def get_log_entries() -> tuple[Response, int]:
    """Query log entries with filtering and pagination.

    Query params:
        date: Filter by date (YYYY-MM-DD)
        level: Filter by level (INFO/WARNING/ERROR)
        category: Filter by category (app/upload/delete/store/settings)
        search: Full-text search in message and event
        offset: Pagination offset (default 0)
        limit: Pagination limit (default 100)

    Returns:
        JSON with entries, total, offset, limit
    """
    log = get_log_service()

    offset = request.args.get("offset", "0")
    limit = request.args.get("limit", "100")
    try:
        offset_int = max(0, int(offset))
        limit_int = max(1, min(1000, int(limit)))
    except ValueError:
        offset_int = 0
        limit_int = 100

    result = log.read_log_entries(
        date=request.args.get("date"),
        level=request.args.get("level"),
        category=request.args.get("category"),
        search=request.args.get("search"),
        offset=offset_int,
        limit=limit_int,
    )

    return jsonify(result), 200


@logs_bp.route("/files", methods=["GET"])
def get_log_files() -> tuple[Response, int]:
    """List all log files with metadata."""
    log = get_log_service()
    return jsonify({"files": log.list_log_files()}), 200


@logs_bp.route("/stats", methods=["GET"])
def get_log_stats() -> tuple[Response, int]:
    """Get aggregate log statistics (counts by level/category, date range)."""
    log = get_log_service()
    return jsonify(log.get_log_stats()), 200
