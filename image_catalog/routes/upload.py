"""Upload API routes for image_catalog"""

import json
import threading
import time
from collections import deque
from collections.abc import Generator
from typing import Any

from flask import Blueprint, Response, jsonify, request

from image_catalog import get_services
from image_catalog.errors import NotFoundError, ValidationError
from image_catalog.services.upload_manager import JobStatus, UploadPayload
from image_catalog.services.utils import parse_bool

upload_bp = Blueprint("upload", __name__)

# Store for SSE clients per job
_sse_queues: dict[str, list[deque[dict[str, Any]]]] = {}
_sse_lock = threading.Lock()

GENERIC_MIME = "application/octet-stream"


def send_sse_event(job_id: str, data: dict[str, Any]) -> None:
    """Send an SSE event to all clients listening for a job."""
    with _sse_lock:
        queues = _sse_queues.get(job_id, [])
        for q in queues:
            q.append(data)


def _read_payloads() -> list[UploadPayload]:
    """Collect multipart files from the ``files`` and ``file`` fields."""
    payloads: list[UploadPayload] = []
    for storage in request.files.getlist("files") + request.files.getlist("file"):
        if not storage.filename:
            continue
        declared = storage.mimetype or ""
        payloads.append(
            UploadPayload(
                name=storage.filename,
                data=storage.read(),
                declared_mime="" if declared == GENERIC_MIME else declared,
            )
        )
    return payloads


def _option(name: str) -> str | None:
    """Read an option from the form body, falling back to the query string."""
    value = request.form.get(name)
    return value if value is not None else request.args.get(name)


@upload_bp.route("/upload", methods=["POST"])
def upload_files() -> tuple[Response, int]:
    """Upload one or more images.

    Form fields:
        files / file: The image files (repeatable)
        overwrite: "true" to replace existing files (default: false)
        concurrency: Uploads in flight at once, 1-64 (default from settings)
        async: "true" to return 202 immediately and stream progress via SSE
            on /upload/progress/<job_id>

    Returns:
        JSON with one result per file, or the job id when async
    """
    payloads = _read_payloads()
    if not payloads:
        raise ValidationError("No files provided. Use the 'files' field.")

    overwrite = parse_bool(_option("overwrite"))
    concurrency = _option("concurrency")
    manager = get_services().uploads

    if parse_bool(_option("async")):
        job = manager.create_job(payloads, concurrency=concurrency, overwrite=overwrite)

        def progress_callback(event: dict[str, Any]) -> None:
            send_sse_event(job.job_id, event)

        thread = threading.Thread(
            target=manager.run_job, args=(job.job_id, progress_callback), daemon=True
        )
        thread.start()

        return jsonify(
            {
                "job_id": job.job_id,
                "status": job.status.value,
                "total_files": len(job.outcomes),
            }
        ), 202

    outcomes = manager.upload(payloads, concurrency_limit=concurrency, overwrite=overwrite)
    return jsonify(
        {
            "uploaded": [o.to_result_dict() for o in outcomes],
            "count": len(outcomes),
        }
    ), 200


@upload_bp.route("/upload/progress/<job_id>", methods=["GET"])
def get_progress(job_id: str) -> Response:
    """Stream progress updates for a job via Server-Sent Events.

    Args:
        job_id: The job ID to monitor

    Returns:
        SSE stream of file_status events, ending with upload_complete
    """
    manager = get_services().uploads
    if not manager.get_job(job_id):
        raise NotFoundError("Job not found", {"job_id": job_id})

    def generate() -> Generator[str, None, None]:
        # Create a queue for this client
        queue: deque[dict[str, Any]] = deque()
        with _sse_lock:
            if job_id not in _sse_queues:
                _sse_queues[job_id] = []
            _sse_queues[job_id].append(queue)

        try:
            # Send initial state
            job = manager.get_job(job_id)
            if job:
                if job.status in (JobStatus.COMPLETED, JobStatus.CANCELLED):
                    yield f"data: {json.dumps({'type': 'upload_complete', **job.to_dict()})}\n\n"
                    return
                yield f"data: {json.dumps({'type': 'job_state', **job.to_dict()})}\n\n"

            # Stream updates
            while True:
                while queue:
                    data = queue.popleft()
                    yield f"data: {json.dumps(data)}\n\n"

                    if data.get("type") == "upload_complete":
                        return

                # Small delay to prevent busy waiting
                time.sleep(0.1)

                # Check if job still exists
                if not manager.get_job(job_id):
                    yield 'data: {"error": "Job not found"}\n\n'
                    return

        finally:
            # Clean up queue
            with _sse_lock:
                if job_id in _sse_queues and queue in _sse_queues[job_id]:
                    _sse_queues[job_id].remove(queue)
                    if not _sse_queues[job_id]:
                        del _sse_queues[job_id]

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@upload_bp.route("/upload/status/<job_id>", methods=["GET"])
def get_status(job_id: str) -> tuple[Response, int]:
    """Get current status of a job (non-streaming)."""
    job = get_services().uploads.get_job(job_id)
    if not job:
        raise NotFoundError("Job not found", {"job_id": job_id})

    return jsonify(job.to_dict()), 200


@upload_bp.route("/upload/active", methods=["GET"])
def get_active_jobs() -> tuple[Response, int]:
    """List jobs that are still queued or uploading."""
    jobs = get_services().uploads.get_active_jobs()
    return jsonify({"jobs": [j.to_progress_dict() for j in jobs], "count": len(jobs)}), 200


@upload_bp.route("/upload/cancel/<job_id>", methods=["POST"])
def cancel_upload(job_id: str) -> tuple[Response, int]:
    """Stop dispatching the remaining files of a job.

    Args:
        job_id: The job ID to cancel

    Returns:
        JSON response with cancellation status
    """
    manager = get_services().uploads

    if not manager.cancel_job(job_id):
        raise NotFoundError("Job not found", {"job_id": job_id})

    job = manager.get_job(job_id)
    return jsonify(
        {
            "success": True,
            "job_id": job_id,
            "job": job.to_progress_dict() if job else None,
        }
    ), 200
