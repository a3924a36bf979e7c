"""Upload manager: bounded-concurrency batch uploads into local storage."""

import logging
import threading
import uuid
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from image_catalog.config import clamp_concurrency
from image_catalog.errors import StorageIOError
from image_catalog.services import storage_service
from image_catalog.services.log_service import get_log_service
from image_catalog.services.metadata_store import MetadataStore
from image_catalog.services.naming import guess_mime, sanitize_filename, to_public_url
from image_catalog.services.utils import format_file_size

logger = logging.getLogger(__name__)

SKIP_EXISTS_REASON = "File exists. Set overwrite=true to replace."
CANCELLED_REASON = "cancelled"

ProgressCallback = Callable[[dict[str, Any]], None]


class UploadStatus(Enum):
    """Status of a single file in an upload batch."""

    QUEUED = "queued"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    OVERWRITTEN = "overwritten"
    SKIPPED = "skipped"
    ERROR = "error"


TERMINAL_STATUSES = frozenset(
    {UploadStatus.UPLOADED, UploadStatus.OVERWRITTEN, UploadStatus.SKIPPED, UploadStatus.ERROR}
)


class JobStatus(Enum):
    """Status of an upload batch as a whole."""

    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class UploadPayload:
    """One incoming file: client name, bytes and declared content type."""

    name: str
    data: bytes
    declared_mime: str = ""


@dataclass
class UploadOutcome:
    """Per-file result of an upload batch."""

    filename: str
    original_name: str
    size: int
    index: int = 0
    status: UploadStatus = UploadStatus.QUEUED
    url: str = ""
    error: str = ""
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        """Whether the file has reached its final status."""
        return self.status in TERMINAL_STATUSES

    def to_result_dict(self) -> dict[str, Any]:
        """Compact form used in the /upload response."""
        result: dict[str, Any] = {
            "filename": self.filename,
            "url": self.url,
            "status": self.status.value,
        }
        if self.error:
            result["error"] = self.error
        return result

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "filename": self.filename,
            "original_name": self.original_name,
            "index": self.index,
            "size": self.size,
            "size_formatted": format_file_size(self.size),
            "status": self.status.value,
            "url": self.url,
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class UploadJob:
    """An upload batch and the outcome of every file in it."""

    job_id: str
    concurrency: int
    overwrite: bool
    outcomes: list[UploadOutcome] = field(default_factory=list)
    payloads: list[UploadPayload] = field(default_factory=list, repr=False)
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled: bool = False
    active_workers: int = 0
    peak_active_workers: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def count(self, *statuses: UploadStatus) -> int:
        """Number of files currently in any of the given statuses."""
        return sum(1 for o in self.outcomes if o.status in statuses)

    @property
    def files_completed(self) -> int:
        """Number of files that reached a terminal status."""
        return sum(1 for o in self.outcomes if o.is_terminal)

    @property
    def progress_percent(self) -> int:
        """Completed files as a whole-number percentage."""
        if not self.outcomes:
            return 0
        return self.files_completed * 100 // len(self.outcomes)

    def summary(self) -> dict[str, int]:
        """Aggregate success/skipped/failed counts."""
        return {
            "success": self.count(UploadStatus.UPLOADED, UploadStatus.OVERWRITTEN),
            "uploaded": self.count(UploadStatus.UPLOADED),
            "overwritten": self.count(UploadStatus.OVERWRITTEN),
            "skipped": self.count(UploadStatus.SKIPPED),
            "failed": self.count(UploadStatus.ERROR),
        }

    def to_progress_dict(self) -> dict[str, Any]:
        """Lightweight job state without the per-file list."""
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "total_files": len(self.outcomes),
            "files_completed": self.files_completed,
            "progress_percent": self.progress_percent,
            "active_workers": self.active_workers,
            "concurrency": self.concurrency,
            "overwrite": self.overwrite,
            "cancelled": self.cancelled,
            **self.summary(),
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            **self.to_progress_dict(),
            "files": [o.to_dict() for o in self.outcomes],
            "peak_active_workers": self.peak_active_workers,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class UploadManager:
    """Runs upload batches and keeps a registry of recent jobs."""

    def __init__(
        self,
        store: MetadataStore,
        uploads_dir: Path,
        public_base_url: str = "",
        default_concurrency: int = 8,
    ) -> None:
        self.store = store
        self.uploads_dir = Path(uploads_dir)
        self.public_base_url = public_base_url
        self.default_concurrency = clamp_concurrency(default_concurrency)
        self.jobs: dict[str, UploadJob] = {}
        self._lock = threading.Lock()

    def create_job(
        self,
        files: Sequence[UploadPayload],
        concurrency: int | None = None,
        overwrite: bool = False,
    ) -> UploadJob:
        """Register a new batch. Every file starts out queued.

        Args:
            files: Incoming file payloads
            concurrency: Uploads in flight at once (clamped to 1-64)
            overwrite: Replace files that already exist instead of skipping them

        Returns:
            The created UploadJob
        """
        self.cleanup_old_jobs()

        limit = clamp_concurrency(
            self.default_concurrency if concurrency is None else concurrency,
            self.default_concurrency,
        )
        job = UploadJob(job_id=str(uuid.uuid4()), concurrency=limit, overwrite=overwrite)
        for index, payload in enumerate(files):
            job.payloads.append(payload)
            job.outcomes.append(
                UploadOutcome(
                    filename=sanitize_filename(payload.name),
                    original_name=payload.name,
                    size=len(payload.data),
                    index=index,
                )
            )

        with self._lock:
            self.jobs[job.job_id] = job

        get_log_service().info(
            "upload",
            "upload_job_created",
            f"Created upload job with {len(job.outcomes)} files",
            {
                "job_id": job.job_id,
                "total_files": len(job.outcomes),
                "concurrency": limit,
                "overwrite": overwrite,
            },
        )
        return job

    def get_job(self, job_id: str) -> UploadJob | None:
        """Get a job by ID."""
        return self.jobs.get(job_id)

    def upload(
        self,
        files: Sequence[UploadPayload],
        concurrency_limit: int | None = None,
        overwrite: bool = False,
        progress_callback: ProgressCallback | None = None,
        job: UploadJob | None = None,
    ) -> list[UploadOutcome]:
        """Upload a batch and block until every file is terminal.

        Args:
            files: Incoming file payloads
            concurrency_limit: Uploads in flight at once (clamped to 1-64)
            overwrite: Replace existing files instead of skipping them
            progress_callback: Receives every status event
            job: A job from ``create_job`` to run instead; files, limit and
                overwrite are then taken from the job

        Returns:
            One outcome per input file, in input order
        """
        if job is None:
            job = self.create_job(files, concurrency_limit, overwrite)
        self.run_job(job.job_id, progress_callback)
        return list(job.outcomes)

    def _emit(
        self,
        job: UploadJob,
        outcome: UploadOutcome,
        progress_callback: ProgressCallback | None,
        releasing: bool = False,
    ) -> None:
        """Send one per-file status event.

        ``releasing`` marks the terminal event of a worker that still holds
        its slot; the reported active count already excludes it.
        """
        if not progress_callback:
            return
        with job.lock:
            event = {
                "type": "file_status",
                "job_id": job.job_id,
                "index": outcome.index,
                "filename": outcome.filename,
                "original_name": outcome.original_name,
                "status": outcome.status.value,
                "url": outcome.url,
                "error": outcome.error,
                "active": job.active_workers - (1 if releasing else 0),
                "completed": job.files_completed,
                "total": len(job.outcomes),
            }
        try:
            progress_callback(event)
        except Exception:
            logger.warning("Progress callback failed for %s", outcome.filename, exc_info=True)

    def _process_file(self, job: UploadJob, outcome: UploadOutcome, payload: UploadPayload) -> None:
        """Store one file and its metadata. Failures end up in the outcome."""
        log = get_log_service()
        filename = outcome.filename

        written_new = False
        try:
            existed = storage_service.file_exists(self.uploads_dir, filename)
            if existed and not job.overwrite:
                outcome.status = UploadStatus.SKIPPED
                outcome.error = SKIP_EXISTS_REASON
                log.info(
                    "upload",
                    "file_upload_skipped",
                    f"Skipped existing file: {filename}",
                    {"job_id": job.job_id, "filename": filename, "reason": "exists"},
                )
                return

            storage_service.write_file(self.uploads_dir, filename, payload.data)
            written_new = not existed
            url = to_public_url(filename, self.public_base_url)
            mime = payload.declared_mime or guess_mime(filename)
            _, created = self.store.upsert_with_status(filename, len(payload.data), mime, url)
            written_new = False

            outcome.url = url
            outcome.status = UploadStatus.UPLOADED if created else UploadStatus.OVERWRITTEN
            log.info(
                "upload",
                "file_upload_completed",
                f"{outcome.status.value.capitalize()} {filename}",
                {
                    "job_id": job.job_id,
                    "filename": filename,
                    "size": outcome.size,
                    "mime": mime,
                    "status": outcome.status.value,
                },
            )
        except Exception as e:
            outcome.status = UploadStatus.ERROR
            outcome.error = str(e)
            # A new file without a record would block later non-overwrite retries
            if written_new:
                try:
                    storage_service.delete_file(self.uploads_dir, filename)
                except StorageIOError:
                    logger.warning("Could not remove orphaned file %s", filename, exc_info=True)
            log.error(
                "upload",
                "file_upload_failed",
                f"Failed to upload {filename}: {e}",
                {"job_id": job.job_id, "filename": filename, "error": str(e)},
            )

    def run_job(
        self,
        job_id: str,
        progress_callback: ProgressCallback | None = None,
    ) -> UploadJob | None:
        """Upload every file of a job through a bounded worker pool.

        A dispatch loop keeps at most ``job.concurrency`` files in flight and
        hands out the next file as soon as any worker finishes. Each worker
        decides skip / create / overwrite on its own; one failing file never
        stops its siblings. Returns once every dispatched worker has finished.

        Two files with the same name in one batch race each other, and the
        last metadata write wins.

        Args:
            job_id: The job to run
            progress_callback: Receives a dict per status transition and a
                final ``upload_complete`` event

        Returns:
            The finished UploadJob, or None if the job does not exist
        """
        job = self.get_job(job_id)
        if not job:
            return None

        log = get_log_service()
        slots = threading.Condition(job.lock)

        with job.lock:
            job.status = JobStatus.UPLOADING
            job.started_at = datetime.now(UTC)

        for outcome in job.outcomes:
            self._emit(job, outcome, progress_callback)

        def make_upload_task(outcome: UploadOutcome, payload: UploadPayload) -> Callable[[], None]:
            def upload_task() -> None:
                try:
                    self._process_file(job, outcome, payload)
                finally:
                    # Report the terminal status before the slot is reused
                    try:
                        with slots:
                            outcome.completed_at = datetime.now(UTC)
                        self._emit(job, outcome, progress_callback, releasing=True)
                    finally:
                        with slots:
                            job.active_workers -= 1
                            slots.notify()

            return upload_task

        cursor = 0
        total = len(job.outcomes)
        with ThreadPoolExecutor(max_workers=max(1, min(job.concurrency, total))) as executor:
            while cursor < total:
                with slots:
                    while job.active_workers >= job.concurrency:
                        slots.wait()
                    if job.cancelled:
                        break
                    outcome = job.outcomes[cursor]
                    payload = job.payloads[cursor]
                    cursor += 1
                    job.active_workers += 1
                    job.peak_active_workers = max(job.peak_active_workers, job.active_workers)
                    outcome.status = UploadStatus.UPLOADING
                    outcome.started_at = datetime.now(UTC)

                self._emit(job, outcome, progress_callback)
                executor.submit(make_upload_task(outcome, payload))

        # Files never dispatched because the job was cancelled
        for outcome in job.outcomes[cursor:]:
            with job.lock:
                outcome.status = UploadStatus.SKIPPED
                outcome.error = CANCELLED_REASON
                outcome.completed_at = datetime.now(UTC)
            self._emit(job, outcome, progress_callback)

        with job.lock:
            job.completed_at = datetime.now(UTC)
            job.status = JobStatus.CANCELLED if job.cancelled else JobStatus.COMPLETED
            job.payloads = []

        if progress_callback:
            try:
                progress_callback({"type": "upload_complete", **job.to_dict()})
            except Exception:
                logger.warning("Progress callback failed for job %s", job_id, exc_info=True)

        summary = job.summary()
        log.info(
            "upload",
            "upload_job_completed",
            f"Upload job completed: {summary['success']} success, "
            f"{summary['skipped']} skipped, {summary['failed']} failed",
            {"job_id": job_id, "status": job.status.value, **summary},
        )

        try:
            completed_at = job.completed_at or datetime.now(UTC)
            log.save_job_jsonl(
                job_id,
                {
                    "timestamp": completed_at.isoformat(),
                    "event": "upload_job_completed",
                    "job_id": job_id,
                    "status": job.status.value,
                    "concurrency": job.concurrency,
                    "overwrite": job.overwrite,
                    **summary,
                    "files": [o.to_result_dict() for o in job.outcomes],
                },
                completed_at,
            )
        except OSError:
            logger.warning("Failed to save job JSONL summary", exc_info=True)

        return job

    def cancel_job(self, job_id: str) -> bool:
        """Stop dispatching further files of a job.

        Files already in flight finish normally; files not yet dispatched end
        up skipped with reason "cancelled".

        Returns:
            True if the job exists
        """
        job = self.get_job(job_id)
        if not job:
            return False
        with job.lock:
            job.cancelled = True

        get_log_service().info(
            "upload",
            "upload_job_cancelled",
            "Upload job cancellation requested",
            {"job_id": job_id},
        )
        return True

    def get_active_jobs(self) -> list[UploadJob]:
        """Get all jobs that have not finished yet."""
        with self._lock:
            return [
                j
                for j in self.jobs.values()
                if j.status in (JobStatus.PENDING, JobStatus.UPLOADING)
            ]

    def cleanup_old_jobs(self, max_age_seconds: int = 3600) -> int:
        """Forget finished jobs older than max_age_seconds.

        Returns:
            Number of jobs removed
        """
        now = datetime.now(UTC)
        with self._lock:
            expired = [
                job_id
                for job_id, job in self.jobs.items()
                if job.completed_at and (now - job.completed_at).total_seconds() > max_age_seconds
            ]
            for job_id in expired:
                del self.jobs[job_id]
        return len(expired)
