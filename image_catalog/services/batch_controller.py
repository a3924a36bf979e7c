"""Client-side view of an upload batch, driven only by progress events.

A ``BatchController`` can be handed to ``UploadManager.upload`` as the
progress callback, or fed the ``data:`` lines of the SSE stream served at
``/upload/progress/<job_id>``.
"""

import json
import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

TERMINAL = frozenset({"uploaded", "overwritten", "skipped", "error"})


@dataclass
class FileProgress:
    """Latest known status of one file in the batch."""

    filename: str
    status: str = "queued"
    error: str = ""
    url: str = ""


class BatchController:
    """Tracks per-file status, in-flight count and overall progress."""

    def __init__(self, filenames: Iterable[str] = ()) -> None:
        self._lock = threading.Lock()
        self.files: dict[int, FileProgress] = {}
        self.peak_in_flight = 0
        self.finished = False
        self.job: dict[str, Any] | None = None
        self.start(filenames)

    def start(self, filenames: Iterable[str]) -> None:
        """Reset state for a new selection of files, all queued."""
        with self._lock:
            self.files = {i: FileProgress(name) for i, name in enumerate(filenames)}
            self.peak_in_flight = 0
            self.finished = False
            self.job = None

    def __call__(self, event: dict[str, Any]) -> None:
        self.handle_event(event)

    def handle_event(self, event: dict[str, Any]) -> None:
        """Apply one progress event."""
        kind = event.get("type")
        with self._lock:
            if kind == "file_status":
                self._apply_file_event(event)
            elif kind == "job_state":
                # Snapshot sent when a client joins mid-batch
                for entry in event.get("files", []):
                    self._apply_file_event(entry)
            elif kind == "upload_complete":
                for entry in event.get("files", []):
                    self._apply_file_event(entry)
                self.job = {k: v for k, v in event.items() if k != "files"}
                self.finished = True
            self.peak_in_flight = max(self.peak_in_flight, self._in_flight())

    def _apply_file_event(self, event: dict[str, Any]) -> None:
        index = int(event.get("index", len(self.files)))
        current = self.files.get(index)
        if current is None:
            current = FileProgress(str(event.get("original_name") or event.get("filename", "")))
            self.files[index] = current
        # A late "uploading" must not undo a terminal status
        status = str(event.get("status", current.status))
        if current.status in TERMINAL and status not in TERMINAL:
            return
        current.status = status
        current.error = str(event.get("error") or "")
        current.url = str(event.get("url") or current.url)

    def consume_sse(self, lines: Iterable[str | bytes]) -> None:
        """Feed raw SSE lines; stops after the batch completes."""
        for raw in lines:
            line = raw.decode("utf-8") if isinstance(raw, bytes) else raw
            line = line.strip()
            if not line.startswith("data:"):
                continue
            try:
                event = json.loads(line[len("data:") :].strip())
            except json.JSONDecodeError:
                logger.debug("Ignoring malformed SSE line: %s", line)
                continue
            self.handle_event(event)
            if self.finished:
                return

    def _in_flight(self) -> int:
        return sum(1 for f in self.files.values() if f.status == "uploading")

    @property
    def in_flight(self) -> int:
        """Files currently uploading."""
        with self._lock:
            return self._in_flight()

    @property
    def total(self) -> int:
        return len(self.files)

    @property
    def completed(self) -> int:
        """Files in a terminal status."""
        with self._lock:
            return sum(1 for f in self.files.values() if f.status in TERMINAL)

    @property
    def percent(self) -> int:
        """Completed files as a whole-number percentage."""
        total = self.total
        return self.completed * 100 // total if total else 0

    def status_of(self, filename: str) -> str | None:
        """Status of the last file with this name, if present."""
        with self._lock:
            matches = [f.status for f in self.files.values() if f.filename == filename]
        return matches[-1] if matches else None

    def summary(self) -> dict[str, int]:
        """Aggregate counts shown once the batch finishes."""
        with self._lock:
            statuses = [f.status for f in self.files.values()]
        return {
            "success": sum(1 for s in statuses if s in ("uploaded", "overwritten")),
            "skipped": statuses.count("skipped"),
            "failed": statuses.count("error"),
        }
