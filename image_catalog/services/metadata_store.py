"""Filename-keyed image metadata persisted as a single JSON document.

Document layout::

    {"images": {"<filename>": {"id": ..., "filename": ..., "url": ...,
                               "size": ..., "mime": ...,
                               "createdAt": ..., "updatedAt": ...}}}

Every mutation runs on the store's own single-worker write queue, so
read-modify-write cycles never interleave. Readers do not wait on the queue;
they only ever see whole documents because writes go to a temp file that is
renamed over the original.
"""

import json
import logging
import os
import tempfile
import uuid
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TypeVar

from image_catalog.errors import StoreIOError
from image_catalog.services.log_service import get_log_service

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class ImageRecord:
    """Metadata for one stored image, keyed by filename."""

    filename: str
    url: str
    size: int
    mime: str
    created_at: str
    updated_at: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "filename": self.filename,
            "url": self.url,
            "size": self.size,
            "mime": self.mime,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImageRecord":
        """Build a record from its persisted form.

        Older documents stored the content type under ``type`` and carried no
        ``id``; both are tolerated.
        """
        created = str(data.get("createdAt") or data.get("updatedAt") or "")
        return cls(
            filename=str(data["filename"]),
            url=str(data.get("url", "")),
            size=int(data.get("size", 0)),
            mime=str(data.get("mime") or data.get("type") or "application/octet-stream"),
            created_at=created,
            updated_at=str(data.get("updatedAt") or created),
            id=str(data.get("id") or uuid.uuid4()),
        )


class MetadataStore:
    """JSON-file metadata store with a serialized write queue."""

    def __init__(
        self,
        path: Path,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            path: Location of the JSON document
            clock: Source of timestamps (defaults to the current UTC time)
        """
        self.path = Path(path)
        self._clock = clock or _utc_now
        self._write_queue = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="metadata-write"
        )

    def close(self) -> None:
        """Stop the write queue after draining queued operations."""
        self._write_queue.shutdown(wait=True)

    # ── Document I/O ──────────────────────────────────────────

    def _read_document(self) -> dict[str, ImageRecord]:
        """Read the whole document. A missing file reads as empty."""
        try:
            with open(self.path, encoding="utf-8") as f:
                raw = f.read()
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StoreIOError(f"Cannot read metadata document {self.path}: {e}") from e

        if not raw.strip():
            return {}

        try:
            document = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StoreIOError(f"Metadata document {self.path} is corrupt: {e}") from e

        images = document.get("images", {}) if isinstance(document, dict) else None
        # Early versions kept a list of records instead of a filename map
        if isinstance(images, list):
            images = {
                item["filename"]: item
                for item in images
                if isinstance(item, dict) and "filename" in item
            }
        if not isinstance(images, dict):
            raise StoreIOError(f"Metadata document {self.path} has no images mapping")

        try:
            return {name: ImageRecord.from_dict(data) for name, data in images.items()}
        except (KeyError, TypeError, ValueError) as e:
            raise StoreIOError(f"Metadata document {self.path} has a bad record: {e}") from e

    def _write_document(self, records: dict[str, ImageRecord]) -> None:
        """Replace the whole document on disk."""
        text = json.dumps(
            {"images": {name: rec.to_dict() for name, rec in records.items()}},
            indent=2,
            ensure_ascii=False,
        )
        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self.path.parent), prefix=self.path.name + ".", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            raise StoreIOError(f"Cannot write metadata document {self.path}: {e}") from e
        else:
            logger.debug("Wrote %d records to %s", len(records), self.path)
        finally:
            if tmp_name and os.path.exists(tmp_name):
                os.remove(tmp_name)

    def _run_serialized(self, operation: Callable[[], T], event: str) -> T:
        """Queue a mutation behind all earlier ones and wait for its result."""
        future = self._write_queue.submit(operation)
        try:
            return future.result()
        except StoreIOError as e:
            get_log_service().error(
                "store",
                event,
                f"Metadata store operation failed: {e}",
                {"path": str(self.path), "error": str(e)},
            )
            raise

    # ── Read path ─────────────────────────────────────────────

    def get_all(self) -> list[ImageRecord]:
        """Return every record, most recently updated first."""
        records = list(self._read_document().values())
        records.sort(key=lambda r: r.updated_at, reverse=True)
        return records

    def get(self, filename: str) -> ImageRecord | None:
        """Return the record for a filename, if any."""
        return self._read_document().get(filename)

    def filenames_from_urls(self, urls: Iterable[str]) -> list[str]:
        """Map URLs back to filenames. URLs with no matching record are dropped."""
        url_to_file = {rec.url: rec.filename for rec in self.get_all()}
        return [url_to_file[u] for u in urls if u in url_to_file]

    # ── Write path ────────────────────────────────────────────

    def upsert_with_status(
        self,
        filename: str,
        size: int,
        mime: str,
        url: str,
    ) -> tuple[ImageRecord, bool]:
        """Create or update a record.

        Returns:
            The stored record and whether it was newly created

        Raises:
            StoreIOError: If the document cannot be read or written
        """

        def operation() -> tuple[ImageRecord, bool]:
            records = self._read_document()
            existing = records.get(filename)
            now = self._clock().isoformat()
            if existing is None:
                record = ImageRecord(
                    filename=filename,
                    url=url,
                    size=size,
                    mime=mime,
                    created_at=now,
                    updated_at=now,
                )
            else:
                record = ImageRecord(
                    filename=filename,
                    url=url,
                    size=size,
                    mime=mime,
                    created_at=existing.created_at,
                    updated_at=now,
                    id=existing.id,
                )
            records[filename] = record
            self._write_document(records)
            return record, existing is None

        return self._run_serialized(operation, "store_upsert_failed")

    def upsert(self, filename: str, size: int, mime: str, url: str) -> ImageRecord:
        """Create or update a record, preserving createdAt on overwrite."""
        record, _ = self.upsert_with_status(filename, size, mime, url)
        return record

    def delete_by_filenames(self, filenames: Iterable[str]) -> dict[str, bool]:
        """Remove records by filename.

        Returns:
            Mapping of filename to True if a record existed and was removed

        Raises:
            StoreIOError: If the document cannot be read or written
        """
        names = list(filenames)

        def operation() -> dict[str, bool]:
            records = self._read_document()
            results: dict[str, bool] = {}
            for name in names:
                results[name] = records.pop(name, None) is not None
            if any(results.values()):
                self._write_document(records)
            return results

        return self._run_serialized(operation, "store_delete_failed")
