"""Delete manager for bulk removal of stored images and their records."""

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from image_catalog.errors import BadRequestError, StorageIOError
from image_catalog.services import storage_service
from image_catalog.services.log_service import get_log_service
from image_catalog.services.metadata_store import MetadataStore
from image_catalog.services.naming import resolve_identifiers, sanitize_filename


@dataclass
class DeleteResult:
    """Outcome of deleting one filename."""

    filename: str
    file_deleted: bool = False
    record_deleted: bool = False
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for API responses."""
        result: dict[str, Any] = {
            "filename": self.filename,
            "fileDeleted": self.file_deleted,
            "recordDeleted": self.record_deleted,
        }
        if self.error:
            result["error"] = self.error
        return result


class DeleteManager:
    """Removes files from storage and records from the metadata store."""

    def __init__(self, store: MetadataStore, uploads_dir: Path) -> None:
        self.store = store
        self.uploads_dir = Path(uploads_dir)

    def resolve_targets(self, raw_identifiers: Any, urls: Iterable[str] = ()) -> list[str]:
        """Turn raw delete targets into a deduplicated list of filenames.

        Args:
            raw_identifiers: Filenames and/or absolute URLs, as a list or as
                newline/comma separated text or a JSON array string
            urls: Extra URLs, matched against stored record URLs first and
                falling back to their path basename

        Returns:
            Canonical filenames in order of first appearance
        """
        url_list = [u for u in urls if isinstance(u, str) and u.strip()]
        names = resolve_identifiers(raw_identifiers)
        if url_list:
            names += [sanitize_filename(n) for n in self.store.filenames_from_urls(url_list)]
            names += resolve_identifiers(url_list)
        return list(dict.fromkeys(names))

    def delete_items(
        self,
        raw_identifiers: Any,
        urls: Iterable[str] = (),
    ) -> list[DeleteResult]:
        """Delete every resolvable target, reporting each one.

        A missing file or a missing record is reported as ``False`` rather
        than failing the item. Storage errors are recorded per item; a
        metadata store failure aborts the whole call before any file is
        touched.

        Raises:
            BadRequestError: If no target could be resolved
            StoreIOError: If the metadata document cannot be updated
        """
        filenames = self.resolve_targets(raw_identifiers, urls)
        if not filenames:
            raise BadRequestError("Provide at least one filename or URL in 'items'.")

        log = get_log_service()
        removed_records = self.store.delete_by_filenames(filenames)

        results: list[DeleteResult] = []
        for name in filenames:
            result = DeleteResult(filename=name, record_deleted=removed_records.get(name, False))
            try:
                result.file_deleted = storage_service.delete_file(self.uploads_dir, name)
            except StorageIOError as e:
                result.error = str(e)
                log.error(
                    "delete",
                    "file_delete_failed",
                    f"Failed to delete {name}: {e}",
                    {"filename": name, "error": str(e)},
                )
            results.append(result)

        log.info(
            "delete",
            "delete_completed",
            f"Delete finished for {len(results)} targets",
            {
                "targets": len(results),
                "files_deleted": sum(1 for r in results if r.file_deleted),
                "records_deleted": sum(1 for r in results if r.record_deleted),
                "filenames": filenames,
            },
        )
        return results
