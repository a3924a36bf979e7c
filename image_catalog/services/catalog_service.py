"""Read-only queries over the image catalog: listing, filtering, CSV export."""

import csv
import io

from image_catalog.services.metadata_store import ImageRecord, MetadataStore

CSV_COLUMNS = ["filename", "url", "size", "mime", "createdAt", "updatedAt"]


def matches_filter(record: ImageRecord, needle: str) -> bool:
    """Case-insensitive substring match on filename, url or mime."""
    needle = needle.lower()
    return (
        needle in record.filename.lower()
        or needle in record.url.lower()
        or needle in record.mime.lower()
    )


class CatalogService:
    """Catalog read path backed by the metadata store."""

    def __init__(self, store: MetadataStore) -> None:
        self.store = store

    def list_images(self, filter_text: str | None = None) -> list[ImageRecord]:
        """List records, most recently updated first.

        Args:
            filter_text: Optional substring; blank means no filtering

        Returns:
            Records whose filename, url or mime contains filter_text
        """
        records = self.store.get_all()
        if filter_text and filter_text.strip():
            needle = filter_text.strip()
            records = [r for r in records if matches_filter(r, needle)]
        return records

    def export_csv(self, filter_text: str | None = None) -> str:
        """Render the (optionally filtered) catalog as CSV text.

        Every value is double-quoted with embedded quotes doubled.
        """
        buf = io.StringIO()
        writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(CSV_COLUMNS)
        for r in self.list_images(filter_text):
            writer.writerow([r.filename, r.url, r.size, r.mime, r.created_at, r.updated_at])
        return buf.getvalue()
