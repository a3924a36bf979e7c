"""Tests for the delete manager module."""

from pathlib import Path
from unittest.mock import patch

import pytest

from image_catalog.errors import BadRequestError, StorageIOError, StoreIOError
from image_catalog.services import storage_service
from image_catalog.services.delete_manager import DeleteManager, DeleteResult
from image_catalog.services.metadata_store import MetadataStore


@pytest.fixture
def manager(store: MetadataStore, uploads_dir: Path) -> DeleteManager:
    """Delete manager over the test store and uploads directory."""
    return DeleteManager(store, uploads_dir)


def _stored(store: MetadataStore, uploads_dir: Path, name: str, url: str = "") -> None:
    (uploads_dir / name).write_bytes(b"x")
    store.upsert(name, 1, "image/png", url or f"/files/{name}")


class TestDeleteResult:
    """Tests for DeleteResult."""

    def test_to_dict(self) -> None:
        """Test camelCase flags and optional error."""
        assert DeleteResult("a.png", True, False).to_dict() == {
            "filename": "a.png",
            "fileDeleted": True,
            "recordDeleted": False,
        }
        assert DeleteResult("a.png", error="boom").to_dict()["error"] == "boom"


class TestResolveTargets:
    """Tests for target resolution."""

    def test_url_and_name_collapse(self, manager: DeleteManager) -> None:
        """Test that a URL and its filename resolve to one target."""
        targets = manager.resolve_targets(["https://h/files/a.png", "a.png", "b.png"])

        assert targets == ["a.png", "b.png"]

    def test_legacy_urls_use_stored_records(
        self, manager: DeleteManager, store: MetadataStore, uploads_dir: Path
    ) -> None:
        """Test that legacy URLs are matched against record URLs."""
        _stored(store, uploads_dir, "cat.png", url="https://cdn.example.com/files/cat.png")

        targets = manager.resolve_targets(None, urls=["https://cdn.example.com/files/cat.png"])

        assert targets == ["cat.png"]


class TestDeleteItems:
    """Tests for delete_items."""

    def test_deletes_file_and_record(
        self, manager: DeleteManager, store: MetadataStore, uploads_dir: Path
    ) -> None:
        """Test the normal path."""
        _stored(store, uploads_dir, "a.png")

        [result] = manager.delete_items(["a.png"])

        assert result.file_deleted is True
        assert result.record_deleted is True
        assert not (uploads_dir / "a.png").exists()
        assert store.get("a.png") is None

    def test_mixed_identifiers(
        self, manager: DeleteManager, store: MetadataStore, uploads_dir: Path
    ) -> None:
        """Test a URL, its filename and an unknown file together."""
        _stored(store, uploads_dir, "a.png")

        results = manager.delete_items(["https://h/files/a.png", "a.png", "b.png"])

        assert [r.to_dict() for r in results] == [
            {"filename": "a.png", "fileDeleted": True, "recordDeleted": True},
            {"filename": "b.png", "fileDeleted": False, "recordDeleted": False},
        ]

    def test_orphan_file_without_record(
        self, manager: DeleteManager, uploads_dir: Path
    ) -> None:
        """Test that file and record removal are reported independently."""
        (uploads_dir / "orphan.png").write_bytes(b"x")

        [result] = manager.delete_items("orphan.png")

        assert result.file_deleted is True
        assert result.record_deleted is False

    def test_delete_is_idempotent(
        self, manager: DeleteManager, store: MetadataStore, uploads_dir: Path
    ) -> None:
        """Test that deleting twice reports false flags the second time."""
        _stored(store, uploads_dir, "a.png")
        manager.delete_items(["a.png"])

        [result] = manager.delete_items(["a.png"])

        assert (result.file_deleted, result.record_deleted) == (False, False)

    @pytest.mark.parametrize("raw", [[], "", "  ,\n ", None, ["   "]])
    def test_nothing_resolvable(self, manager: DeleteManager, raw: object) -> None:
        """Test that an empty target set is rejected."""
        with pytest.raises(BadRequestError):
            manager.delete_items(raw)

    def test_storage_error_recorded_per_item(
        self, manager: DeleteManager, store: MetadataStore, uploads_dir: Path
    ) -> None:
        """Test that one storage failure does not stop the others."""
        _stored(store, uploads_dir, "a.png")
        _stored(store, uploads_dir, "b.png")
        real_delete = storage_service.delete_file

        def flaky(directory: Path, filename: str) -> bool:
            if filename == "a.png":
                raise StorageIOError("permission denied")
            return real_delete(directory, filename)

        with patch.object(storage_service, "delete_file", side_effect=flaky):
            results = manager.delete_items(["a.png", "b.png"])

        assert results[0].file_deleted is False
        assert results[0].error == "permission denied"
        assert results[0].record_deleted is True
        assert results[1].file_deleted is True

    def test_store_failure_aborts_before_files(
        self, manager: DeleteManager, store: MetadataStore, uploads_dir: Path
    ) -> None:
        """Test that a broken document stops the whole delete."""
        (uploads_dir / "a.png").write_bytes(b"x")
        store.path.parent.mkdir(parents=True, exist_ok=True)
        store.path.write_text("{broken")

        with pytest.raises(StoreIOError):
            manager.delete_items(["a.png"])

        assert (uploads_dir / "a.png").exists()
