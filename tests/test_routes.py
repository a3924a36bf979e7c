"""Tests for API routes."""

import csv
import io
import json
import time
from pathlib import Path
from typing import Any
from unittest.mock import patch

from flask import Flask
from flask.testing import FlaskClient

from image_catalog import EXTENSION_KEY, create_app, get_services
from image_catalog.services.batch_controller import BatchController


def _upload(client: FlaskClient, *files: tuple[str, bytes], **form: str) -> Any:
    data: dict[str, Any] = dict(form)
    data["files"] = [(io.BytesIO(content), name) for name, content in files]
    return client.post("/upload", data=data, content_type="multipart/form-data")


class TestHealth:
    """Tests for the health endpoint."""

    def test_health(self, client: FlaskClient, isolated_env: Path) -> None:
        """Test liveness payload."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.get_json()
        assert data["ok"] is True
        assert data["uploads_dir"] == str(isolated_env / "uploads")
        assert "version" in data

    def test_store_closed_at_exit(self) -> None:
        """Test that each app registers its write queue for shutdown."""
        with patch("image_catalog.atexit.register") as register:
            app = create_app({"TESTING": True})

        store = app.extensions[EXTENSION_KEY].store
        register.assert_called_once_with(store.close)
        store.close()


class TestUploadAPI:
    """Tests for POST /upload."""

    def test_upload_no_files(self, client: FlaskClient) -> None:
        """Test upload with no files returns 400."""
        response = client.post("/upload", data={}, content_type="multipart/form-data")

        assert response.status_code == 400
        assert "error" in response.get_json()

    def test_upload_files(self, client: FlaskClient, isolated_env: Path) -> None:
        """Test a successful multi-file upload."""
        response = _upload(client, ("a.png", b"aaa"), ("b b.jpg", b"bb"))

        assert response.status_code == 200
        data = response.get_json()
        assert data["count"] == 2
        assert data["uploaded"] == [
            {"filename": "a.png", "url": "/files/a.png", "status": "uploaded"},
            {"filename": "b_b.jpg", "url": "/files/b_b.jpg", "status": "uploaded"},
        ]
        assert (isolated_env / "uploads" / "b_b.jpg").read_bytes() == b"bb"

    def test_single_file_field(self, client: FlaskClient) -> None:
        """Test the alternate 'file' field name."""
        response = client.post(
            "/upload",
            data={"file": (io.BytesIO(b"x"), "one.png")},
            content_type="multipart/form-data",
        )

        assert response.status_code == 200
        assert response.get_json()["uploaded"][0]["filename"] == "one.png"

    def test_skip_then_overwrite(self, client: FlaskClient) -> None:
        """Test the overwrite flag on a re-upload."""
        _upload(client, ("a.png", b"1"))

        skipped = _upload(client, ("a.png", b"2"), overwrite="false").get_json()["uploaded"][0]
        replaced = _upload(client, ("a.png", b"3"), overwrite="true").get_json()["uploaded"][0]

        assert skipped["status"] == "skipped"
        assert "overwrite=true" in skipped["error"]
        assert replaced["status"] == "overwritten"
        assert client.get("/files/a.png").data == b"3"

    def test_async_upload_and_status(self, client: FlaskClient) -> None:
        """Test 202 with job id, then the status snapshot once done."""
        response = _upload(
            client, ("a.png", b"1"), ("b.png", b"2"), concurrency="1", **{"async": "true"}
        )

        assert response.status_code == 202
        job_id = response.get_json()["job_id"]

        deadline = time.monotonic() + 5
        status: dict[str, Any] = {}
        while time.monotonic() < deadline:
            status = client.get(f"/upload/status/{job_id}").get_json()
            if status["status"] == "completed":
                break
            time.sleep(0.05)

        assert status["status"] == "completed"
        assert status["success"] == 2
        assert status["concurrency"] == 1

    def test_progress_stream_of_finished_job(self, app: Flask, client: FlaskClient) -> None:
        """Test that a finished job's stream ends with upload_complete."""
        response = _upload(client, ("a.png", b"1"), **{"async": "true"})
        job_id = response.get_json()["job_id"]
        with app.app_context():
            manager = get_services().uploads
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline and manager.get_job(job_id).status.value != "completed":
            time.sleep(0.05)

        stream = client.get(f"/upload/progress/{job_id}")
        controller = BatchController()
        controller.consume_sse(stream.data.decode().splitlines())

        assert stream.mimetype == "text/event-stream"
        assert controller.finished
        assert controller.summary()["success"] == 1

    def test_unknown_job(self, client: FlaskClient) -> None:
        """Test 404 for unknown jobs on every job endpoint."""
        assert client.get("/upload/status/nope").status_code == 404
        assert client.get("/upload/progress/nope").status_code == 404
        assert client.post("/upload/cancel/nope").status_code == 404

    def test_active_jobs(self, client: FlaskClient) -> None:
        """Test the active job listing."""
        response = client.get("/upload/active")

        assert response.status_code == 200
        assert response.get_json()["count"] == 0


class TestImagesAPI:
    """Tests for catalog listing."""

    def test_list_empty(self, client: FlaskClient) -> None:
        """Test listing an empty catalog."""
        response = client.get("/images")

        assert response.status_code == 200
        assert response.get_json() == {"images": [], "count": 0}

    def test_list_and_filter(self, client: FlaskClient) -> None:
        """Test the q filter."""
        _upload(client, ("cat.png", b"1"), ("dog.jpg", b"2"))

        everything = client.get("/images").get_json()
        cats = client.get("/images?q=CAT").get_json()

        assert everything["count"] == 2
        assert {"id", "filename", "url", "size", "mime", "createdAt", "updatedAt"} <= set(
            everything["images"][0]
        )
        assert [i["filename"] for i in cats["images"]] == ["cat.png"]

    def test_csv_export(self, client: FlaskClient) -> None:
        """Test CSV download on both URLs."""
        _upload(client, ("cat.png", b"1"), ("dog.jpg", b"2"))

        for url in ("/images.csv?q=dog", "/images?format=csv&q=dog"):
            response = client.get(url)
            assert response.status_code == 200
            assert response.mimetype == "text/csv"
            assert "attachment" in response.headers["Content-Disposition"]
            rows = list(csv.reader(io.StringIO(response.data.decode())))
            assert rows[0][0] == "filename"
            assert [r[0] for r in rows[1:]] == ["dog.jpg"]

    def test_store_error_is_500(self, client: FlaskClient, isolated_env: Path) -> None:
        """Test that a corrupt document is reported as a server error."""
        (isolated_env / "data" / "images.json").write_text("{oops")

        response = client.get("/images")

        assert response.status_code == 500
        assert "corrupt" in response.get_json()["error"]


class TestDeleteAPI:
    """Tests for bulk delete."""

    def test_delete_items(self, client: FlaskClient) -> None:
        """Test deleting by URL and filename together."""
        _upload(client, ("a.png", b"1"))

        response = client.post(
            "/delete", json={"items": ["http://localhost/files/a.png", "a.png", "b.png"]}
        )

        assert response.status_code == 200
        assert response.get_json() == {
            "deleted": [
                {"filename": "a.png", "fileDeleted": True, "recordDeleted": True},
                {"filename": "b.png", "fileDeleted": False, "recordDeleted": False},
            ],
            "count": 2,
        }
        assert client.get("/images").get_json()["count"] == 0

    def test_delete_text_items(self, client: FlaskClient) -> None:
        """Test newline separated text."""
        _upload(client, ("a.png", b"1"), ("b.png", b"2"))

        response = client.post("/delete", json={"items": "a.png\nb.png"})

        assert response.get_json()["count"] == 2

    def test_delete_legacy_keys(self, client: FlaskClient) -> None:
        """Test the legacy filenames/urls request shape."""
        _upload(client, ("a.png", b"1"), ("b.png", b"2"))

        response = client.post("/delete", json={"filenames": ["a.png"], "urls": ["/files/b.png"]})

        assert [d["filename"] for d in response.get_json()["deleted"]] == ["a.png", "b.png"]

    def test_delete_images_alias(self, client: FlaskClient) -> None:
        """Test DELETE /images."""
        _upload(client, ("a.png", b"1"))

        response = client.delete("/images", json={"items": ["a.png"]})

        assert response.status_code == 200
        assert response.get_json()["deleted"][0]["fileDeleted"] is True

    def test_delete_nothing(self, client: FlaskClient) -> None:
        """Test 400 when nothing resolves."""
        response = client.post("/delete", json={"items": []})

        assert response.status_code == 400
        assert "error" in response.get_json()


class TestFilesAPI:
    """Tests for serving stored files."""

    def test_serve_file(self, client: FlaskClient) -> None:
        """Test content type and cache headers."""
        _upload(client, ("pic.png", b"\x89PNG"))

        response = client.get("/files/pic.png")

        assert response.status_code == 200
        assert response.data == b"\x89PNG"
        assert response.mimetype == "image/png"
        assert response.headers["Cache-Control"] == "public, max-age=31536000, immutable"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        response.close()

    def test_missing_file(self, client: FlaskClient) -> None:
        """Test 404 JSON for a missing file."""
        response = client.get("/files/nope.png")

        assert response.status_code == 404
        assert response.get_json()["error"] == "File not found"

    def test_non_canonical_name(self, client: FlaskClient) -> None:
        """Test that names which would need sanitizing are not served."""
        _upload(client, ("pic.png", b"x"))

        assert client.get("/files/sub/pic.png").status_code == 404


class TestSettingsAPI:
    """Tests for settings API endpoints."""

    def test_get_settings(self, client: FlaskClient) -> None:
        """Test getting all settings."""
        response = client.get("/api/settings")

        assert response.status_code == 200
        data = response.get_json()
        assert data["upload_concurrency"] == 8
        assert "version" in data

    def test_update_settings(self, client: FlaskClient, isolated_env: Path) -> None:
        """Test updating settings, with concurrency clamped."""
        response = client.put(
            "/api/settings",
            json={"display_name": "Gallery", "upload_concurrency": 500},
        )

        assert response.status_code == 200
        data = response.get_json()
        assert data["display_name"] == "Gallery"
        assert data["upload_concurrency"] == 64
        saved = json.loads((isolated_env / "settings.json").read_text())
        assert saved["display_name"] == "Gallery"

    def test_update_applies_to_uploads(self, client: FlaskClient) -> None:
        """Test that a new public base URL is used by later uploads."""
        client.put("/api/settings", json={"public_base_url": "https://img.example.com/"})

        url = _upload(client, ("a.png", b"1")).get_json()["uploaded"][0]["url"]

        assert url == "https://img.example.com/files/a.png"

    def test_update_settings_invalid_key(self, client: FlaskClient) -> None:
        """Test that only editable keys are accepted."""
        response = client.put("/api/settings", json={"uploads_dir": "/etc"})

        assert response.status_code == 400

    def test_update_settings_no_json(self, client: FlaskClient) -> None:
        """Test update with non-JSON body."""
        response = client.put("/api/settings", data="not json")

        assert response.status_code == 400


class TestLogsAPI:
    """Tests for log API endpoints."""

    def test_get_entries(self, client: FlaskClient) -> None:
        """Test that app startup and uploads are logged."""
        _upload(client, ("a.png", b"1"))

        data = client.get("/api/logs/entries?category=upload").get_json()

        assert data["total"] >= 2
        events = {e["event"] for e in data["entries"]}
        assert "file_upload_completed" in events

    def test_get_entries_bad_paging(self, client: FlaskClient) -> None:
        """Test that bad paging values fall back to defaults."""
        data = client.get("/api/logs/entries?offset=x&limit=y").get_json()

        assert data["offset"] == 0
        assert data["limit"] == 100

    def test_get_files(self, client: FlaskClient) -> None:
        """Test listing log files."""
        response = client.get("/api/logs/files")

        assert response.status_code == 200
        assert len(response.get_json()["files"]) >= 1

    def test_get_stats(self, client: FlaskClient) -> None:
        """Test log statistics."""
        data = client.get("/api/logs/stats").get_json()

        assert data["category_counts"]["app"] >= 1
