"""Pytest configuration and fixtures for the image_catalog tests."""

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from flask import Flask
from flask.testing import FlaskClient

from image_catalog import EXTENSION_KEY, create_app
from image_catalog.config import (
    ENV_DATA_DIR,
    ENV_LOG_DIRECTORY,
    ENV_PORT,
    ENV_PUBLIC_BASE_URL,
    ENV_SETTINGS_FILE,
    ENV_UPLOAD_CONCURRENCY,
    ENV_UPLOADS_DIR,
    Settings,
)
from image_catalog.services import log_service
from image_catalog.services.metadata_store import MetadataStore


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Point every directory and the settings file at tmp_path.

    Settings and the log service are process-wide singletons, so both are
    reset around each test.
    """
    monkeypatch.setenv(ENV_UPLOADS_DIR, str(tmp_path / "uploads"))
    monkeypatch.setenv(ENV_DATA_DIR, str(tmp_path / "data"))
    monkeypatch.setenv(ENV_LOG_DIRECTORY, str(tmp_path / "logs"))
    monkeypatch.setenv(ENV_SETTINGS_FILE, str(tmp_path / "settings.json"))
    for name in (ENV_PORT, ENV_PUBLIC_BASE_URL, ENV_UPLOAD_CONCURRENCY):
        monkeypatch.delenv(name, raising=False)

    Settings._instance = None
    log_service._log_service = None
    yield tmp_path
    Settings._instance = None
    log_service._log_service = None


@pytest.fixture
def uploads_dir(isolated_env: Path) -> Path:
    """Uploads directory for the current test."""
    path = isolated_env / "uploads"
    path.mkdir(parents=True, exist_ok=True)
    return path


@pytest.fixture
def log_dir(isolated_env: Path) -> Path:
    """Log directory for the current test."""
    return isolated_env / "logs"


@pytest.fixture
def store(isolated_env: Path) -> Generator[MetadataStore, None, None]:
    """Metadata store backed by a document under tmp_path."""
    store = MetadataStore(isolated_env / "data" / "images.json")
    yield store
    store.close()


class FakeClock:
    """Deterministic clock that advances one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current


@pytest.fixture
def clock() -> FakeClock:
    """A fresh fake clock."""
    return FakeClock()


@pytest.fixture
def app() -> Generator[Flask, None, None]:
    """Create application for testing."""
    app = create_app({"TESTING": True})
    yield app
    app.extensions[EXTENSION_KEY].store.close()


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create test client."""
    return app.test_client()
