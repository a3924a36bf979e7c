"""Configuration management for image_catalog"""

import json
import os
import tomllib
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# Base directory for the project
BASE_DIR = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
ENV_FILE = BASE_DIR / ".env"
load_dotenv(ENV_FILE)

# Settings file paths
SETTINGS_FILE = BASE_DIR / "settings.json"
SETTINGS_DEFAULT_FILE = BASE_DIR / "settings.default.json"
PYPROJECT_FILE = BASE_DIR / "pyproject.toml"

# Environment variable names for configuration
ENV_UPLOADS_DIR = "UPLOADS_DIR"
ENV_DATA_DIR = "DATA_DIR"
ENV_PORT = "PORT"
ENV_PUBLIC_BASE_URL = "PUBLIC_BASE_URL"
ENV_UPLOAD_CONCURRENCY = "UPLOAD_CONCURRENCY"
ENV_LOG_DIRECTORY = "IMAGE_CATALOG_LOG_DIR"
ENV_SETTINGS_FILE = "IMAGE_CATALOG_SETTINGS_FILE"

# Bounds for the per-batch upload concurrency
MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 64


def get_package_version() -> str:
    """Get the package version from pyproject.toml."""
    try:
        with open(PYPROJECT_FILE, "rb") as f:
            pyproject = tomllib.load(f)
        return str(pyproject.get("project", {}).get("version", "0.0.0"))
    except Exception:
        return "0.0.0"


def get_package_name() -> str:
    """Get the package name from pyproject.toml."""
    try:
        with open(PYPROJECT_FILE, "rb") as f:
            pyproject = tomllib.load(f)
        return str(pyproject.get("project", {}).get("name", "image-catalog"))
    except Exception:
        return "image-catalog"


def clamp_concurrency(value: Any, default: int = 8) -> int:
    """Coerce a concurrency value into the supported 1-64 range."""
    try:
        limit = int(value)
    except (TypeError, ValueError):
        limit = default
    return max(MIN_CONCURRENCY, min(MAX_CONCURRENCY, limit))


def _settings_file() -> Path:
    override = os.environ.get(ENV_SETTINGS_FILE)
    return Path(override) if override else SETTINGS_FILE


class Settings:
    """Manages application settings stored in JSON format."""

    _instance: "Settings | None" = None
    _settings: dict[str, Any]

    def __new__(cls) -> "Settings":
        """Singleton pattern to ensure only one settings instance exists."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load_settings()
        return cls._instance

    def _load_settings(self) -> None:
        """Load settings from file, with environment variables taking precedence.

        Priority order (highest to lowest):
        1. Environment variables (from .env file or system)
        2. settings.json (user-saved settings)
        3. settings.default.json (template defaults)
        4. Hardcoded defaults
        """
        # Start with hardcoded defaults
        defaults: dict[str, Any] = {
            "uploads_dir": "/tmp/uploads",
            "data_dir": "/tmp/data",
            "port": 4000,
            "public_base_url": "",
            "upload_concurrency": 8,
            "log_directory": "",
            "display_name": "Image Catalog",
        }

        # Load from settings.default.json if it exists
        if SETTINGS_DEFAULT_FILE.exists():
            with open(SETTINGS_DEFAULT_FILE, encoding="utf-8") as f:
                defaults.update(json.load(f))

        # Load from settings.json if it exists
        settings_file = _settings_file()
        if settings_file.exists():
            with open(settings_file, encoding="utf-8") as f:
                defaults.update(json.load(f))

        # Override with environment variables (highest priority)
        env_overrides = {
            "uploads_dir": os.environ.get(ENV_UPLOADS_DIR),
            "data_dir": os.environ.get(ENV_DATA_DIR),
            "port": os.environ.get(ENV_PORT),
            "public_base_url": os.environ.get(ENV_PUBLIC_BASE_URL),
            "upload_concurrency": os.environ.get(ENV_UPLOAD_CONCURRENCY),
            "log_directory": os.environ.get(ENV_LOG_DIRECTORY),
        }

        # Only apply non-empty environment values
        for key, value in env_overrides.items():
            if value is not None and value.strip():
                defaults[key] = value.strip()

        self._settings = defaults

    def _save_settings(self) -> None:
        """Save current settings to file."""
        with open(_settings_file(), "w", encoding="utf-8") as f:
            json.dump(self._settings, f, indent=4)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a setting value by key."""
        return self._settings.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a setting value and save to file."""
        self._settings[key] = value
        self._save_settings()

    def update(self, data: dict[str, Any]) -> None:
        """Update multiple settings at once."""
        self._settings.update(data)
        self._save_settings()

    def all(self) -> dict[str, Any]:
        """Get all settings as a dictionary."""
        return self._settings.copy()

    def reload(self) -> None:
        """Reload settings from file."""
        self._load_settings()

    @property
    def uploads_dir(self) -> Path:
        """Directory holding the uploaded files."""
        return Path(str(self._settings.get("uploads_dir") or "/tmp/uploads"))

    @property
    def data_dir(self) -> Path:
        """Directory holding the metadata document."""
        return Path(str(self._settings.get("data_dir") or "/tmp/data"))

    @property
    def metadata_file(self) -> Path:
        """Path of the JSON metadata document."""
        return self.data_dir / "images.json"

    @property
    def port(self) -> int:
        """Listening port."""
        try:
            return int(self._settings.get("port", 4000))
        except (TypeError, ValueError):
            return 4000

    @property
    def public_base_url(self) -> str:
        """Public base URL for absolute file URLs, without trailing slash."""
        return str(self._settings.get("public_base_url") or "").rstrip("/")

    @property
    def upload_concurrency(self) -> int:
        """Default number of uploads in flight per batch."""
        return clamp_concurrency(self._settings.get("upload_concurrency", 8))

    @property
    def log_directory(self) -> Path:
        """Directory for JSONL event logs."""
        configured = self._settings.get("log_directory")
        if configured:
            return Path(str(configured))
        return self.data_dir / "logs"

    @property
    def display_name(self) -> str:
        """Name shown by clients."""
        return str(self._settings.get("display_name", "Image Catalog"))


def get_settings() -> Settings:
    """Get the singleton Settings instance."""
    return Settings()
