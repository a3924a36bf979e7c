"""Error types raised by image_catalog services.

Each error carries the HTTP status code the routes answer with. Per-file
failures inside a batch are captured into that file's outcome instead of
being raised.
"""

from typing import Any


class CatalogError(Exception):
    """Base class for all image_catalog errors."""

    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON error responses."""
        body: dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(CatalogError):
    """A required field is missing or empty."""

    status_code = 400


BadRequestError = ValidationError


class NotFoundError(CatalogError):
    """A file, record or job does not exist."""

    status_code = 404


class StoreIOError(CatalogError):
    """The metadata document could not be read or written."""

    status_code = 500


class StorageIOError(CatalogError):
    """A file could not be written to or removed from the uploads directory."""

    status_code = 500
