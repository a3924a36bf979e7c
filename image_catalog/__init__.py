"""Flask application factory for Image Catalog."""

import atexit
import os
from dataclasses import dataclass
from typing import Any

from flask import Flask, Response, current_app, jsonify

from image_catalog.config import get_package_version, get_settings
from image_catalog.errors import CatalogError
from image_catalog.services.catalog_service import CatalogService
from image_catalog.services.delete_manager import DeleteManager
from image_catalog.services.metadata_store import MetadataStore
from image_catalog.services.upload_manager import UploadManager

EXTENSION_KEY = "image_catalog"


@dataclass
class Services:
    """Service objects shared by all requests of one app."""

    store: MetadataStore
    uploads: UploadManager
    deletes: DeleteManager
    catalog: CatalogService


def get_services() -> Services:
    """Services of the current Flask app."""
    services: Services = current_app.extensions[EXTENSION_KEY]
    return services


def create_app(test_config: dict[str, Any] | None = None) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # Load configuration
    settings = get_settings()
    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-secret-key-change-in-production")
    app.config["MAX_CONTENT_LENGTH"] = 1024 * 1024 * 1024  # 1 GB per request
    app.config["SETTINGS"] = settings
    if test_config:
        app.config.update(test_config)

    settings.uploads_dir.mkdir(parents=True, exist_ok=True)
    settings.data_dir.mkdir(parents=True, exist_ok=True)

    store = MetadataStore(settings.metadata_file)
    atexit.register(store.close)
    app.extensions[EXTENSION_KEY] = Services(
        store=store,
        uploads=UploadManager(
            store,
            settings.uploads_dir,
            public_base_url=settings.public_base_url,
            default_concurrency=settings.upload_concurrency,
        ),
        deletes=DeleteManager(store, settings.uploads_dir),
        catalog=CatalogService(store),
    )

    @app.errorhandler(CatalogError)
    def handle_catalog_error(e: CatalogError) -> tuple[Response, int]:
        return jsonify(e.to_dict()), e.status_code

    # Register blueprints
    from image_catalog.routes.delete import delete_bp
    from image_catalog.routes.files import files_bp
    from image_catalog.routes.health import health_bp
    from image_catalog.routes.images import images_bp
    from image_catalog.routes.logs import logs_bp
    from image_catalog.routes.settings import settings_bp
    from image_catalog.routes.upload import upload_bp

    app.register_blueprint(images_bp)
    app.register_blueprint(upload_bp)
    app.register_blueprint(delete_bp)
    app.register_blueprint(files_bp)
    app.register_blueprint(health_bp)
    app.register_blueprint(settings_bp, url_prefix="/api/settings")
    app.register_blueprint(logs_bp, url_prefix="/api/logs")

    # Log application startup
    from image_catalog.services.log_service import get_log_service

    log = get_log_service()
    log.info(
        "app",
        "app_started",
        f"Application started (v{get_package_version()})",
        {
            "version": get_package_version(),
            "uploads_dir": str(settings.uploads_dir),
            "data_dir": str(settings.data_dir),
        },
    )

    return app
