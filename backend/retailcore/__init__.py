# backend/retailcore/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Default collaborators; apps may replace these before serving
    from .services.catalog_service import CATALOG_EXTENSION_KEY, SqlCatalogLookup
    from .services.sinks import AUDIT_SINK_KEY, EVENT_SINK_KEY, DatabaseAuditSink, DatabaseEventSink

    app.extensions.setdefault(CATALOG_EXTENSION_KEY, SqlCatalogLookup())
    app.extensions.setdefault(AUDIT_SINK_KEY, DatabaseAuditSink())
    app.extensions.setdefault(EVENT_SINK_KEY, DatabaseEventSink())

    # Register blueprints
    from .routes.pos import pos_bp
    from .routes.shifts import shifts_bp
    from .routes.inventory import inventory_bp

    app.register_blueprint(pos_bp)
    app.register_blueprint(shifts_bp)
    app.register_blueprint(inventory_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
