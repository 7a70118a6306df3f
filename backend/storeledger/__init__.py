# backend/storeledger/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic and the schema guard see the full metadata
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.orders import orders_bp
    from .routes.installments import installments_bp
    from .routes.ledger import ledger_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(installments_bp)
    app.register_blueprint(ledger_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    if app.config.get("SCHEMA_GUARD_ON_STARTUP"):
        from .services.schema_guard import run_schema_guard

        # A MigrationError here is fatal: the app is never returned
        with app.app_context():
            applied = run_schema_guard(db.engine, db.metadata)
        if applied:
            app.logger.info("Schema guard recorded steps: %s", ", ".join(applied))

    return app
