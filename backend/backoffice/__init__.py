# backend/backoffice/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate
from .errors import BackofficeError


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.orders import orders_bp
    from .routes.receivables import receivables_bp
    from .routes.sales import sales_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(receivables_bp)
    app.register_blueprint(sales_bp)

    @app.errorhandler(BackofficeError)
    def handle_backoffice_error(exc: BackofficeError):
        if exc.status_code >= 500:
            app.logger.exception("Unhandled backoffice error")
        return exc.to_dict(), exc.status_code

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
