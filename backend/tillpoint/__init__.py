# backend/tillpoint/__init__.py
import logging

from flask import Flask, jsonify
from sqlalchemy.exc import OperationalError

from .config import Config
from .extensions import db, migrate


def create_app(config_object=Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object)
    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    from . import cache
    cache.init_app(app)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.checkout import checkout_bp
    from .routes.transactions import transactions_bp
    from .routes.shifts import shifts_bp
    from .routes.recommendations import recommendations_bp
    from .routes.inventory import inventory_bp
    from .routes.promotions import promotions_bp
    from .routes.reports import reports_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(shifts_bp)
    app.register_blueprint(recommendations_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(promotions_bp)
    app.register_blueprint(reports_bp)

    from .errors import PosError, Unavailable

    @app.errorhandler(PosError)
    def handle_pos_error(error: PosError):
        if error.status_code >= 500:
            app.logger.warning("%s: %s", error.code, error.message)
        return jsonify({"error": error.to_dict()}), error.status_code

    @app.errorhandler(OperationalError)
    def handle_operational_error(error: OperationalError):
        db.session.rollback()
        app.logger.exception("Database unavailable")
        unavailable = Unavailable("Storage unavailable, retry later")
        return jsonify({"error": unavailable.to_dict()}), unavailable.status_code

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
