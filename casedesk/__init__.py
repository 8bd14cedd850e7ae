import os
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import click
from flask import Flask, jsonify

from .extensions import db, migrate, login_manager, mail
from .config import Config
from .models.user import User

# Blueprints
from .blueprints.errors import errors_bp
from .blueprints.cases import cases_bp
from .blueprints.quotes import quotes_bp


# Optional: Sentry
def _init_sentry(app):
    dsn = app.config.get("SENTRY_DSN")
    if not dsn:
        return
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=dsn,
        integrations=[FlaskIntegration(), SqlalchemyIntegration()],
        traces_sample_rate=app.config.get("SENTRY_TRACES_SAMPLE_RATE", 0.0),
        environment=os.getenv("ENV", "development"),
        release=os.getenv("GIT_COMMIT", None),
        send_default_pii=False,
    )
    app.logger.info("Sentry initialized.")

def _init_logging(app):
    # Base level
    level_name = app.config.get("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    app.logger.setLevel(level)

    # Ensure log dir exists
    log_dir = Path(app.config.get("LOG_DIR", "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / app.config.get("LOG_FILENAME", "casedesk.log")

    # Formatter: text or JSON
    if app.config.get("LOG_JSON", False):
        import json_log_formatter
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("[%(asctime)s] %(levelname)s in %(module)s: %(message)s")

    # Rotating file handler (5MB x 5)
    file_handler = RotatingFileHandler(
        log_path, maxBytes=5_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)

    # Stream to stdout as well (useful on dev/docker)
    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)

    # app.logger is the "casedesk" package logger; service loggers propagate into it.
    # Drop handlers from a previous create_app() in the same process.
    for handler in list(app.logger.handlers):
        app.logger.removeHandler(handler)
        handler.close()
    app.logger.addHandler(file_handler)
    app.logger.addHandler(stream_handler)

    app.logger.info("Logging initialized.")

def _register_cli(app):
    @app.cli.command("expire-quotes")
    def expire_quotes():
        """Flip every sent quote past its expiry to expired."""
        from .services.negotiation import negotiation_engine
        expired = negotiation_engine().expire_due()
        click.echo(f"Expired {len(expired)} quote(s).")

def create_app(config_object=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)

    app.config.setdefault("SECRET_KEY", "change-me")
    app.config.setdefault(
        "SQLALCHEMY_DATABASE_URI",
        "sqlite:///" + os.path.join(app.instance_path, "casedesk.db"),
    )
    app.config.setdefault("SQLALCHEMY_TRACK_MODIFICATIONS", False)
    Path(app.instance_path).mkdir(parents=True, exist_ok=True)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    mail.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify(error="Authentication required", code="unauthorized"), 401

    # Logging must come before blueprints so errors during register are captured
    _init_logging(app)
    _init_sentry(app)

    # Blueprints
    app.register_blueprint(errors_bp)  # error handlers
    app.register_blueprint(cases_bp, url_prefix="/cases")
    app.register_blueprint(quotes_bp)

    _register_cli(app)

    return app
