# casedesk/config.py
import os
from dotenv import load_dotenv

load_dotenv()

def _as_bool(val: str | None, default=False) -> bool:
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}

class Config:
    # --- Core ---
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
    APP_VERSION = os.getenv("APP_VERSION")

    # DB
    SQLALCHEMY_DATABASE_URI = (
        os.getenv("SQLALCHEMY_DATABASE_URI")
        or os.getenv("DATABASE_URL")
        or "sqlite:///casedesk.db"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # --- Mail ---
    MAIL_SERVER = os.getenv("MAIL_SERVER", "smtp.gmail.com")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = _as_bool(os.getenv("MAIL_USE_TLS", "1"))
    MAIL_USE_SSL = _as_bool(os.getenv("MAIL_USE_SSL", "0"))  # don't enable together with TLS
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", MAIL_USERNAME)
    MAIL_SUPPRESS_SEND = _as_bool(os.getenv("MAIL_SUPPRESS_SEND", "0"))

    # --- Notifications ---
    # When off, events are only logged.
    NOTIFY_BY_EMAIL = _as_bool(os.getenv("NOTIFY_BY_EMAIL", "1"))

    # --- Logging ---
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR = os.getenv("LOG_DIR", "logs")
    LOG_FILENAME = os.getenv("LOG_FILENAME", "casedesk.log")
    LOG_JSON = _as_bool(os.getenv("LOG_JSON", "0"))

    # --- Sentry ---
    SENTRY_DSN = os.getenv("SENTRY_DSN", "")
    SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.0"))

    # --- Ranking ---
    DEFAULT_INVOLVEMENT_MODE = os.getenv("DEFAULT_INVOLVEMENT_MODE", "balanced")
    RANKING_SHORTLIST_SIZE = int(os.getenv("RANKING_SHORTLIST_SIZE", "3"))
    RANKING_USE_CATEGORY_SYNONYMS = _as_bool(os.getenv("RANKING_USE_CATEGORY_SYNONYMS", "0"))

    # --- Negotiation ---
    # all|acceptance: which declined siblings go back to "sent" when an approval is cancelled
    QUOTE_CANCEL_REVERT = os.getenv("QUOTE_CANCEL_REVERT", "all")

    # --- Security cookies (recommended for prod) ---
    SESSION_COOKIE_SECURE = _as_bool(os.getenv("SESSION_COOKIE_SECURE", "1"))
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv("SESSION_COOKIE_SAMESITE", "Lax")
