# backend/billing/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/billing.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///billing.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Seconds a SQLite writer waits on a locked database before failing
    SQLITE_BUSY_TIMEOUT_SECONDS = int(os.environ.get("SQLITE_BUSY_TIMEOUT_SECONDS", "30"))

    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "USD")

    # Days between issue date and due date when accepting a quote without dates
    INVOICE_PAYMENT_TERMS_DAYS = int(os.environ.get("INVOICE_PAYMENT_TERMS_DAYS", "30"))

    # Number allocation attempts before giving up with a concurrency error
    SEQUENCE_MAX_ATTEMPTS = int(os.environ.get("SEQUENCE_MAX_ATTEMPTS", "5"))

    # Whether an expired quote may still be accepted (and converted)
    ALLOW_ACCEPT_EXPIRED_QUOTES = _env_flag("ALLOW_ACCEPT_EXPIRED_QUOTES", False)

    # Object with render(kind, document) -> str | None; None means NullDocumentRenderer
    DOCUMENT_RENDERER = None
