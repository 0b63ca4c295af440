# backend/retailcore/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///retailcore.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Whole-transaction retry on lock contention / serialization failures
    TRANSACTION_RETRY_ATTEMPTS = int(os.environ.get("TRANSACTION_RETRY_ATTEMPTS", "3"))
    TRANSACTION_RETRY_BACKOFF = float(os.environ.get("TRANSACTION_RETRY_BACKOFF", "0.1"))

    PARKED_SALE_TTL_HOURS = int(os.environ.get("PARKED_SALE_TTL_HOURS", "24"))

    SEARCH_DEFAULT_LIMIT = 50
    SEARCH_MAX_LIMIT = 200

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
