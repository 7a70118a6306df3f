# backend/storeledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/storeledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///storeledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Seconds a writer waits on a locked SQLite database before the request
    # fails with a retryable error.
    LOCK_TIMEOUT_SECONDS = float(os.environ.get("LOCK_TIMEOUT_SECONDS", "5"))
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {"timeout": LOCK_TIMEOUT_SECONDS},
    }

    # Currency rounding unit for customer-facing installment totals, and the
    # minimum accepted drift between summed installments and remaining debt.
    # Both can be overridden per deployment through the settings table.
    CURRENCY_GRANULARITY = int(os.environ.get("CURRENCY_GRANULARITY", "100000"))
    INSTALLMENT_TOLERANCE_FLOOR = int(os.environ.get("INSTALLMENT_TOLERANCE_FLOOR", "200000"))

    # Repair legacy table structures before serving requests.
    SCHEMA_GUARD_ON_STARTUP = _env_bool("SCHEMA_GUARD_ON_STARTUP", True)
