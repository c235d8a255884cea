# backend/warehouse/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/warehouse.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///warehouse.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Double-scan guard for mutations that arrive without an idempotency key.
    # 0 disables the heuristic entirely.
    DUPLICATE_SCAN_WINDOW_SECONDS = int(os.environ.get("DUPLICATE_SCAN_WINDOW_SECONDS", "4"))
    REQUIRE_IDEMPOTENCY_KEY = _env_bool("REQUIRE_IDEMPOTENCY_KEY", False)

    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "GBP")
    DEFAULT_PAYMENT_TERMS_DAYS = int(os.environ.get("DEFAULT_PAYMENT_TERMS_DAYS", "7"))

    # Zero-arg callable returning a UTC-naive datetime; None uses the system clock.
    LEDGER_CLOCK = None
