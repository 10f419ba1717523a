# backend/repairdesk/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///repairdesk.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Business-day boundaries for branches without their own timezone
    DEFAULT_TIMEZONE = os.environ.get("DEFAULT_TIMEZONE", "Asia/Kolkata")

    # Settlement engine
    SETTLEMENT_NUMBER_PLACEHOLDER = os.environ.get("SETTLEMENT_NUMBER_PLACEHOLDER", "XX")
    SETTLEMENT_CREATE_ATTEMPTS = int(os.environ.get("SETTLEMENT_CREATE_ATTEMPTS", "3"))
    SETTLEMENT_CARRY_FORWARD_ON_VERIFY = _env_bool("SETTLEMENT_CARRY_FORWARD_ON_VERIFY", False)
    SETTLEMENT_PAGE_LIMIT_MAX = int(os.environ.get("SETTLEMENT_PAGE_LIMIT_MAX", "100"))

    # Password hashing cost; tests lower it
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))
