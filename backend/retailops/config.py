# backend/retailops/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/retailops.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///retailops.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Authentication happens upstream; the gateway forwards the user id here.
    ACTOR_HEADER = os.environ.get("ACTOR_HEADER", "X-Actor-Id")

    # Roles whose inventory transactions skip the approval queue.
    PRIVILEGED_ROLES = tuple(
        r.strip() for r in os.environ.get("PRIVILEGED_ROLES", "admin,manager").split(",") if r.strip()
    )

    REJECTION_REASON_MIN_LENGTH = int(os.environ.get("REJECTION_REASON_MIN_LENGTH", "5"))
    TRANSACTION_REASON_MIN_LENGTH = int(os.environ.get("TRANSACTION_REASON_MIN_LENGTH", "5"))

    # Count still-pending returns against the returnable maximum.
    RETURN_GUARD_COUNT_PENDING = _env_bool("RETURN_GUARD_COUNT_PENDING", True)

    SIDE_EFFECT_MAX_ATTEMPTS = int(os.environ.get("SIDE_EFFECT_MAX_ATTEMPTS", "5"))
    SIDE_EFFECT_RETRY_BASE_SECONDS = int(os.environ.get("SIDE_EFFECT_RETRY_BASE_SECONDS", "30"))
    # How long a claimed task stays invisible to other dispatchers.
    SIDE_EFFECT_CLAIM_TIMEOUT_SECONDS = int(os.environ.get("SIDE_EFFECT_CLAIM_TIMEOUT_SECONDS", "300"))
