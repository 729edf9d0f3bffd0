# backend/lenden/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int | None) -> int | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/lenden.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///lenden.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Reject receive_payment above total_due and paid_amount above the sale
    # amount. Off by default: legacy behavior accepts both.
    LEDGER_STRICT_PAYMENT_GUARDS = _env_bool("LEDGER_STRICT_PAYMENT_GUARDS", False)

    # None trusts client subtotals as-is; an integer enables the
    # quantity * unit_price cross-check with that tolerance (in cents).
    LEDGER_SUBTOTAL_TOLERANCE_CENTS = _env_int("LEDGER_SUBTOTAL_TOLERANCE_CENTS", None)

    LEDGER_RETRY_ATTEMPTS = _env_int("LEDGER_RETRY_ATTEMPTS", 3)

    # Default event sink writes in-app notification rows
    NOTIFICATIONS_ENABLED = _env_bool("NOTIFICATIONS_ENABLED", True)
