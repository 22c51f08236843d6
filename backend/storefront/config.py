# backend/storefront/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/storefront.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///storefront.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Payment gateway (Stripe)
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
    CURRENCY = os.environ.get("CURRENCY", "usd")

    # Checkout return URLs are built from the storefront origin
    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173")

    # Delivery lead times (days)
    DELIVERY_DAYS_MAIN_CITY = _int_env("DELIVERY_DAYS_MAIN_CITY", 5)
    DELIVERY_DAYS_OTHER_CITY = _int_env("DELIVERY_DAYS_OTHER_CITY", 7)
    PICKUP_READY_DAYS = _int_env("PICKUP_READY_DAYS", 1)
    BACKORDER_EXTRA_DAYS = _int_env("BACKORDER_EXTRA_DAYS", 3)

    SESSION_TTL_HOURS = _int_env("SESSION_TTL_HOURS", 24)
