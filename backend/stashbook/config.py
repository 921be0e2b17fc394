# backend/stashbook/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the instance by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stashbook.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS: dict = {}

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Dashboard origins allowed to call the API from a browser
    CORS_ALLOWED_ORIGINS = tuple(
        o.strip()
        for o in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if o.strip()
    )

    # Container that receives confirmed deposits
    DEFAULT_CONTAINER_NAME = os.environ.get("DEFAULT_CONTAINER_NAME", "Baú Gerente")

    # Outbound notification relay (unset = notifications disabled)
    NOTIFY_RELAY_URL = os.environ.get("NOTIFY_RELAY_URL") or None
    NOTIFY_TIMEOUT_SECONDS = float(os.environ.get("NOTIFY_TIMEOUT_SECONDS", "10"))

    # Bounded retries for sequence allocation under write conflicts
    SEQUENCE_MAX_ATTEMPTS = int(os.environ.get("SEQUENCE_MAX_ATTEMPTS", "8"))
