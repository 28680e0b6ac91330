from __future__ import annotations

import logging
import os
from datetime import timedelta

DEFAULT_DATABASE_URL = "sqlite:///./finance_tracker.db"
DEFAULT_EXCHANGE_RATE_URL = "https://api.frankfurter.app"
DEFAULT_RATE_CACHE_HOURS = 6
STORAGE_BACKENDS = {"sql", "memory"}


def get_database_url() -> str:
    return os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)


def get_storage_backend() -> str:
    raw = os.getenv("STORAGE_BACKEND", "sql").strip().lower()
    if raw not in STORAGE_BACKENDS:
        return "sql"
    return raw


def get_exchange_rate_url() -> str:
    return os.getenv("EXCHANGE_RATE_URL", DEFAULT_EXCHANGE_RATE_URL).rstrip("/")


def get_rate_cache_duration() -> timedelta:
    raw = os.getenv("EXCHANGE_RATE_CACHE_HOURS", str(DEFAULT_RATE_CACHE_HOURS))
    try:
        hours = float(raw)
    except ValueError:
        return timedelta(hours=DEFAULT_RATE_CACHE_HOURS)
    if hours <= 0:
        return timedelta(hours=DEFAULT_RATE_CACHE_HOURS)
    return timedelta(hours=hours)


def get_frontend_origin() -> str:
    return os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")


def get_log_level() -> int:
    raw = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(raw)
    if not isinstance(level, int):
        return logging.INFO
    return level
