"""Configuration helpers for environment variables."""

from __future__ import annotations

import os
import logging

from dotenv import load_dotenv


logger = logging.getLogger(__name__)


def _should_load_dotenv() -> bool:
    """Return whether local dotenv loading should run."""
    app_env = os.getenv("APP_ENV", "dev").strip().lower()
    return app_env in {"dev", "local"}


if _should_load_dotenv():
    load_dotenv()


def get_env(name: str, default: str | None = None) -> str | None:
    """Return a raw environment value or default."""
    return os.getenv(name, default)


def _get_int(name: str, default: int) -> int:
    raw_value = (get_env(name, "") or "").strip()
    if not raw_value:
        return default
    try:
        return int(raw_value)
    except ValueError:
        logger.warning("invalid_int_env name=%s value=%s default=%s", name, raw_value, default)
        return default


def _get_float(name: str, default: float) -> float:
    raw_value = (get_env(name, "") or "").strip()
    if not raw_value:
        return default
    try:
        return float(raw_value)
    except ValueError:
        logger.warning("invalid_float_env name=%s value=%s default=%s", name, raw_value, default)
        return default


def app_env() -> str:
    """Return the current application environment."""
    return (get_env("APP_ENV", "dev") or "dev").strip() or "dev"


def database_url() -> str | None:
    """Return the relational store connection URL when configured."""
    raw_value = (get_env("DATABASE_URL", "") or "").strip()
    return raw_value or None


def port() -> int:
    """Return the HTTP port the server listens on."""
    return _get_int("PORT", 8080)


def log_level() -> str:
    return (get_env("LOG_LEVEL", "INFO") or "INFO").strip().upper() or "INFO"


def cors_allow_origins() -> list[str]:
    """Return CORS allowed origins from env, allowing every origin by default."""
    raw_origins = get_env("CORS_ALLOW_ORIGINS", "") or ""
    parsed_origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]

    if parsed_origins:
        return parsed_origins

    return ["*"]


def static_dir() -> str | None:
    """Return the directory holding the bundled frontend, if any."""
    raw_value = (get_env("STATIC_DIR", "") or "").strip()
    return raw_value or None


def db_pool_size() -> int:
    return _get_int("DB_POOL_SIZE", 10)


def db_max_overflow() -> int:
    return _get_int("DB_MAX_OVERFLOW", 0)


def db_pool_recycle_seconds() -> int:
    """Return the maximum lifetime of a pooled connection."""
    return _get_int("DB_POOL_RECYCLE_SECONDS", 1800)


def db_pool_timeout_seconds() -> float:
    """Return how long a caller waits for a free pooled connection."""
    return _get_float("DB_POOL_TIMEOUT_SECONDS", 30.0)


def db_statement_timeout_ms() -> int:
    return _get_int("DB_STATEMENT_TIMEOUT_MS", 30000)


def db_connect_attempts() -> int:
    """Return how many times startup tries to reach the database."""
    return max(1, _get_int("DB_CONNECT_ATTEMPTS", 10))


def db_connect_retry_delay_seconds() -> float:
    return _get_float("DB_CONNECT_RETRY_DELAY_SECONDS", 3.0)
