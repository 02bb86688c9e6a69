"""SQLAlchemy engine construction and startup connectivity check."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from backend.repositories.errors import ConnectivityFailure
from shared import config


logger = logging.getLogger(__name__)

# Bare Postgres schemes, including the libpq `postgres://` alias, use psycopg2.
POSTGRES_DRIVERNAMES = ("postgresql", "postgres")


@dataclass(slots=True)
class DatabaseSettings:
    url: str
    pool_size: int = 10
    max_overflow: int = 0
    pool_recycle_seconds: int = 1800
    pool_timeout_seconds: float = 30.0
    statement_timeout_ms: int | None = 30000
    connect_attempts: int = 10
    connect_retry_delay_seconds: float = 3.0

    @classmethod
    def from_env(cls, url: str) -> "DatabaseSettings":
        return cls(
            url=url,
            pool_size=config.db_pool_size(),
            max_overflow=config.db_max_overflow(),
            pool_recycle_seconds=config.db_pool_recycle_seconds(),
            pool_timeout_seconds=config.db_pool_timeout_seconds(),
            statement_timeout_ms=config.db_statement_timeout_ms(),
            connect_attempts=config.db_connect_attempts(),
            connect_retry_delay_seconds=config.db_connect_retry_delay_seconds(),
        )


def create_db_engine(settings: DatabaseSettings) -> Engine:
    """Build a pooled engine for the configured URL.

    SQLite URLs get a single-file engine usable across threads; server engines
    get a bounded ``QueuePool`` with lifetime recycling and pre-ping.
    """

    url = make_url(settings.url)
    if url.drivername in POSTGRES_DRIVERNAMES:
        url = url.set(drivername="postgresql+psycopg2")
    if url.get_backend_name() == "sqlite":
        if url.database in (None, "", ":memory:"):
            # One shared connection, otherwise every thread sees its own empty database.
            return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
        return create_engine(url, connect_args={"check_same_thread": False})

    connect_args: dict[str, object] = {}
    if url.get_backend_name() == "postgresql" and settings.statement_timeout_ms:
        connect_args["options"] = f"-c statement_timeout={settings.statement_timeout_ms}"

    return create_engine(
        url,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_recycle=settings.pool_recycle_seconds,
        pool_timeout=settings.pool_timeout_seconds,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def wait_for_database(
    engine: Engine,
    *,
    attempts: int,
    delay_seconds: float,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Ping the database until it answers or ``attempts`` is exhausted."""

    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            last_error = exc
            logger.warning(
                "db_connect_attempt_failed attempt=%s/%s error=%s",
                attempt,
                attempts,
                exc,
            )
            if attempt < attempts:
                sleep(delay_seconds)
            continue

        logger.info("db_connected backend=%s attempt=%s", engine.url.get_backend_name(), attempt)
        return

    raise ConnectivityFailure(
        f"Could not connect to database after {attempts} attempts"
    ) from last_error


def connect(settings: DatabaseSettings, *, sleep: Callable[[float], None] = time.sleep) -> Engine:
    """Create the engine and block until the database is reachable."""

    engine = create_db_engine(settings)
    try:
        wait_for_database(
            engine,
            attempts=settings.connect_attempts,
            delay_seconds=settings.connect_retry_delay_seconds,
            sleep=sleep,
        )
    except ConnectivityFailure:
        engine.dispose()
        raise
    return engine
