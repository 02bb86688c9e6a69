"""Transactions table definition and additive, idempotent schema setup.

Every operation below is safe to run on each process start: tables, columns
and indexes are only created when missing, existing data is never touched.
"""

from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy import CheckConstraint, Column, Date, DateTime, Index, Numeric, Text, func, inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base


logger = logging.getLogger(__name__)

Base = declarative_base()


class SchemaError(Exception):
    """Raised when the transactions schema could not be verified."""


class TransactionRecord(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("type IN ('income', 'expense')", name="ck_transactions_type"),
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )

    id = Column(Text, primary_key=True)
    type = Column(Text, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    category = Column(Text, nullable=False, server_default="")
    method = Column(Text, nullable=False, server_default="Cash")
    date = Column(Date, nullable=False)
    note = Column(Text, nullable=False, server_default="")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


DATE_INDEX = Index("idx_transactions_date", TransactionRecord.date.desc())
TYPE_INDEX = Index("idx_transactions_type", TransactionRecord.type)

transactions_table = TransactionRecord.__table__


def _timestamp_backfill(dialect_name: str) -> str:
    # SQLite rejects non-constant defaults in ADD COLUMN.
    if dialect_name == "sqlite":
        return "'1970-01-01 00:00:00'"
    return "CURRENT_TIMESTAMP"


# Columns an older deployment may be missing, with the default used to backfill existing rows.
LEGACY_COLUMNS: tuple[tuple[str, Callable[[str], str]], ...] = (
    ("category", lambda _dialect: "''"),
    ("method", lambda _dialect: "'Cash'"),
    ("note", lambda _dialect: "''"),
    ("created_at", _timestamp_backfill),
)


def _create_table(connection: Connection) -> None:
    Base.metadata.create_all(connection, tables=[transactions_table], checkfirst=True)


def _add_missing_columns(connection: Connection) -> None:
    existing = {column["name"] for column in inspect(connection).get_columns(transactions_table.name)}
    dialect = connection.dialect
    for name, default_for in LEGACY_COLUMNS:
        if name in existing:
            continue
        column_type = transactions_table.c[name].type.compile(dialect=dialect)
        connection.execute(
            text(
                f"ALTER TABLE {transactions_table.name} "
                f"ADD COLUMN {name} {column_type} NOT NULL DEFAULT {default_for(dialect.name)}"
            )
        )
        logger.info("schema_column_added table=%s column=%s", transactions_table.name, name)


def _create_date_index(connection: Connection) -> None:
    DATE_INDEX.create(connection, checkfirst=True)


def _create_type_index(connection: Connection) -> None:
    TYPE_INDEX.create(connection, checkfirst=True)


SCHEMA_OPERATIONS: tuple[tuple[str, Callable[[Connection], None]], ...] = (
    ("create_table", _create_table),
    ("add_missing_columns", _add_missing_columns),
    ("create_date_index", _create_date_index),
    ("create_type_index", _create_type_index),
)


def ensure_schema(engine: Engine) -> None:
    """Apply every schema operation in order, inside one transaction."""

    try:
        with engine.begin() as connection:
            for step_name, operation in SCHEMA_OPERATIONS:
                operation(connection)
                logger.info("schema_step_done step=%s", step_name)
    except SQLAlchemyError as exc:
        raise SchemaError(f"Schema setup failed: {exc}") from exc

    logger.info("schema_ready table=%s (existing data preserved)", transactions_table.name)
