"""Composition root for backend services."""

from __future__ import annotations

import logging

from backend.db.engine import DatabaseSettings, connect
from backend.db.schema import ensure_schema
from backend.repositories.transactions_repository import (
    InMemoryTransactionsRepository,
    SqlTransactionsRepository,
    TransactionsRepository,
)
from backend.services.transaction_service import TransactionService
from shared import config


logger = logging.getLogger(__name__)


def build_transactions_repository() -> TransactionsRepository:
    """Build the transactions repository from configuration.

    With ``DATABASE_URL`` set, the database is awaited (bounded retries) and
    its schema verified before the repository is returned; both failures
    propagate. Without it an in-memory repository is used.
    """

    database_url = config.database_url()
    if not database_url:
        logger.warning("database_url_missing using in-memory transactions repository; data is not persisted")
        return InMemoryTransactionsRepository()

    engine = connect(DatabaseSettings.from_env(database_url))
    ensure_schema(engine)
    return SqlTransactionsRepository(engine)


def build_transaction_service() -> TransactionService:
    return TransactionService(repository=build_transactions_repository())
