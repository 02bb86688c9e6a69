"""Tests for the backend composition root."""

from __future__ import annotations

import pytest
from sqlalchemy import inspect

from backend import factory
from backend.db.schema import SchemaError
from backend.repositories.errors import ConnectivityFailure
from backend.repositories.transactions_repository import (
    InMemoryTransactionsRepository,
    SqlTransactionsRepository,
)


def test_build_repository_without_database_url_is_in_memory(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)

    repository = factory.build_transactions_repository()

    assert isinstance(repository, InMemoryTransactionsRepository)


def test_build_repository_with_sqlite_url_verifies_schema(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'finset.db'}")

    repository = factory.build_transactions_repository()

    assert isinstance(repository, SqlTransactionsRepository)
    assert inspect(repository._engine).has_table("transactions")
    assert repository.list_transactions() == []


def test_build_repository_propagates_connect_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "sqlite://")

    def _unreachable(_settings):
        raise ConnectivityFailure("Could not connect to database after 10 attempts")

    monkeypatch.setattr(factory, "connect", _unreachable)

    with pytest.raises(ConnectivityFailure):
        factory.build_transactions_repository()


def test_build_repository_propagates_schema_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "sqlite://")

    def _broken_schema(_engine) -> None:
        raise SchemaError("Schema setup failed")

    monkeypatch.setattr(factory, "ensure_schema", _broken_schema)

    with pytest.raises(SchemaError):
        factory.build_transactions_repository()


def test_build_transaction_service_wires_repository(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)

    service = factory.build_transaction_service()

    assert isinstance(service.repository, InMemoryTransactionsRepository)
    assert service.list_transactions() == []
