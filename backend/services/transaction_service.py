"""Boundary layer between the HTTP API and the transactions repository.

Requests reaching the repository are already trimmed, defaulted and
validated; import records already carry an id and a creation timestamp.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import uuid4

from backend.repositories.transactions_repository import TransactionsRepository
from shared.models import (
    CategoryBreakdownRow,
    ImportResult,
    MonthlyFlowRow,
    Transaction,
    TransactionCreateRequest,
    TransactionImportRecord,
    TransactionStats,
)


DEFAULT_MONTHS = 7
MIN_MONTHS = 1
MAX_MONTHS = 24


def parse_months(raw_value: str | int | None) -> int:
    """Return a month count in ``[1, 24]``, falling back to 7 for anything else."""

    if raw_value is None:
        return DEFAULT_MONTHS
    try:
        months = int(str(raw_value).strip())
    except ValueError:
        return DEFAULT_MONTHS
    if months < MIN_MONTHS or months > MAX_MONTHS:
        return DEFAULT_MONTHS
    return months


def complete_import_record(record: TransactionImportRecord, *, now: datetime) -> Transaction:
    """Return a storable transaction, generating id and created_at when missing."""

    return Transaction(
        id=(record.id or "").strip() or str(uuid4()),
        type=record.type,
        amount=record.amount,
        category=record.category,
        method=record.method,
        date=record.date,
        note=record.note,
        created_at=record.created_at or now,
    )


@dataclass(slots=True)
class TransactionService:
    repository: TransactionsRepository

    def list_transactions(self) -> list[Transaction]:
        return self.repository.list_transactions()

    def get_transaction(self, transaction_id: str) -> Transaction:
        return self.repository.get_transaction(transaction_id)

    def create_transaction(self, request: TransactionCreateRequest) -> Transaction:
        return self.repository.create_transaction(request)

    def delete_transaction(self, transaction_id: str) -> bool:
        return self.repository.delete_transaction(transaction_id)

    def import_transactions(self, records: list[TransactionImportRecord]) -> ImportResult:
        """Import records, skipping ids that already exist.

        Raises ``ValueError`` when ``records`` is empty.
        """

        if not records:
            raise ValueError("no transactions provided")

        now = datetime.now(timezone.utc)
        transactions = [complete_import_record(record, now=now) for record in records]
        inserted = self.repository.bulk_import(transactions)
        return ImportResult(inserted=inserted, skipped=len(transactions) - inserted, total=len(transactions))

    def stats(self) -> TransactionStats:
        return self.repository.aggregate_stats()

    def monthly_flow(self, raw_months: str | int | None = None) -> list[MonthlyFlowRow]:
        return self.repository.monthly_flow(parse_months(raw_months))

    def category_breakdown(self) -> list[CategoryBreakdownRow]:
        return self.repository.category_breakdown()

    def ping(self) -> None:
        self.repository.ping()
