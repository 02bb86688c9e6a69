"""Transactions repository adapters.

All reads and writes of the ``transactions`` table go through this module:
single-record CRUD, the conflict-skipping bulk import and the aggregate views
used by the dashboard. Repositories never log, retry or correct data; they
raise the errors of :mod:`backend.repositories.errors` instead.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterator, Protocol
from uuid import uuid4

from sqlalchemy import Integer, case, cast, extract, func, select, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection, Engine, Row
from sqlalchemy.exc import DataError, DBAPIError, IntegrityError, SQLAlchemyError

from backend.db.schema import transactions_table
from backend.repositories.errors import (
    ConnectivityFailure,
    ConstraintViolation,
    NotFound,
    TransactionFailure,
)
from shared.models import (
    CategoryBreakdownRow,
    MonthlyFlowRow,
    Transaction,
    TransactionCreateRequest,
    TransactionStats,
    TransactionType,
)


CENT = Decimal("0.01")
MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


class TransactionsRepository(Protocol):
    def list_transactions(self) -> list[Transaction]:
        """Return every transaction, newest date first."""

    def get_transaction(self, transaction_id: str) -> Transaction:
        """Return one transaction or raise ``NotFound``."""

    def create_transaction(self, request: TransactionCreateRequest) -> Transaction:
        """Persist a validated request under a fresh id and return the stored record."""

    def delete_transaction(self, transaction_id: str) -> bool:
        """Delete a transaction and return whether a row was removed."""

    def bulk_import(self, records: list[Transaction]) -> int:
        """Insert records atomically, skipping existing ids; return the inserted count."""

    def aggregate_stats(self) -> TransactionStats:
        """Return income/expense totals, balance and count over all rows."""

    def monthly_flow(self, months: int, *, today: date | None = None) -> list[MonthlyFlowRow]:
        """Return per-month income/expense for the trailing ``months`` months."""

    def category_breakdown(self) -> list[CategoryBreakdownRow]:
        """Return expense totals per category, largest first."""

    def ping(self) -> None:
        """Raise ``ConnectivityFailure`` when the store is unreachable."""


def to_money(value: object) -> Decimal:
    """Return ``value`` as a two-digit Decimal."""

    return Decimal(str(value if value is not None else 0)).quantize(CENT)


def to_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def shift_month(month_start: date, delta: int) -> date:
    """Return the first day of the month ``delta`` months away from ``month_start``."""

    index = month_start.year * 12 + (month_start.month - 1) + delta
    return date(index // 12, index % 12 + 1, 1)


def monthly_window(months: int, today: date) -> tuple[date, date]:
    """Return the ``[start, end)`` date window covering the trailing ``months`` months."""

    current_month = today.replace(day=1)
    return shift_month(current_month, -(months - 1)), shift_month(current_month, 1)


def check_storable(transaction_type: object, amount: Decimal) -> TransactionType:
    """Return the parsed type or raise ``ConstraintViolation``."""

    try:
        parsed_type = TransactionType(transaction_type)
    except ValueError as exc:
        raise ConstraintViolation("type must be 'income' or 'expense'") from exc
    if amount is None or amount <= 0:
        raise ConstraintViolation("amount must be positive")
    return parsed_type


class InMemoryTransactionsRepository:
    """In-memory repository used by tests/dev when no database is configured."""

    def __init__(self, transactions: list[Transaction] | None = None) -> None:
        self._transactions: list[Transaction] = list(transactions or [])

    @staticmethod
    def _sort_key(transaction: Transaction) -> tuple[date, datetime]:
        return transaction.date, to_utc(transaction.created_at)

    def list_transactions(self) -> list[Transaction]:
        ordered = sorted(self._transactions, key=self._sort_key, reverse=True)
        return [transaction.model_copy() for transaction in ordered]

    def get_transaction(self, transaction_id: str) -> Transaction:
        for transaction in self._transactions:
            if transaction.id == transaction_id:
                return transaction.model_copy()
        raise NotFound(transaction_id)

    def create_transaction(self, request: TransactionCreateRequest) -> Transaction:
        transaction_type = check_storable(request.type, request.amount)
        transaction = Transaction(
            id=str(uuid4()),
            type=transaction_type,
            amount=to_money(request.amount),
            category=request.category,
            method=request.method,
            date=request.date,
            note=request.note,
            created_at=datetime.now(timezone.utc),
        )
        self._transactions.append(transaction)
        return transaction.model_copy()

    def delete_transaction(self, transaction_id: str) -> bool:
        kept = [transaction for transaction in self._transactions if transaction.id != transaction_id]
        removed = len(kept) != len(self._transactions)
        self._transactions = kept
        return removed

    def bulk_import(self, records: list[Transaction]) -> int:
        known_ids = {transaction.id for transaction in self._transactions}
        staged: list[Transaction] = []
        for record in records:
            if record.id in known_ids:
                continue
            amount = to_money(record.amount)
            try:
                check_storable(record.type, amount)
            except ConstraintViolation as exc:
                raise TransactionFailure(f"Import rolled back: {exc}") from exc
            known_ids.add(record.id)
            staged.append(
                record.model_copy(update={"amount": amount, "created_at": to_utc(record.created_at)})
            )

        self._transactions.extend(staged)
        return len(staged)

    def aggregate_stats(self) -> TransactionStats:
        income = sum(
            (t.amount for t in self._transactions if t.type == TransactionType.INCOME),
            Decimal("0"),
        )
        expense = sum(
            (t.amount for t in self._transactions if t.type == TransactionType.EXPENSE),
            Decimal("0"),
        )
        return TransactionStats(
            total_income=to_money(income),
            total_expense=to_money(expense),
            balance=to_money(income - expense),
            count=len(self._transactions),
        )

    def monthly_flow(self, months: int, *, today: date | None = None) -> list[MonthlyFlowRow]:
        start, end = monthly_window(months, today or date.today())
        totals: dict[tuple[int, int], dict[TransactionType, Decimal]] = {}
        for transaction in self._transactions:
            if not start <= transaction.date < end:
                continue
            bucket = totals.setdefault(
                (transaction.date.year, transaction.date.month),
                {TransactionType.INCOME: Decimal("0"), TransactionType.EXPENSE: Decimal("0")},
            )
            bucket[transaction.type] += transaction.amount

        return [
            MonthlyFlowRow(
                month=MONTH_LABELS[month - 1],
                year=year,
                income=to_money(bucket[TransactionType.INCOME]),
                expense=to_money(bucket[TransactionType.EXPENSE]),
            )
            for (year, month), bucket in sorted(totals.items())
        ]

    def category_breakdown(self) -> list[CategoryBreakdownRow]:
        totals: dict[str, Decimal] = {}
        for transaction in self._transactions:
            if transaction.type != TransactionType.EXPENSE:
                continue
            totals[transaction.category] = totals.get(transaction.category, Decimal("0")) + transaction.amount

        ordered = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
        return [CategoryBreakdownRow(category=category, total=to_money(total)) for category, total in ordered]

    def ping(self) -> None:
        return None


class SqlTransactionsRepository:
    """SQLAlchemy repository over the ``transactions`` table.

    PostgreSQL is the production engine; SQLite is supported for local runs
    and tests.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._table = transactions_table

    @property
    def _columns(self) -> tuple:
        c = self._table.c
        return (c.id, c.type, c.amount, c.category, c.method, c.date, c.note, c.created_at)

    @contextmanager
    def _translate_errors(self) -> Iterator[None]:
        try:
            yield
        except (IntegrityError, DataError) as exc:
            raise ConstraintViolation(str(exc.orig)) from exc
        except DBAPIError as exc:
            raise ConnectivityFailure(f"Database round-trip failed: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            raise ConnectivityFailure(f"Database round-trip failed: {exc}") from exc

    @staticmethod
    def _parse_row(row: Row) -> Transaction:
        values = dict(row._mapping)
        values["amount"] = to_money(values["amount"])
        values["created_at"] = to_utc(values["created_at"])
        return Transaction.model_validate(values)

    @staticmethod
    def _row_values(record: Transaction) -> dict[str, object]:
        return {
            "id": record.id,
            "type": record.type.value,
            "amount": to_money(record.amount),
            "category": record.category,
            "method": record.method,
            "date": record.date,
            "note": record.note,
            "created_at": to_utc(record.created_at),
        }

    def _sum_for(self, transaction_type: TransactionType):
        c = self._table.c
        return func.coalesce(
            func.sum(case((c.type == transaction_type.value, c.amount), else_=0)),
            0,
        )

    def list_transactions(self) -> list[Transaction]:
        c = self._table.c
        query = select(*self._columns).order_by(c.date.desc(), c.created_at.desc())
        with self._translate_errors(), self._engine.connect() as connection:
            rows = connection.execute(query).all()
        return [self._parse_row(row) for row in rows]

    def get_transaction(self, transaction_id: str) -> Transaction:
        query = select(*self._columns).where(self._table.c.id == transaction_id)
        with self._translate_errors(), self._engine.connect() as connection:
            row = connection.execute(query).first()
        if row is None:
            raise NotFound(transaction_id)
        return self._parse_row(row)

    def create_transaction(self, request: TransactionCreateRequest) -> Transaction:
        transaction_type = check_storable(request.type, request.amount)
        statement = (
            self._table.insert()
            .values(
                id=str(uuid4()),
                type=transaction_type.value,
                amount=request.amount,
                category=request.category,
                method=request.method,
                date=request.date,
                note=request.note,
                created_at=datetime.now(timezone.utc),
            )
            .returning(*self._columns)
        )
        with self._translate_errors(), self._engine.begin() as connection:
            row = connection.execute(statement).one()
        return self._parse_row(row)

    def delete_transaction(self, transaction_id: str) -> bool:
        statement = self._table.delete().where(self._table.c.id == transaction_id)
        with self._translate_errors(), self._engine.begin() as connection:
            result = connection.execute(statement)
        return result.rowcount > 0

    def _insert_skipping_duplicate(self, connection: Connection, values: dict[str, object]) -> int:
        dialect_name = connection.dialect.name
        if dialect_name == "postgresql":
            statement = postgresql.insert(self._table).values(**values).on_conflict_do_nothing(index_elements=["id"])
        elif dialect_name == "sqlite":
            statement = sqlite.insert(self._table).values(**values).on_conflict_do_nothing(index_elements=["id"])
        else:
            existing = connection.execute(
                select(self._table.c.id).where(self._table.c.id == values["id"])
            ).first()
            if existing is not None:
                return 0
            statement = self._table.insert().values(**values)
        return connection.execute(statement).rowcount

    def bulk_import(self, records: list[Transaction]) -> int:
        inserted = 0
        try:
            with self._engine.begin() as connection:
                for record in records:
                    inserted += self._insert_skipping_duplicate(connection, self._row_values(record))
        except SQLAlchemyError as exc:
            raise TransactionFailure(f"Import rolled back: {exc}") from exc
        return inserted

    def aggregate_stats(self) -> TransactionStats:
        query = select(
            self._sum_for(TransactionType.INCOME).label("total_income"),
            self._sum_for(TransactionType.EXPENSE).label("total_expense"),
            func.count().label("row_count"),
        ).select_from(self._table)
        with self._translate_errors(), self._engine.connect() as connection:
            row = connection.execute(query).one()

        income = to_money(row.total_income)
        expense = to_money(row.total_expense)
        return TransactionStats(
            total_income=income,
            total_expense=expense,
            balance=income - expense,
            count=int(row.row_count),
        )

    def monthly_flow(self, months: int, *, today: date | None = None) -> list[MonthlyFlowRow]:
        c = self._table.c
        start, end = monthly_window(months, today or date.today())
        year = cast(extract("year", c.date), Integer)
        month = cast(extract("month", c.date), Integer)
        query = (
            select(
                year.label("year"),
                month.label("month"),
                self._sum_for(TransactionType.INCOME).label("income"),
                self._sum_for(TransactionType.EXPENSE).label("expense"),
            )
            .where(c.date >= start, c.date < end)
            .group_by(year, month)
            .order_by(year, month)
        )
        with self._translate_errors(), self._engine.connect() as connection:
            rows = connection.execute(query).all()

        return [
            MonthlyFlowRow(
                month=MONTH_LABELS[int(row.month) - 1],
                year=int(row.year),
                income=to_money(row.income),
                expense=to_money(row.expense),
            )
            for row in rows
        ]

    def category_breakdown(self) -> list[CategoryBreakdownRow]:
        c = self._table.c
        total = func.sum(c.amount).label("total")
        query = (
            select(c.category, total)
            .where(c.type == TransactionType.EXPENSE.value)
            .group_by(c.category)
            .order_by(total.desc(), c.category)
        )
        with self._translate_errors(), self._engine.connect() as connection:
            rows = connection.execute(query).all()
        return [CategoryBreakdownRow(category=row.category, total=to_money(row.total)) for row in rows]

    def ping(self) -> None:
        with self._translate_errors(), self._engine.connect() as connection:
            connection.execute(text("SELECT 1"))
