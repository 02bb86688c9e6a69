"""Pydantic contracts shared across the store, the service and the API."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, model_validator


DEFAULT_METHOD = "Cash"

# Amounts stay Decimal in Python and go out as JSON numbers.
MoneyAmount = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class TransactionType(str, Enum):
    """Direction of a transaction."""

    INCOME = "income"
    EXPENSE = "expense"


class Transaction(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    type: TransactionType
    amount: MoneyAmount
    category: str = ""
    method: str = DEFAULT_METHOD
    date: date
    note: str = ""
    created_at: datetime


class TransactionCreateRequest(BaseModel):
    """Body expected when creating a single transaction.

    Strings are trimmed, a blank method becomes ``"Cash"`` and a blank date
    becomes today before field validation runs.
    """

    model_config = ConfigDict(extra="ignore")

    type: TransactionType
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    category: str = Field(min_length=1)
    method: str = DEFAULT_METHOD
    date: date
    note: str = ""

    @model_validator(mode="before")
    @classmethod
    def trim_and_default(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        cleaned = {key: value.strip() if isinstance(value, str) else value for key, value in data.items()}
        if not cleaned.get("method"):
            cleaned["method"] = DEFAULT_METHOD
        if not cleaned.get("date"):
            cleaned["date"] = date.today()
        if cleaned.get("note") is None:
            cleaned["note"] = ""
        if cleaned.get("category") is None:
            cleaned["category"] = ""
        return cleaned


class TransactionImportRecord(BaseModel):
    """One record of an import payload; id and created_at may be missing."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    type: TransactionType
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    category: str = ""
    method: str = DEFAULT_METHOD
    date: date
    note: str = ""
    created_at: datetime | None = None


class TransactionImportRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    transactions: list[TransactionImportRecord] = Field(default_factory=list)


class ImportResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    inserted: int
    skipped: int
    total: int


class TransactionStats(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total_income: MoneyAmount
    total_expense: MoneyAmount
    balance: MoneyAmount
    count: int


class MonthlyFlowRow(BaseModel):
    model_config = ConfigDict(extra="forbid")

    month: str
    year: int
    income: MoneyAmount
    expense: MoneyAmount


class CategoryBreakdownRow(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category: str
    total: MoneyAmount
