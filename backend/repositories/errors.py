"""Error taxonomy raised by transaction repositories."""

from __future__ import annotations


class StoreError(Exception):
    """Base class for failures surfaced by the transaction store."""


class NotFound(StoreError):
    """Raised when no transaction matches the requested id."""

    def __init__(self, transaction_id: str) -> None:
        super().__init__(f"Transaction not found: {transaction_id}")
        self.transaction_id = transaction_id


class ConstraintViolation(StoreError):
    """Raised when a value breaks a storage-level invariant."""


class ConnectivityFailure(StoreError):
    """Raised when the relational engine cannot be reached or a round-trip fails."""


class TransactionFailure(StoreError):
    """Raised when a multi-statement operation could not commit.

    Nothing from the failed operation is persisted.
    """
