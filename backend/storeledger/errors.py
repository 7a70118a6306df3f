# Overview: Domain error types shared by services, routes and the CLI.

from __future__ import annotations


class StoreLedgerError(Exception):
    """Base class for errors raised by the order/ledger core."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "details": self.details}


class ValidationError(StoreLedgerError, ValueError):
    """400-level input problem. Never retried."""


class InvalidTransitionError(ValidationError):
    """Stock status change that is not in the transition table."""


class InsufficientStockError(StoreLedgerError):
    """Item is not sellable, or not enough quantity on hand."""
    status_code = 409

    def __init__(self, message: str, *, item_type: str, item_id: int | None, details: dict | None = None):
        merged = {"item_type": item_type, "item_id": item_id}
        merged.update(details or {})
        super().__init__(message, merged)
        self.item_type = item_type
        self.item_id = item_id


class NotFoundError(StoreLedgerError):
    status_code = 404


class ToleranceExceededError(StoreLedgerError):
    """
    Summed installments drift from the remaining debt by more than the bound.

    Advisory: the caller may resubmit with override=True.
    """
    status_code = 422

    def __init__(self, *, total: int, remaining: int, tolerance: int):
        super().__init__(
            f"Installment total {total} differs from remaining debt {remaining} "
            f"by more than {tolerance}",
            {"installments_total": total, "remaining": remaining, "tolerance": tolerance},
        )
        self.total = total
        self.remaining = remaining
        self.tolerance = tolerance


class LockTimeoutError(StoreLedgerError):
    """The store stayed locked past the retry budget. Safe to retry."""
    status_code = 503


class MigrationError(StoreLedgerError):
    """A schema rebuild failed. Fatal at startup."""
    status_code = 500
