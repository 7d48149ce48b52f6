from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for errors raised by ledger operations."""

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self):
        return self.message


class ValidationError(LedgerError):
    """Malformed or out-of-range input."""


class ConflictError(LedgerError):
    """Request conflicts with current ledger state (duplicate active card, not enough boxes left)."""


class NotFoundError(LedgerError):
    """Unknown card, customer or payment."""


class InvariantViolation(LedgerError):
    """Operation would break a ledger rule (non-positive box price, zero-delta adjustment)."""
