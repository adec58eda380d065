"""Errors raised by the ledger services.

Each error carries a ``category`` used when it is recorded, and an optional
posting context (journal number, source module, business reference) that
callers can fill in as the error propagates.
"""

from typing import Any

CONTEXT_KEYS = ("journal_number", "source_module", "reference_type", "reference_id")


class LedgerError(Exception):
    """Base exception for ledger errors."""

    category = "ledger"

    def __init__(self, message: str = "", **context: Any):
        super().__init__(message)
        unknown = set(context) - set(CONTEXT_KEYS)
        if unknown:
            raise TypeError(f"Unknown ledger error context: {', '.join(sorted(unknown))}")
        self.context = {k: v for k, v in context.items() if v is not None}

    def add_context(self, **context: Any) -> "LedgerError":
        """Fill in context keys not already set. Returns self for re-raising."""
        for key, value in context.items():
            if key in CONTEXT_KEYS and value is not None:
                self.context.setdefault(key, value)
        return self


class ConfigurationError(LedgerError):
    """A posting needs an account mapping or COA code that does not exist."""

    category = "configuration"


class BalanceInvariantError(LedgerError):
    """Debits do not equal credits, or a line is malformed."""

    category = "balance"


class StateError(LedgerError):
    """The record is in a state that does not allow the operation."""

    category = "state"


class InsufficientBalanceError(StateError):
    """A cash account cannot cover the requested outflow."""

    category = "insufficient_balance"


class NotFoundError(LedgerError):
    """A referenced record does not exist."""

    category = "not_found"


class AccountNotFoundError(ConfigurationError, NotFoundError):
    """No active chart-of-account row has the requested code."""

    category = "configuration"
