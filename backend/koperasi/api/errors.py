"""Translation of ledger errors into HTTP responses."""

from fastapi import HTTPException

from koperasi.services.ledger.exceptions import (
    BalanceInvariantError,
    ConfigurationError,
    LedgerError,
    NotFoundError,
    StateError,
)

# First match wins; AccountNotFoundError is a ConfigurationError when posting
_STATUS_BY_ERROR: tuple[tuple[type[LedgerError], int], ...] = (
    (ConfigurationError, 422),
    (BalanceInvariantError, 400),
    (StateError, 409),
    (NotFoundError, 404),
)


def status_for(exc: LedgerError) -> int:
    for error_cls, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return code
    return 400


def to_http_exception(exc: LedgerError) -> HTTPException:
    return HTTPException(status_code=status_for(exc), detail=str(exc))
