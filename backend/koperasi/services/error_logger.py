"""Recording of failed requests and failed ledger postings.

A ``LedgerError`` carries its category and posting context (journal number,
source module, business reference); both are stored on the ``ErrorLog`` row
so a failed posting can be traced back to the saving, loan or transfer that
triggered it. Other exceptions are stored with category ``unexpected``.

Postings run inside a unit of work that is rolled back on failure, so they
are recorded with ``log_error_standalone``, which writes in its own session.
"""

from __future__ import annotations

import enum
import logging
import traceback as tb_module
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from koperasi.models.error_log import ErrorLog, ErrorSeverity
from koperasi.services.ledger.exceptions import CONTEXT_KEYS

logger = logging.getLogger("koperasi.errors")

_LEVELS = {
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


def _sanitize_text(value: object, *, max_len: Optional[int] = None) -> str:
    """Replace control characters, keeping newlines and tabs."""
    text = str(value)
    text = "".join(ch if (ch >= " " or ch in "\n\r\t") else " " for ch in text)
    if max_len is not None:
        return text[:max_len]
    return text


def _origin(exc: Exception) -> Optional[str]:
    """``file:function:line`` of the frame that raised."""
    frame = exc.__traceback__
    if frame is None:
        return None
    while frame.tb_next:
        frame = frame.tb_next
    code = frame.tb_frame.f_code
    return f"{code.co_filename}:{code.co_name}:{frame.tb_lineno}"


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, enum.Enum) else value


def describe(exc: Exception) -> dict[str, Any]:
    """Category and posting context of *exc*, ready for an ErrorLog row."""
    context = getattr(exc, "context", None) or {}
    info = {
        "error_type": type(exc).__name__,
        "error_category": getattr(exc, "category", "unexpected"),
    }
    for key in CONTEXT_KEYS:
        value = _plain(context.get(key))
        if key == "reference_id":
            info[key] = int(value) if value is not None else None
        else:
            info[key] = _sanitize_text(value, max_len=30) if value is not None else None
    return info


async def log_error(
    exc: Exception,
    *,
    db: Optional[AsyncSession] = None,
    severity: ErrorSeverity = ErrorSeverity.ERROR,
    module: Optional[str] = None,
    function_name: Optional[str] = None,
    request_method: Optional[str] = None,
    request_path: Optional[str] = None,
    status_code: Optional[int] = None,
    user_id: Optional[int] = None,
) -> Optional[ErrorLog]:
    """Log *exc* and, when a session is given, store it.

    Returns the ErrorLog row, or None when nothing was stored.
    """
    info = describe(exc)
    message = _sanitize_text(exc, max_len=2000)
    if module:
        origin = f"{module}.{function_name}" if function_name else module
    else:
        origin = _origin(exc)

    context = " ".join(
        f"{key}={info[key]}" for key in CONTEXT_KEYS if info[key] is not None
    )
    log_msg = f"[{info['error_category']}] {info['error_type']}: {message}"
    if context:
        log_msg = f"{log_msg} ({context})"
    if request_path:
        log_msg = f"{request_method or '?'} {request_path} -> {log_msg}"
    # ledger errors are expected outcomes; only unexpected ones get a traceback
    logger.log(
        _LEVELS[severity], log_msg,
        exc_info=exc if info["error_category"] == "unexpected" else None,
    )

    if db is None:
        return None

    try:
        entry = ErrorLog(
            severity=severity,
            message=message,
            traceback=_sanitize_text(
                "".join(tb_module.format_exception(type(exc), exc, exc.__traceback__)),
                max_len=10000,
            ),
            origin=_sanitize_text(origin, max_len=300) if origin else None,
            request_method=request_method,
            request_path=_sanitize_text(request_path, max_len=500) if request_path else None,
            status_code=status_code,
            user_id=user_id,
            **info,
        )
        db.add(entry)
        await db.flush()
        return entry
    except Exception as db_err:
        # a failed write must not replace the error being recorded
        logger.warning("Failed to store error log: %s", db_err)
        return None


async def log_error_standalone(exc: Exception, **kwargs: Any) -> Optional[ErrorLog]:
    """Store an error in its own session, outside the caller's transaction.

    Accepts the keyword arguments of :func:`log_error` except ``db``.
    """
    from koperasi.database import async_session

    try:
        async with async_session() as db:
            entry = await log_error(exc, db=db, **kwargs)
            await db.commit()
            return entry
    except Exception as db_err:
        logger.warning("Failed standalone error log: %s", db_err)
        return None
