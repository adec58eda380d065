"""Ledger API endpoints.

Covers the chart of accounts, cash accounts, the journal lifecycle
(create, edit, delete, lock), the journal-level general ledger and trial
balance, and accounting periods.
"""

import logging
import math
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncSession

from koperasi.api.errors import to_http_exception
from koperasi.auth_utils import STAFF_ROLES, require_roles
from koperasi.database import get_db
from koperasi.models.cash_account import CashAccount
from koperasi.models.ledger import (
    AccountCategory,
    AccountingPeriod,
    ChartOfAccount,
    Journal,
    JournalType,
    SourceModule,
)
from koperasi.models.user import User
from koperasi.services.error_logger import log_error
from koperasi.services.ledger import (
    cash_balance,
    coa_registry,
    journal_engine,
    period_service,
    reports_service,
)
from koperasi.services.ledger.exceptions import AccountNotFoundError, LedgerError

logger = logging.getLogger(__name__)
router = APIRouter()


# ===================================================================
# Pydantic Schemas
# ===================================================================

class ChartOfAccountResponse(BaseModel):
    id: int
    code: str
    name: str
    category: str
    account_type: Optional[str] = None
    is_debit: bool
    is_contra: bool = False
    contra_description: Optional[str] = None
    is_active: bool
    description: Optional[str] = None


class CashAccountResponse(BaseModel):
    id: int
    code: str
    name: str
    type: str
    opening_balance: float
    current_balance: float
    description: Optional[str] = None
    is_active: bool


class JournalLineInput(BaseModel):
    chart_of_account_id: int
    debit: Decimal = Decimal("0")
    credit: Decimal = Decimal("0")
    description: Optional[str] = None


class JournalCreateRequest(BaseModel):
    journal_type: JournalType = JournalType.GENERAL
    description: str = Field(..., min_length=1)
    transaction_date: date
    accounting_period_id: Optional[int] = None
    cash_account_id: Optional[int] = None
    lines: list[JournalLineInput]


class JournalUpdateRequest(BaseModel):
    journal_type: Optional[JournalType] = None
    description: Optional[str] = None
    transaction_date: Optional[date] = None
    accounting_period_id: Optional[int] = None
    lines: list[JournalLineInput]


class JournalDetailResponse(BaseModel):
    id: Optional[int] = None
    chart_of_account_id: int
    account_code: Optional[str] = None
    account_name: Optional[str] = None
    debit: float
    credit: float
    description: Optional[str] = None


class JournalResponse(BaseModel):
    id: Optional[int] = None
    journal_number: str
    journal_type: str
    description: str
    transaction_date: str
    accounting_period_id: Optional[int] = None
    cash_account_id: Optional[int] = None
    created_by: Optional[int] = None
    is_locked: bool
    is_auto_generated: bool
    is_editable: bool
    source_module: str
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    total_debit: float
    total_credit: float
    details: list[JournalDetailResponse] = []


class PeriodCreateRequest(BaseModel):
    period_name: str = Field(..., min_length=1, max_length=100)
    start_date: date
    end_date: date


class FiscalYearRequest(BaseModel):
    year: int = Field(..., ge=2000, le=2100)


class PeriodResponse(BaseModel):
    id: int
    period_name: str
    start_date: str
    end_date: str
    period_type: str
    is_closed: bool
    closed_by: Optional[int] = None
    closed_at: Optional[str] = None


# ===================================================================
# Helpers
# ===================================================================

def _serialize_date(d) -> str | None:
    if d is None:
        return None
    if hasattr(d, "isoformat"):
        return d.isoformat()
    return str(d)


def _enum_value(value) -> str | None:
    if value is None:
        return None
    return getattr(value, "value", value)


def _loaded(obj, attr: str):
    """Relationship value if already loaded, else None (no lazy IO)."""
    if attr in sa_inspect(obj).unloaded:
        return None
    return getattr(obj, attr)


def serialize_journal(journal: Journal) -> dict[str, Any]:
    details = []
    for ln in (_loaded(journal, "details") or []):
        acct = _loaded(ln, "account")
        details.append(JournalDetailResponse(
            id=ln.id,
            chart_of_account_id=ln.chart_of_account_id,
            account_code=acct.code if acct else None,
            account_name=acct.name if acct else None,
            debit=float(ln.debit or 0),
            credit=float(ln.credit or 0),
            description=ln.description,
        ))

    return JournalResponse(
        id=journal.id,
        journal_number=journal.journal_number,
        journal_type=_enum_value(journal.journal_type),
        description=journal.description,
        transaction_date=_serialize_date(journal.transaction_date),
        accounting_period_id=journal.accounting_period_id,
        cash_account_id=journal.cash_account_id,
        created_by=journal.created_by,
        is_locked=bool(journal.is_locked),
        is_auto_generated=bool(journal.is_auto_generated),
        is_editable=bool(journal.is_editable),
        source_module=_enum_value(journal.source_module) or SourceModule.MANUAL.value,
        reference_type=_enum_value(journal.reference_type),
        reference_id=journal.reference_id,
        total_debit=float(journal.total_debit or 0),
        total_credit=float(journal.total_credit or 0),
        details=details,
    ).model_dump()


def _account_to_response(account: ChartOfAccount) -> dict[str, Any]:
    return ChartOfAccountResponse(
        id=account.id,
        code=account.code,
        name=account.name,
        category=_enum_value(account.category),
        account_type=account.account_type,
        is_debit=account.is_debit,
        is_contra=bool(account.is_contra),
        contra_description=account.contra_description,
        is_active=bool(account.is_active),
        description=account.description,
    ).model_dump()


def _cash_account_to_response(account: CashAccount) -> dict[str, Any]:
    return CashAccountResponse(
        id=account.id,
        code=account.code,
        name=account.name,
        type=_enum_value(account.type),
        opening_balance=float(account.opening_balance or 0),
        current_balance=float(account.current_balance or 0),
        description=account.description,
        is_active=bool(account.is_active),
    ).model_dump()


def _period_to_response(period: AccountingPeriod) -> dict[str, Any]:
    return PeriodResponse(
        id=period.id,
        period_name=period.period_name,
        start_date=_serialize_date(period.start_date),
        end_date=_serialize_date(period.end_date),
        period_type=period_service.period_type(period),
        is_closed=bool(period.is_closed),
        closed_by=period.closed_by,
        closed_at=_serialize_date(period.closed_at),
    ).model_dump()


def _lines_payload(lines: list[JournalLineInput]) -> list[dict[str, Any]]:
    return [ln.model_dump() for ln in lines]


# ===================================================================
# Chart of Accounts
# ===================================================================

@router.get("/coa")
async def list_chart_of_accounts(
    category: Optional[AccountCategory] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        accounts = await coa_registry.list_accounts(
            db, category=category, is_active=is_active, search=search
        )
        return [_account_to_response(a) for a in accounts]
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.ledger", function_name="list_chart_of_accounts")
        raise


@router.get("/coa/{code}")
async def get_chart_of_account(
    code: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        try:
            account = await coa_registry.lookup(db, code)
        except AccountNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return _account_to_response(account)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.ledger", function_name="get_chart_of_account")
        raise


# ===================================================================
# Cash Accounts
# ===================================================================

@router.get("/cash-accounts")
async def list_cash_accounts(
    is_active: Optional[bool] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        accounts = await cash_balance.list_cash_accounts(db, is_active=is_active)
        return [_cash_account_to_response(a) for a in accounts]
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.ledger", function_name="list_cash_accounts")
        raise


@router.get("/cash-accounts/{cash_account_id}")
async def get_cash_account(
    cash_account_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        try:
            account = await cash_balance.get_cash_account(db, cash_account_id)
        except LedgerError as e:
            raise to_http_exception(e)
        return _cash_account_to_response(account)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.ledger", function_name="get_cash_account")
        raise


# ===================================================================
# Journals
# ===================================================================

@router.get("/journals")
async def list_journals(
    journal_type: Optional[JournalType] = None,
    accounting_period_id: Optional[int] = None,
    is_locked: Optional[bool] = None,
    source_module: Optional[SourceModule] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
    sort_by: str = "transaction_date",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    per_page: int = Query(15, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        items, total = await journal_engine.list_journals(
            db,
            journal_type=journal_type,
            accounting_period_id=accounting_period_id,
            is_locked=is_locked,
            source_module=source_module,
            start_date=start_date,
            end_date=end_date,
            search=search,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=per_page,
            offset=(page - 1) * per_page,
        )
        return {
            "items": [serialize_journal(j) for j in items],
            "total": total,
            "page": page,
            "per_page": per_page,
            "pages": math.ceil(total / per_page) if total else 0,
        }
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.ledger", function_name="list_journals")
        raise


@router.post("/journals", status_code=201)
async def create_journal(
    data: JournalCreateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        try:
            journal = await journal_engine.create_journal(
                db,
                lines=_lines_payload(data.lines),
                description=data.description,
                transaction_date=data.transaction_date,
                journal_type=data.journal_type,
                created_by=current_user.id,
                accounting_period_id=data.accounting_period_id,
                cash_account_id=data.cash_account_id,
            )
        except LedgerError as e:
            raise to_http_exception(e)
        return serialize_journal(journal)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.ledger", function_name="create_journal")
        raise


@router.get("/journals/general-ledger")
async def journals_general_ledger(
    start_date: date,
    end_date: date,
    account_id: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        try:
            return await reports_service.general_ledger(
                db, start_date=start_date, end_date=end_date, account_id=account_id
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.ledger", function_name="journals_general_ledger")
        raise


@router.get("/journals/trial-balance")
async def journals_trial_balance(
    as_of_date: Optional[date] = None,
    period_id: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        return await reports_service.trial_balance(db, as_of_date=as_of_date, period_id=period_id)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.ledger", function_name="journals_trial_balance")
        raise


@router.get("/journals/{journal_id}")
async def get_journal(
    journal_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        try:
            journal = await journal_engine.get_journal(db, journal_id)
        except LedgerError as e:
            raise to_http_exception(e)
        return serialize_journal(journal)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.ledger", function_name="get_journal")
        raise


@router.put("/journals/{journal_id}")
async def update_journal(
    journal_id: int,
    data: JournalUpdateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        try:
            journal = await journal_engine.update_journal(
                db,
                journal_id,
                lines=_lines_payload(data.lines),
                description=data.description,
                transaction_date=data.transaction_date,
                journal_type=data.journal_type,
                accounting_period_id=data.accounting_period_id,
            )
        except LedgerError as e:
            raise to_http_exception(e)
        return serialize_journal(journal)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.ledger", function_name="update_journal")
        raise


@router.delete("/journals/{journal_id}")
async def delete_journal(
    journal_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        try:
            await journal_engine.delete_journal(db, journal_id)
        except LedgerError as e:
            raise to_http_exception(e)
        return {"message": "Journal deleted", "id": journal_id}
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.ledger", function_name="delete_journal")
        raise


@router.post("/journals/{journal_id}/lock")
async def lock_journal(
    journal_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        try:
            journal = await journal_engine.lock_journal(db, journal_id)
        except LedgerError as e:
            raise to_http_exception(e)
        return serialize_journal(journal)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.ledger", function_name="lock_journal")
        raise


# ===================================================================
# Accounting Periods
# ===================================================================

@router.get("/accounting-periods")
async def list_periods(
    is_closed: Optional[bool] = None,
    year: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        periods = await period_service.list_periods(db, is_closed=is_closed, year=year)
        return [_period_to_response(p) for p in periods]
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.ledger", function_name="list_periods")
        raise


@router.post("/accounting-periods", status_code=201)
async def create_period(
    data: PeriodCreateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        try:
            period = await period_service.create_period(
                db,
                period_name=data.period_name,
                start_date=data.start_date,
                end_date=data.end_date,
            )
        except LedgerError as e:
            raise to_http_exception(e)
        return _period_to_response(period)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.ledger", function_name="create_period")
        raise


@router.post("/accounting-periods/fiscal-year", status_code=201)
async def create_fiscal_year(
    data: FiscalYearRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        try:
            periods = await period_service.create_fiscal_year(db, data.year)
        except LedgerError as e:
            raise to_http_exception(e)
        return [_period_to_response(p) for p in periods]
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.ledger", function_name="create_fiscal_year")
        raise


@router.get("/accounting-periods/active")
async def get_active_period(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        period = await period_service.get_active_period(db)
        if period is None:
            raise HTTPException(status_code=404, detail="No open accounting period covers today")
        return _period_to_response(period)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.ledger", function_name="get_active_period")
        raise


@router.get("/accounting-periods/{period_id}")
async def get_period(
    period_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        try:
            period = await period_service.get_period(db, period_id)
        except LedgerError as e:
            raise to_http_exception(e)
        response = _period_to_response(period)
        response["journal_count"] = await period_service.count_journals(db, period_id)
        return response
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.ledger", function_name="get_period")
        raise


@router.post("/accounting-periods/{period_id}/close")
async def close_period(
    period_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        try:
            period, locked = await period_service.close_period(db, period_id, current_user.id)
        except LedgerError as e:
            raise to_http_exception(e)
        response = _period_to_response(period)
        response["locked_journals"] = locked
        return response
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.ledger", function_name="close_period")
        raise


@router.post("/accounting-periods/{period_id}/reopen")
async def reopen_period(
    period_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        try:
            period = await period_service.reopen_period(db, period_id, current_user.id)
        except LedgerError as e:
            raise to_http_exception(e)
        return _period_to_response(period)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.ledger", function_name="reopen_period")
        raise
