"""Financial report endpoints."""

import inspect
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from koperasi.auth_utils import STAFF_ROLES, require_roles
from koperasi.database import get_db
from koperasi.models.user import User
from koperasi.services.error_logger import log_error
from koperasi.services.ledger import reports_service
from koperasi.services.ledger.reports_service import REPORT_REGISTRY

logger = logging.getLogger(__name__)
router = APIRouter()


def _month_to_date(start_date: Optional[date], end_date: Optional[date]) -> tuple[date, date]:
    end = end_date or date.today()
    return start_date or end.replace(day=1), end


@router.get("")
async def list_reports(
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    return [
        {"report_type": key, "name": meta["name"], "description": meta["description"]}
        for key, meta in REPORT_REGISTRY.items()
    ]


@router.get("/income-statement")
async def income_statement(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    compare: bool = False,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        start, end = _month_to_date(start_date, end_date)
        try:
            return await reports_service.income_statement(
                db, start_date=start, end_date=end, compare=compare
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.reports", function_name="income_statement")
        raise


@router.get("/balance-sheet")
async def balance_sheet(
    as_of_date: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        return await reports_service.balance_sheet(db, as_of_date=as_of_date)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.reports", function_name="balance_sheet")
        raise


@router.get("/cash-flow")
async def cash_flow(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        start, end = _month_to_date(start_date, end_date)
        try:
            return await reports_service.cash_flow(db, start_date=start, end_date=end)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.reports", function_name="cash_flow")
        raise


@router.get("/{report_type}")
async def generate_report(
    report_type: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    as_of_date: Optional[date] = None,
    period_id: Optional[int] = None,
    account_id: Optional[int] = None,
    compare: bool = False,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    """Run any registered report; only the parameters it accepts are passed."""
    try:
        entry = REPORT_REGISTRY.get(report_type.replace("-", "_"))
        if entry is None:
            raise HTTPException(status_code=404, detail=f"Unknown report type: {report_type}")

        start, end = _month_to_date(start_date, end_date)
        candidates = {
            "start_date": start,
            "end_date": end,
            "as_of_date": as_of_date,
            "period_id": period_id,
            "account_id": account_id,
            "compare": compare,
        }
        accepted = inspect.signature(entry["fn"]).parameters
        kwargs = {k: v for k, v in candidates.items() if k in accepted}
        try:
            return await entry["fn"](db, **kwargs)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.reports", function_name="generate_report")
        raise
