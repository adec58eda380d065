"""Cooperative actions that move cash and post automatic journals."""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from koperasi.api.errors import to_http_exception
from koperasi.api.ledger import serialize_journal
from koperasi.auth_utils import STAFF_ROLES, require_roles
from koperasi.database import get_db
from koperasi.models.cooperative import PaymentMethod
from koperasi.models.ledger import Journal
from koperasi.models.user import User
from koperasi.services import cooperative
from koperasi.services.error_logger import log_error
from koperasi.services.ledger.exceptions import LedgerError

logger = logging.getLogger(__name__)
router = APIRouter()


# ===================================================================
# Pydantic Schemas
# ===================================================================

class LoanDisburseRequest(BaseModel):
    disbursement_date: Optional[date] = None


class InstallmentPaymentRequest(BaseModel):
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_date: Optional[date] = None


class SalaryDeductionProcessRequest(BaseModel):
    principal_portion: Decimal = Field(default=Decimal("0"), ge=0)
    interest_portion: Decimal = Field(default=Decimal("0"), ge=0)
    deduction_date: Optional[date] = None


class ServiceAllowanceProcessRequest(BaseModel):
    payment_date: Optional[date] = None


class EarlySettlementRequest(BaseModel):
    notes: Optional[str] = None
    settlement_date: Optional[date] = None


# ===================================================================
# Helpers
# ===================================================================

def _result(record: Any, journal: Journal | None, **extra: Any) -> dict[str, Any]:
    status = getattr(record, "status", None)
    return {
        "id": record.id,
        "status": getattr(status, "value", status),
        "journal": serialize_journal(journal) if journal is not None else None,
        **extra,
    }


# ===================================================================
# Endpoints
# ===================================================================

@router.post("/savings/{saving_id}/approve")
async def approve_saving(
    saving_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        try:
            saving, journal = await cooperative.approve_saving(
                db, saving_id, approved_by=current_user.id
            )
        except LedgerError as e:
            raise to_http_exception(e)
        return _result(saving, journal)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.cooperative", function_name="approve_saving")
        raise


@router.post("/loans/{loan_id}/disburse")
async def disburse_loan(
    loan_id: int,
    data: LoanDisburseRequest = LoanDisburseRequest(),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        try:
            loan, journal = await cooperative.disburse_loan(
                db,
                loan_id,
                approved_by=current_user.id,
                disbursement_date=data.disbursement_date,
            )
        except LedgerError as e:
            raise to_http_exception(e)
        return _result(
            loan,
            journal,
            loan_number=loan.loan_number,
            installment_amount=float(loan.installment_amount or 0),
            installments=len(loan.installments),
        )
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.cooperative", function_name="disburse_loan")
        raise


@router.post("/installments/{installment_id}/pay")
async def pay_installment(
    installment_id: int,
    data: InstallmentPaymentRequest = InstallmentPaymentRequest(),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        try:
            installment, journal = await cooperative.pay_installment(
                db,
                installment_id,
                confirmed_by=current_user.id,
                payment_method=data.payment_method,
                payment_date=data.payment_date,
            )
        except LedgerError as e:
            raise to_http_exception(e)
        loan_status = installment.loan.status
        return _result(
            installment, journal, loan_status=getattr(loan_status, "value", loan_status)
        )
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.cooperative", function_name="pay_installment")
        raise


@router.post("/cash-transfers/{transfer_id}/approve")
async def approve_cash_transfer(
    transfer_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        try:
            transfer, journal = await cooperative.approve_cash_transfer(
                db, transfer_id, approved_by=current_user.id
            )
        except LedgerError as e:
            raise to_http_exception(e)
        return _result(transfer, journal, transfer_number=transfer.transfer_number)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.cooperative", function_name="approve_cash_transfer")
        raise


@router.post("/salary-deductions/{deduction_id}/process")
async def process_salary_deduction(
    deduction_id: int,
    data: SalaryDeductionProcessRequest = SalaryDeductionProcessRequest(),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        try:
            deduction, journal = await cooperative.process_salary_deduction(
                db,
                deduction_id,
                processed_by=current_user.id,
                principal_portion=data.principal_portion,
                interest_portion=data.interest_portion,
                deduction_date=data.deduction_date,
            )
        except LedgerError as e:
            raise to_http_exception(e)
        return _result(deduction, journal)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(
            e, module="api.cooperative", function_name="process_salary_deduction"
        )
        raise


@router.post("/service-allowances/{allowance_id}/process")
async def process_service_allowance(
    allowance_id: int,
    data: ServiceAllowanceProcessRequest = ServiceAllowanceProcessRequest(),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        try:
            allowance, journal = await cooperative.process_service_allowance(
                db, allowance_id, processed_by=current_user.id, payment_date=data.payment_date
            )
        except LedgerError as e:
            raise to_http_exception(e)
        return _result(allowance, journal)
    except HTTPException:
        raise
    except Exception as e:
        await log_error(
            e, module="api.cooperative", function_name="process_service_allowance"
        )
        raise


@router.post("/loans/{loan_id}/settle")
async def settle_loan_early(
    loan_id: int,
    data: EarlySettlementRequest = EarlySettlementRequest(),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
):
    try:
        try:
            loan, journal, waived = await cooperative.settle_loan_early(
                db,
                loan_id,
                settled_by=current_user.id,
                notes=data.notes,
                settlement_date=data.settlement_date,
            )
        except LedgerError as e:
            raise to_http_exception(e)
        return _result(
            loan,
            journal,
            settlement_amount=float(loan.settlement_amount or 0),
            interest_waived=float(waived),
        )
    except HTTPException:
        raise
    except Exception as e:
        await log_error(e, module="api.cooperative", function_name="settle_loan_early")
        raise
