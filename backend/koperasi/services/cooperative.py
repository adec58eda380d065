"""Cooperative business flows that move cash and post journals.

Every flow runs inside one ``unit_of_work``: the status change on the
business record, the cash account balance and the auto-generated journal are
written together or not at all. A failed posting (for example a missing COA
code) therefore leaves the saving unapproved, the loan undisbursed, and so on.
"""

import calendar
import logging
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from koperasi.config import settings
from koperasi.database import unit_of_work
from koperasi.models.cooperative import (
    AllowanceStatus,
    CashTransfer,
    DeductionStatus,
    Installment,
    InstallmentStatus,
    InterestRate,
    Loan,
    LoanStatus,
    PaymentMethod,
    RateTransactionType,
    SalaryDeduction,
    Saving,
    SavingStatus,
    ServiceAllowance,
    TransferStatus,
)
from koperasi.models.ledger import Journal
from koperasi.services.ledger import auto_journal, cash_balance
from koperasi.services.ledger.cash_balance import BalanceDirection
from koperasi.services.ledger.exceptions import (
    ConfigurationError,
    InsufficientBalanceError,
    NotFoundError,
    StateError,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")

PAYABLE_INSTALLMENT_STATUSES = (
    InstallmentStatus.PENDING,
    InstallmentStatus.OVERDUE,
    InstallmentStatus.MANUAL_PENDING,
)
SETTLED_INSTALLMENT_STATUSES = (InstallmentStatus.PAID, InstallmentStatus.AUTO_PAID)


# ---------------------------------------------------------------------------
# Loan schedule arithmetic
# ---------------------------------------------------------------------------

def add_months(start: date, months: int) -> date:
    """Same day *months* later, clamped to the end of shorter months."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    _, last_day = calendar.monthrange(year, month)
    return date(year, month, min(start.day, last_day))


def calculate_installment(principal: Decimal, annual_rate: Decimal, months: int) -> Decimal:
    """Annuity payment, rounded to whole rupiah. Zero rate splits principal evenly."""
    principal = Decimal(str(principal))
    annual_rate = Decimal(str(annual_rate))
    if months <= 0:
        raise ValueError("Loan tenure must be at least one month")
    if annual_rate == 0:
        return (principal / months).quantize(CENT, rounding=ROUND_HALF_UP)
    monthly_rate = annual_rate / 12 / 100
    factor = (1 + monthly_rate) ** months
    payment = principal * (monthly_rate * factor) / (factor - 1)
    return payment.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def build_installment_schedule(
    principal: Decimal,
    annual_rate: Decimal,
    months: int,
    installment_amount: Decimal,
    start_date: date,
) -> list[dict[str, Any]]:
    """Amortization rows; the last installment absorbs rounding."""
    principal = Decimal(str(principal))
    monthly_rate = Decimal(str(annual_rate)) / 12 / 100
    remaining = principal
    rows = []
    for number in range(1, months + 1):
        interest = (remaining * monthly_rate).quantize(CENT, rounding=ROUND_HALF_UP)
        principal_part = installment_amount - interest
        if number == months:
            principal_part = remaining
        remaining = remaining - principal_part
        rows.append({
            "installment_number": number,
            "due_date": add_months(start_date, number),
            "principal_amount": principal_part.quantize(CENT),
            "interest_amount": interest,
            "total_amount": (principal_part + interest).quantize(CENT)
            if number == months else installment_amount,
            "remaining_principal": remaining.quantize(CENT),
        })
    return rows


# ---------------------------------------------------------------------------
# Loading helpers
# ---------------------------------------------------------------------------

async def _load_for_update(db: AsyncSession, model, record_id: int, *options):
    result = await db.execute(
        select(model)
        .where(model.id == record_id)
        .options(*options)
        .with_for_update()
    )
    record = result.scalar_one_or_none()
    if record is None:
        raise NotFoundError(f"{model.__name__} {record_id} not found")
    return record


async def _effective_loan_rate(db: AsyncSession, loan: Loan, on: date) -> Decimal:
    result = await db.execute(
        select(InterestRate)
        .where(
            InterestRate.cash_account_id == loan.cash_account_id,
            InterestRate.transaction_type == RateTransactionType.LOANS,
            InterestRate.effective_date <= on,
        )
        .order_by(InterestRate.effective_date.desc())
        .limit(1)
    )
    rate = result.scalar_one_or_none()
    if rate is None:
        raise ConfigurationError(
            f"No loan interest rate configured for cash account {loan.cash_account_id}"
        )
    return rate.rate_percentage


# ---------------------------------------------------------------------------
# Flows
# ---------------------------------------------------------------------------

async def approve_saving(
    db: AsyncSession, saving_id: int, *, approved_by: int
) -> tuple[Saving, Journal]:
    async with unit_of_work(db):
        saving = await _load_for_update(
            db, Saving, saving_id,
            selectinload(Saving.cash_account), selectinload(Saving.user),
        )
        if saving.status != SavingStatus.PENDING:
            raise StateError(f"Saving {saving_id} is {saving.status.value}, expected pending")

        saving.status = SavingStatus.APPROVED
        saving.approved_by = approved_by
        await cash_balance.update_balance(
            db, saving.cash_account_id, saving.amount, BalanceDirection.ADD
        )
        journal = await auto_journal.saving_approved(db, saving, approved_by)

    logger.info("Approved saving %d, journal %s", saving_id, journal.journal_number)
    return saving, journal


async def disburse_loan(
    db: AsyncSession,
    loan_id: int,
    *,
    approved_by: int,
    disbursement_date: date | None = None,
) -> tuple[Loan, Journal]:
    """Disburse a pending/approved loan, build its schedule and activate it."""
    async with unit_of_work(db):
        loan = await _load_for_update(
            db, Loan, loan_id,
            selectinload(Loan.cash_account), selectinload(Loan.user),
            selectinload(Loan.installments),
        )
        if loan.status not in (LoanStatus.PENDING, LoanStatus.APPROVED):
            raise StateError(f"Loan {loan.loan_number} is {loan.status.value}, cannot disburse")

        disbursed_on = disbursement_date or date.today()
        if loan.interest_percentage is None:
            loan.interest_percentage = await _effective_loan_rate(db, loan, disbursed_on)
        loan.installment_amount = calculate_installment(
            loan.principal_amount, loan.interest_percentage, loan.tenure_months
        )

        loan.status = LoanStatus.DISBURSED
        loan.approved_by = approved_by
        loan.approval_date = loan.approval_date or disbursed_on
        loan.disbursement_date = disbursed_on
        loan.remaining_principal = loan.principal_amount

        await cash_balance.update_balance(
            db, loan.cash_account_id, loan.principal_amount, BalanceDirection.SUBTRACT
        )

        for row in build_installment_schedule(
            loan.principal_amount,
            loan.interest_percentage,
            loan.tenure_months,
            loan.installment_amount,
            disbursed_on,
        ):
            loan.installments.append(Installment(status=InstallmentStatus.PENDING, **row))

        journal = await auto_journal.loan_disbursed(db, loan, approved_by)
        loan.status = LoanStatus.ACTIVE

    logger.info(
        "Disbursed loan %s (%s over %d months), journal %s",
        loan.loan_number, loan.principal_amount, loan.tenure_months, journal.journal_number,
    )
    return loan, journal


async def pay_installment(
    db: AsyncSession,
    installment_id: int,
    *,
    confirmed_by: int,
    payment_method: PaymentMethod = PaymentMethod.CASH,
    payment_date: date | None = None,
) -> tuple[Installment, Journal]:
    async with unit_of_work(db):
        installment = await _load_for_update(
            db, Installment, installment_id,
            selectinload(Installment.loan).selectinload(Loan.cash_account),
            selectinload(Installment.loan).selectinload(Loan.user),
            selectinload(Installment.loan).selectinload(Loan.installments),
        )
        loan = installment.loan
        if installment.status not in PAYABLE_INSTALLMENT_STATUSES:
            raise StateError(
                f"Installment #{installment.installment_number} is {installment.status.value}"
            )
        if loan.status != LoanStatus.ACTIVE:
            raise StateError(f"Loan {loan.loan_number} is {loan.status.value}, expected active")

        payment_method = PaymentMethod(payment_method)
        installment.status = InstallmentStatus.PAID
        installment.paid_amount = installment.total_amount
        installment.payment_date = payment_date or date.today()
        installment.payment_method = payment_method
        installment.confirmed_by = confirmed_by

        remaining = Decimal(str(loan.remaining_principal)) - Decimal(str(installment.principal_amount))
        loan.remaining_principal = max(remaining, ZERO)

        await cash_balance.update_balance(
            db, loan.cash_account_id, installment.total_amount, BalanceDirection.ADD
        )
        journal = await auto_journal.installment_paid(
            db, installment, confirmed_by, payment_method.value
        )

        if all(i.status in SETTLED_INSTALLMENT_STATUSES for i in loan.installments):
            loan.status = LoanStatus.PAID_OFF
            logger.info("Loan %s fully repaid", loan.loan_number)

    return installment, journal


async def approve_cash_transfer(
    db: AsyncSession, transfer_id: int, *, approved_by: int
) -> tuple[CashTransfer, Journal]:
    async with unit_of_work(db):
        transfer = await _load_for_update(
            db, CashTransfer, transfer_id,
            selectinload(CashTransfer.from_cash_account),
            selectinload(CashTransfer.to_cash_account),
        )
        if transfer.status != TransferStatus.PENDING:
            raise StateError(
                f"Transfer {transfer.transfer_number} is {transfer.status.value}, expected pending"
            )
        if transfer.from_cash_account_id == transfer.to_cash_account_id:
            raise StateError("Source and destination cash accounts must differ")

        # Lock both accounts in id order so opposite transfers cannot deadlock
        for account_id in sorted({transfer.from_cash_account_id, transfer.to_cash_account_id}):
            await cash_balance.get_cash_account(db, account_id, for_update=True)

        source = transfer.from_cash_account
        if Decimal(str(source.current_balance)) < Decimal(str(transfer.amount)):
            raise InsufficientBalanceError(
                f"Cash account {source.name} balance {source.current_balance} "
                f"cannot cover transfer of {transfer.amount}"
            )

        await cash_balance.update_balance(
            db, transfer.from_cash_account_id, transfer.amount, BalanceDirection.SUBTRACT
        )
        await cash_balance.update_balance(
            db, transfer.to_cash_account_id, transfer.amount, BalanceDirection.ADD
        )
        journal = await auto_journal.cash_transfer_approved(db, transfer, approved_by)

        transfer.journal_id = journal.id
        transfer.approved_by = approved_by
        transfer.approved_at = datetime.now(timezone.utc)
        transfer.status = TransferStatus.COMPLETED

    logger.info("Completed cash transfer %s, journal %s", transfer.transfer_number, journal.journal_number)
    return transfer, journal


async def process_salary_deduction(
    db: AsyncSession,
    deduction_id: int,
    *,
    processed_by: int,
    principal_portion: Decimal = ZERO,
    interest_portion: Decimal = ZERO,
    deduction_date: date | None = None,
) -> tuple[SalaryDeduction, Journal | None]:
    async with unit_of_work(db):
        deduction = await _load_for_update(
            db, SalaryDeduction, deduction_id, selectinload(SalaryDeduction.user),
        )
        if deduction.status != DeductionStatus.PENDING:
            raise StateError(
                f"Salary deduction {deduction_id} is {deduction.status.value}, expected pending"
            )

        deduction.status = DeductionStatus.PROCESSED
        deduction.processed_by = processed_by
        deduction.deduction_date = deduction.deduction_date or deduction_date or date.today()

        journal = None
        if Decimal(str(deduction.total_deductions)) > 0:
            kas = await cash_balance.get_cash_account_by_type(
                db, settings.default_cash_account_type
            )
            await cash_balance.update_balance(
                db, kas.id, deduction.total_deductions, BalanceDirection.ADD
            )
            journal = await auto_journal.salary_deduction_processed(
                db, deduction, processed_by, principal_portion, interest_portion
            )
            deduction.journal_id = journal.id if journal else None

    return deduction, journal


async def process_service_allowance(
    db: AsyncSession,
    allowance_id: int,
    *,
    processed_by: int,
    payment_date: date | None = None,
) -> tuple[ServiceAllowance, Journal | None]:
    async with unit_of_work(db):
        allowance = await _load_for_update(
            db, ServiceAllowance, allowance_id, selectinload(ServiceAllowance.user),
        )
        if allowance.status != AllowanceStatus.PENDING:
            raise StateError(
                f"Service allowance {allowance_id} is {allowance.status.value}, expected pending"
            )

        installment_paid = Decimal(str(allowance.installment_paid or 0))
        allowance.status = AllowanceStatus.PAID
        allowance.distributed_by = processed_by
        allowance.payment_date = allowance.payment_date or payment_date or date.today()
        allowance.remaining_amount = Decimal(str(allowance.received_amount)) - installment_paid

        journal = None
        if installment_paid > 0:
            kas = await cash_balance.get_cash_account_by_type(
                db, settings.default_cash_account_type
            )
            await cash_balance.update_balance(db, kas.id, installment_paid, BalanceDirection.ADD)
            journal = await auto_journal.service_allowance_processed(
                db,
                allowance,
                processed_by,
                allowance.principal_deduction,
                allowance.interest_deduction,
            )
            allowance.journal_id = journal.id if journal else None

    return allowance, journal


async def settle_loan_early(
    db: AsyncSession,
    loan_id: int,
    *,
    settled_by: int,
    notes: str | None = None,
    settlement_date: date | None = None,
) -> tuple[Loan, Journal, Decimal]:
    """Pay off the remaining principal, waiving future interest.

    Returns (loan, journal, waived_interest).
    """
    async with unit_of_work(db):
        loan = await _load_for_update(
            db, Loan, loan_id,
            selectinload(Loan.cash_account), selectinload(Loan.user),
            selectinload(Loan.installments),
        )
        if loan.status != LoanStatus.ACTIVE:
            raise StateError("Only active loans can be settled early")
        remaining = Decimal(str(loan.remaining_principal or 0))
        if remaining <= 0:
            raise StateError(f"Loan {loan.loan_number} has no remaining principal")

        waived_interest = ZERO
        for inst in loan.installments:
            if inst.status in (InstallmentStatus.PENDING, InstallmentStatus.OVERDUE):
                waived_interest += Decimal(str(inst.interest_amount))
                inst.status = InstallmentStatus.CANCELLED
                inst.notes = "Cancelled by early settlement"

        loan.status = LoanStatus.PAID_OFF
        loan.is_early_settlement = True
        loan.settlement_date = settlement_date or date.today()
        loan.settlement_amount = remaining
        loan.settled_by = settled_by
        loan.settlement_notes = notes
        loan.remaining_principal = ZERO

        await cash_balance.update_balance(db, loan.cash_account_id, remaining, BalanceDirection.ADD)
        journal = await auto_journal.loan_early_settlement(db, loan, settled_by)

    logger.info(
        "Loan %s settled early for %s (interest waived %s), journal %s",
        loan.loan_number, remaining, waived_interest, journal.journal_number,
    )
    return loan, journal, waived_interest
