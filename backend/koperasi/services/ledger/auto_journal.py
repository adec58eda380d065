"""Automatic journals for cooperative business events.

Each event maps to a fixed set of debit/credit accounts:

=========================  ===========================  =====================================
Event                      Debit                        Credit
=========================  ===========================  =====================================
saving approved            cash (by cash account type)  member savings (by savings type)
loan disbursed             loan receivable 1-201        cash (by cash account type)
installment paid           cash                         1-201 principal, 4-101 interest (> 0)
cash transfer approved     destination cash             source cash
salary deduction           Kas Umum                     1-201 / 4-101 / 2-202 / 4-201
service allowance          Kas Umum                     1-201 / 4-101
early settlement           cash                         1-201
=========================  ===========================  =====================================

The ``build_*`` functions are pure: they turn a business record into a
:class:`JournalDraft` that refers to accounts by COA code. The async
handlers resolve those codes and persist the draft through the journal
engine, so a missing or inactive code aborts the posting.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from koperasi.config import settings
from koperasi.models.ledger import Journal, JournalType, ReferenceType, SourceModule
from koperasi.services.ledger import coa_registry
from koperasi.services.ledger.coa_registry import (
    COA_INTEREST_INCOME,
    COA_LOAN_RECEIVABLE,
    COA_OTHER_INCOME,
    resolve_cash_account_coa,
    resolve_saving_type_coa,
)
from koperasi.models.error_log import ErrorSeverity
from koperasi.services.error_logger import log_error_standalone
from koperasi.services.ledger.exceptions import ConfigurationError, LedgerError
from koperasi.services.ledger.journal_engine import create_journal

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

SAVINGS_TYPE_LABELS = {
    "principal": "Simpanan Pokok",
    "mandatory": "Simpanan Wajib",
    "voluntary": "Simpanan Sukarela",
    "holiday": "Simpanan Hari Raya",
}

PAYMENT_METHOD_LABELS = {
    "cash": "cash",
    "salary": "payroll deduction",
    "service_allowance": "service allowance",
}


class AutoJournalEvent(str, enum.Enum):
    SAVING_APPROVED = "saving_approved"
    LOAN_DISBURSED = "loan_disbursed"
    INSTALLMENT_PAID = "installment_paid"
    CASH_TRANSFER_APPROVED = "cash_transfer_approved"
    SALARY_DEDUCTION_PROCESSED = "salary_deduction_processed"
    SERVICE_ALLOWANCE_PROCESSED = "service_allowance_processed"
    LOAN_EARLY_SETTLEMENT = "loan_early_settlement"


@dataclass
class DraftLine:
    """A journal line that names its account by COA code."""
    code: str
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    description: str | None = None


@dataclass
class JournalDraft:
    description: str
    transaction_date: date
    source_module: SourceModule
    reference_type: ReferenceType
    reference_id: int | None
    lines: list[DraftLine] = field(default_factory=list)
    journal_type: JournalType = JournalType.SPECIAL
    cash_account_id: int | None = None

    @property
    def total_debit(self) -> Decimal:
        return sum((ln.debit for ln in self.lines), ZERO)

    @property
    def total_credit(self) -> Decimal:
        return sum((ln.credit for ln in self.lines), ZERO)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _amount(value: Any) -> Decimal:
    return Decimal(str(value or 0))


def _tag(value: Any) -> str:
    return value.value if isinstance(value, enum.Enum) else str(value)


def _member_name(record: Any) -> str:
    user = getattr(record, "user", None)
    name = getattr(user, "full_name", None)
    return name or f"member #{getattr(record, 'user_id', '?')}"


def _split_portions(
    total: Decimal, principal_portion: Any, interest_portion: Any
) -> tuple[Decimal, Decimal]:
    """Principal/interest split; with no split given, all of *total* is principal."""
    principal = _amount(principal_portion)
    interest = _amount(interest_portion)
    if principal <= 0 and interest <= 0:
        principal = total
    return principal, interest


def _loan_repayment_lines(
    principal: Decimal, interest: Decimal, via: str, member: str
) -> list[DraftLine]:
    lines = []
    if principal > 0:
        lines.append(DraftLine(
            code=COA_LOAN_RECEIVABLE,
            credit=principal,
            description=f"Loan principal via {via} - {member}",
        ))
    if interest > 0:
        lines.append(DraftLine(
            code=COA_INTEREST_INCOME,
            credit=interest,
            description=f"Loan interest via {via} - {member}",
        ))
    return lines


# ---------------------------------------------------------------------------
# Pure builders
# ---------------------------------------------------------------------------

def build_saving_approved(saving: Any) -> JournalDraft:
    cash_code = resolve_cash_account_coa(saving.cash_account.type)
    saving_code = resolve_saving_type_coa(saving.savings_type)
    amount = _amount(saving.amount)
    member = _member_name(saving)
    label = SAVINGS_TYPE_LABELS.get(_tag(saving.savings_type), _tag(saving.savings_type))

    return JournalDraft(
        description=f"{label} - {member}",
        transaction_date=saving.transaction_date,
        source_module=SourceModule.SAVINGS,
        reference_type=ReferenceType.SAVING,
        reference_id=saving.id,
        cash_account_id=saving.cash_account_id,
        lines=[
            DraftLine(code=cash_code, debit=amount, description=f"Cash in: {label} from {member}"),
            DraftLine(code=saving_code, credit=amount, description=f"{label} {member}"),
        ],
    )


def build_loan_disbursed(loan: Any, *, today: date | None = None) -> JournalDraft:
    cash_code = resolve_cash_account_coa(loan.cash_account.type)
    amount = _amount(loan.principal_amount)
    member = _member_name(loan)

    return JournalDraft(
        description=f"Loan disbursement {loan.loan_number} - {member}",
        transaction_date=loan.disbursement_date or today or date.today(),
        source_module=SourceModule.LOANS,
        reference_type=ReferenceType.LOAN,
        reference_id=loan.id,
        cash_account_id=loan.cash_account_id,
        lines=[
            DraftLine(
                code=COA_LOAN_RECEIVABLE,
                debit=amount,
                description=f"Loan receivable {loan.loan_number} - {member}",
            ),
            DraftLine(
                code=cash_code,
                credit=amount,
                description=f"Cash out: loan disbursement to {member}",
            ),
        ],
    )


def build_installment_paid(
    installment: Any, *, payment_method: str = "cash", today: date | None = None
) -> JournalDraft:
    """Cash debit for the full installment; interest line only when interest > 0."""
    loan = installment.loan
    cash_code = resolve_cash_account_coa(loan.cash_account.type)
    member = _member_name(loan)
    method = PAYMENT_METHOD_LABELS.get(_tag(payment_method), "cash")
    number = installment.installment_number
    interest = _amount(installment.interest_amount)

    lines = [
        DraftLine(
            code=cash_code,
            debit=_amount(installment.total_amount),
            description=f"Cash in: installment #{number} {loan.loan_number} ({method})",
        ),
        DraftLine(
            code=COA_LOAN_RECEIVABLE,
            credit=_amount(installment.principal_amount),
            description=f"Installment #{number} principal - {member}",
        ),
    ]
    if interest > 0:
        lines.append(DraftLine(
            code=COA_INTEREST_INCOME,
            credit=interest,
            description=f"Installment #{number} interest - {member}",
        ))

    return JournalDraft(
        description=f"Installment #{number} {loan.loan_number} - {member} ({method})",
        transaction_date=today or date.today(),
        source_module=SourceModule.INSTALLMENTS,
        reference_type=ReferenceType.INSTALLMENT,
        reference_id=installment.id,
        cash_account_id=loan.cash_account_id,
        lines=lines,
    )


def build_cash_transfer_approved(transfer: Any) -> JournalDraft:
    source = transfer.from_cash_account
    target = transfer.to_cash_account
    from_code = resolve_cash_account_coa(source.type)
    to_code = resolve_cash_account_coa(target.type)
    amount = _amount(transfer.amount)

    return JournalDraft(
        description=f"Cash transfer: {source.name} -> {target.name} - {transfer.purpose}",
        transaction_date=transfer.transfer_date,
        source_module=SourceModule.CASH_TRANSFERS,
        reference_type=ReferenceType.CASH_TRANSFER,
        reference_id=transfer.id,
        cash_account_id=transfer.from_cash_account_id,
        lines=[
            DraftLine(code=to_code, debit=amount, description=f"Cash in: transfer from {source.name}"),
            DraftLine(code=from_code, credit=amount, description=f"Cash out: transfer to {target.name}"),
        ],
    )


def build_salary_deduction_processed(
    deduction: Any,
    *,
    principal_portion: Any = 0,
    interest_portion: Any = 0,
    today: date | None = None,
) -> JournalDraft | None:
    """None when nothing was deducted."""
    total = _amount(deduction.total_deductions)
    if total <= 0:
        return None

    member = _member_name(deduction)
    period = deduction.period_display
    cash_code = resolve_cash_account_coa(settings.default_cash_account_type)
    lines = [
        DraftLine(code=cash_code, debit=total, description=f"Payroll deduction {member} period {period}"),
    ]

    loan_deduction = _amount(deduction.loan_deduction)
    if loan_deduction > 0:
        principal, interest = _split_portions(loan_deduction, principal_portion, interest_portion)
        lines.extend(_loan_repayment_lines(principal, interest, "payroll deduction", member))

    savings = _amount(deduction.savings_deduction)
    if savings > 0:
        lines.append(DraftLine(
            code=resolve_saving_type_coa("mandatory"),
            credit=savings,
            description=f"Mandatory savings via payroll deduction - {member}",
        ))

    other = _amount(deduction.other_deductions)
    if other > 0:
        lines.append(DraftLine(
            code=COA_OTHER_INCOME,
            credit=other,
            description=f"Other payroll deductions - {member}",
        ))

    return JournalDraft(
        description=f"Payroll deduction - {member} ({period})",
        transaction_date=deduction.deduction_date or today or date.today(),
        source_module=SourceModule.SALARY_DEDUCTIONS,
        reference_type=ReferenceType.SALARY_DEDUCTION,
        reference_id=deduction.id,
        lines=lines,
    )


def build_service_allowance_processed(
    allowance: Any,
    *,
    principal_portion: Any = 0,
    interest_portion: Any = 0,
    today: date | None = None,
) -> JournalDraft | None:
    """None when no installment was taken from the allowance."""
    paid = _amount(allowance.installment_paid)
    if paid <= 0:
        return None

    member = _member_name(allowance)
    cash_code = resolve_cash_account_coa(settings.default_cash_account_type)
    principal, interest = _split_portions(paid, principal_portion, interest_portion)

    lines = [
        DraftLine(code=cash_code, debit=paid, description=f"Service allowance withheld for installment - {member}"),
    ]
    lines.extend(_loan_repayment_lines(principal, interest, "service allowance", member))

    return JournalDraft(
        description=f"Service allowance installment deduction - {member} ({allowance.period_display})",
        transaction_date=allowance.payment_date or today or date.today(),
        source_module=SourceModule.SERVICE_ALLOWANCES,
        reference_type=ReferenceType.SERVICE_ALLOWANCE,
        reference_id=allowance.id,
        lines=lines,
    )


def build_loan_early_settlement(loan: Any, *, today: date | None = None) -> JournalDraft:
    """Cash against receivable for the remaining principal; interest is waived."""
    cash_code = resolve_cash_account_coa(loan.cash_account.type)
    member = _member_name(loan)
    amount = _amount(loan.settlement_amount)

    return JournalDraft(
        description=f"Early settlement {loan.loan_number} - {member}",
        transaction_date=loan.settlement_date or today or date.today(),
        source_module=SourceModule.LOANS,
        reference_type=ReferenceType.LOAN,
        reference_id=loan.id,
        cash_account_id=loan.cash_account_id,
        lines=[
            DraftLine(
                code=cash_code,
                debit=amount,
                description=f"Cash in: early settlement {loan.loan_number}",
            ),
            DraftLine(
                code=COA_LOAN_RECEIVABLE,
                credit=amount,
                description=f"Receivable settled {loan.loan_number} - {member}",
            ),
        ],
    )


# ---------------------------------------------------------------------------
# Posting
# ---------------------------------------------------------------------------

async def post_draft(db: AsyncSession, draft: JournalDraft, *, created_by: int) -> Journal:
    """Resolve the draft's COA codes and persist it as a locked-down journal.

    A failure is tagged with the draft's source and reference, recorded
    outside the caller's transaction, and re-raised.
    """
    try:
        accounts = await coa_registry.lookup_many(db, [ln.code for ln in draft.lines])
        lines = [
            {
                "chart_of_account_id": accounts[ln.code].id,
                "debit": ln.debit,
                "credit": ln.credit,
                "description": ln.description,
            }
            for ln in draft.lines
        ]
        return await create_journal(
            db,
            lines=lines,
            description=draft.description,
            transaction_date=draft.transaction_date,
            journal_type=draft.journal_type,
            created_by=created_by,
            cash_account_id=draft.cash_account_id,
            source_module=draft.source_module,
            reference_type=draft.reference_type,
            reference_id=draft.reference_id,
            is_auto_generated=True,
            is_editable=False,
        )
    except LedgerError as exc:
        exc.add_context(
            source_module=draft.source_module,
            reference_type=draft.reference_type,
            reference_id=draft.reference_id,
        )
        await log_error_standalone(
            exc,
            severity=ErrorSeverity.WARNING,
            module=__name__,
            function_name="post_draft",
            user_id=created_by,
        )
        raise


async def saving_approved(db: AsyncSession, saving: Any, approved_by: int) -> Journal:
    return await post_draft(db, build_saving_approved(saving), created_by=approved_by)


async def loan_disbursed(db: AsyncSession, loan: Any, approved_by: int) -> Journal:
    return await post_draft(db, build_loan_disbursed(loan), created_by=approved_by)


async def installment_paid(
    db: AsyncSession, installment: Any, confirmed_by: int, payment_method: str = "cash"
) -> Journal:
    draft = build_installment_paid(installment, payment_method=payment_method)
    return await post_draft(db, draft, created_by=confirmed_by)


async def cash_transfer_approved(db: AsyncSession, transfer: Any, approved_by: int) -> Journal:
    return await post_draft(db, build_cash_transfer_approved(transfer), created_by=approved_by)


async def salary_deduction_processed(
    db: AsyncSession,
    deduction: Any,
    processed_by: int,
    principal_portion: Any = 0,
    interest_portion: Any = 0,
) -> Journal | None:
    draft = build_salary_deduction_processed(
        deduction, principal_portion=principal_portion, interest_portion=interest_portion
    )
    if draft is None:
        logger.info("Salary deduction %s has no deductions; no journal posted", deduction.id)
        return None
    return await post_draft(db, draft, created_by=processed_by)


async def service_allowance_processed(
    db: AsyncSession,
    allowance: Any,
    processed_by: int,
    principal_portion: Any = 0,
    interest_portion: Any = 0,
) -> Journal | None:
    draft = build_service_allowance_processed(
        allowance, principal_portion=principal_portion, interest_portion=interest_portion
    )
    if draft is None:
        logger.info("Service allowance %s paid no installment; no journal posted", allowance.id)
        return None
    return await post_draft(db, draft, created_by=processed_by)


async def loan_early_settlement(db: AsyncSession, loan: Any, settled_by: int) -> Journal:
    return await post_draft(db, build_loan_early_settlement(loan), created_by=settled_by)


EVENT_HANDLERS: dict[AutoJournalEvent, Callable[..., Awaitable[Journal | None]]] = {
    AutoJournalEvent.SAVING_APPROVED: saving_approved,
    AutoJournalEvent.LOAN_DISBURSED: loan_disbursed,
    AutoJournalEvent.INSTALLMENT_PAID: installment_paid,
    AutoJournalEvent.CASH_TRANSFER_APPROVED: cash_transfer_approved,
    AutoJournalEvent.SALARY_DEDUCTION_PROCESSED: salary_deduction_processed,
    AutoJournalEvent.SERVICE_ALLOWANCE_PROCESSED: service_allowance_processed,
    AutoJournalEvent.LOAN_EARLY_SETTLEMENT: loan_early_settlement,
}


async def post_journal(
    db: AsyncSession,
    event_type: AutoJournalEvent | str,
    payload: Any,
    acting_user_id: int,
    **options: Any,
) -> Journal | None:
    """Post the journal for one business event.

    *options* are passed through to the handler (``payment_method`` for
    installments, ``principal_portion`` / ``interest_portion`` for payroll
    deductions and service allowances).
    """
    try:
        event = AutoJournalEvent(event_type)
    except ValueError as exc:
        raise ConfigurationError(f"Unknown auto-journal event '{event_type}'") from exc
    handler = EVENT_HANDLERS[event]
    return await handler(db, payload, acting_user_id, **options)
