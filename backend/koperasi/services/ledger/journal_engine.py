"""Double-entry journal engine.

Every journal persisted through this module satisfies
**total debit == total credit**, checked at three layers:

1. Database CHECK constraints on each line (non-negative, one side only)
2. Line validation before anything is written
3. A recount of the built details before the header totals are stored

Manual journals stay editable until locked. Auto-generated journals are
created with ``is_editable=False`` and journals of type ``special`` can never
be deleted here. Locking is one-way.
"""

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from sqlalchemy import select, func as sa_func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from koperasi.models.ledger import (
    ChartOfAccount,
    Journal,
    JournalDetail,
    JournalType,
    ReferenceType,
    SourceModule,
)
from koperasi.services.ledger.exceptions import (
    BalanceInvariantError,
    ConfigurationError,
    NotFoundError,
    StateError,
)
from koperasi.services.ledger.numbering import next_journal_number
from koperasi.services.ledger.period_service import get_or_create_period_for_date, get_period

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")

SORTABLE_FIELDS = {
    "transaction_date": Journal.transaction_date,
    "journal_number": Journal.journal_number,
    "created_at": Journal.created_at,
    "total_debit": Journal.total_debit,
}


# ---------------------------------------------------------------------------
# Amount helpers
# ---------------------------------------------------------------------------

def to_amount(value: Any) -> Decimal:
    """Coerce *value* to a 2dp Decimal. ``None`` counts as zero."""
    if value is None or value == "":
        return ZERO
    try:
        return Decimal(str(value)).quantize(CENT)
    except (InvalidOperation, ValueError) as exc:
        raise BalanceInvariantError(f"Invalid amount: {value!r}") from exc


def calculate_totals(details: Iterable[Any]) -> tuple[Decimal, Decimal]:
    """Sum debit and credit over journal details (ORM rows or dicts)."""
    total_debit = ZERO
    total_credit = ZERO
    for detail in details:
        if isinstance(detail, dict):
            total_debit += to_amount(detail.get("debit"))
            total_credit += to_amount(detail.get("credit"))
        else:
            total_debit += to_amount(detail.debit)
            total_credit += to_amount(detail.credit)
    return total_debit, total_credit


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _validate_lines(lines: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Check line shape and balance. Returns normalized copies of the lines.

    Each line needs ``chart_of_account_id`` and exactly one positive side
    among ``debit`` / ``credit``.
    """
    if not lines or len(lines) < 2:
        raise BalanceInvariantError("A journal requires at least two lines")

    normalized = []
    for idx, line in enumerate(lines, start=1):
        if line.get("chart_of_account_id") is None:
            raise BalanceInvariantError(f"Line {idx}: chart_of_account_id is required")
        debit = to_amount(line.get("debit"))
        credit = to_amount(line.get("credit"))
        if debit < 0 or credit < 0:
            raise BalanceInvariantError(f"Line {idx}: amounts cannot be negative")
        if debit > 0 and credit > 0:
            raise BalanceInvariantError(f"Line {idx}: cannot have both debit and credit")
        if debit == 0 and credit == 0:
            raise BalanceInvariantError(f"Line {idx}: must have either debit or credit")
        normalized.append({
            "chart_of_account_id": int(line["chart_of_account_id"]),
            "debit": debit,
            "credit": credit,
            "description": line.get("description"),
        })

    total_debit, total_credit = calculate_totals(normalized)
    if total_debit != total_credit:
        raise BalanceInvariantError(
            f"Unbalanced journal attempted: debit={total_debit}, credit={total_credit}"
        )
    return normalized


async def _validate_accounts(db: AsyncSession, account_ids: list[int]) -> None:
    """All accounts must exist and be active."""
    result = await db.execute(
        select(ChartOfAccount).where(ChartOfAccount.id.in_(set(account_ids)))
    )
    accounts = {a.id: a for a in result.scalars().all()}
    for aid in account_ids:
        acct = accounts.get(aid)
        if acct is None:
            raise NotFoundError(f"Chart of account {aid} not found")
        if not acct.is_active:
            raise ConfigurationError(f"Chart of account {acct.code} ({acct.name}) is inactive")


async def _resolve_period_id(
    db: AsyncSession, transaction_date: date, accounting_period_id: int | None
) -> int:
    """Pick the period for a posting and refuse closed periods.

    Without an explicit period the one covering the date is used, opened as
    a monthly period if none exists yet.
    """
    if accounting_period_id is not None:
        period = await get_period(db, accounting_period_id)
        if not period.contains(transaction_date):
            raise StateError(
                f"Transaction date {transaction_date} is outside period {period.period_name}"
            )
    else:
        period = await get_or_create_period_for_date(db, transaction_date)
    if period.is_closed:
        raise StateError(f"Accounting period {period.period_name} is closed")
    return period.id


def _build_details(journal: Journal, lines: list[dict[str, Any]]) -> None:
    for ln in lines:
        journal.details.append(
            JournalDetail(
                chart_of_account_id=ln["chart_of_account_id"],
                debit=ln["debit"],
                credit=ln["credit"],
                description=ln.get("description") or journal.description,
            )
        )
    total_debit, total_credit = calculate_totals(journal.details)
    if total_debit != total_credit:
        raise BalanceInvariantError(
            f"Unbalanced journal attempted: debit={total_debit}, credit={total_credit}"
        )
    journal.total_debit = total_debit
    journal.total_credit = total_credit


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def create_journal(
    db: AsyncSession,
    *,
    lines: list[dict[str, Any]],
    description: str,
    transaction_date: date,
    journal_type: JournalType = JournalType.GENERAL,
    created_by: int | None = None,
    accounting_period_id: int | None = None,
    cash_account_id: int | None = None,
    source_module: SourceModule = SourceModule.MANUAL,
    reference_type: ReferenceType | None = None,
    reference_id: int | None = None,
    is_auto_generated: bool = False,
    is_editable: bool = True,
) -> Journal:
    """Validate, number and persist a journal with its details.

    Parameters
    ----------
    lines : list of dicts
        Each dict has ``chart_of_account_id``, ``debit``, ``credit`` and
        optionally ``description`` (defaults to the journal description).

    Nothing is written when validation fails. Numbering advances the
    sequence inside the caller's transaction, so a later failure rolls the
    counter back with everything else.
    """
    journal_type = JournalType(journal_type)
    source_module = SourceModule(source_module)
    normalized = _validate_lines(lines)
    await _validate_accounts(db, [ln["chart_of_account_id"] for ln in normalized])

    period_id = await _resolve_period_id(db, transaction_date, accounting_period_id)
    journal_number = await next_journal_number(db, journal_type, transaction_date)

    journal = Journal(
        journal_number=journal_number,
        journal_type=journal_type,
        description=description,
        transaction_date=transaction_date,
        accounting_period_id=period_id,
        cash_account_id=cash_account_id,
        created_by=created_by,
        is_locked=False,
        is_auto_generated=is_auto_generated,
        is_editable=is_editable,
        source_module=source_module,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    _build_details(journal, normalized)

    db.add(journal)
    await db.flush()

    logger.info(
        "Created journal %s (%s, %s) debit=%s credit=%s",
        journal.journal_number, journal_type.value, source_module.value,
        journal.total_debit, journal.total_credit,
    )
    return journal


async def get_journal(
    db: AsyncSession, journal_id: int, *, for_update: bool = False
) -> Journal:
    """Load a journal with details and their accounts."""
    q = (
        select(Journal)
        .where(Journal.id == journal_id)
        .options(selectinload(Journal.details).selectinload(JournalDetail.account))
    )
    if for_update:
        q = q.with_for_update()
    result = await db.execute(q)
    journal = result.scalar_one_or_none()
    if journal is None:
        raise NotFoundError(f"Journal {journal_id} not found")
    return journal


async def list_journals(
    db: AsyncSession,
    *,
    journal_type: JournalType | None = None,
    accounting_period_id: int | None = None,
    is_locked: bool | None = None,
    source_module: SourceModule | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    search: str | None = None,
    sort_by: str = "transaction_date",
    sort_order: str = "desc",
    limit: int = 15,
    offset: int = 0,
) -> tuple[list[Journal], int]:
    """Filtered, paginated journals. Returns (items, total_count)."""
    filters = []
    if journal_type is not None:
        filters.append(Journal.journal_type == journal_type)
    if accounting_period_id is not None:
        filters.append(Journal.accounting_period_id == accounting_period_id)
    if is_locked is not None:
        filters.append(Journal.is_locked.is_(is_locked))
    if source_module is not None:
        filters.append(Journal.source_module == source_module)
    if start_date is not None:
        filters.append(Journal.transaction_date >= start_date)
    if end_date is not None:
        filters.append(Journal.transaction_date <= end_date)
    if search:
        pattern = f"%{search}%"
        filters.append(
            or_(Journal.journal_number.ilike(pattern), Journal.description.ilike(pattern))
        )

    count_result = await db.execute(
        select(sa_func.count(Journal.id)).where(*filters)
    )
    total = count_result.scalar() or 0

    sort_col = SORTABLE_FIELDS.get(sort_by, Journal.transaction_date)
    order = sort_col.asc() if sort_order == "asc" else sort_col.desc()
    result = await db.execute(
        select(Journal)
        .where(*filters)
        .options(selectinload(Journal.details).selectinload(JournalDetail.account))
        .order_by(order, Journal.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


async def update_journal(
    db: AsyncSession,
    journal_id: int,
    *,
    lines: list[dict[str, Any]],
    description: str | None = None,
    transaction_date: date | None = None,
    journal_type: JournalType | None = None,
    accounting_period_id: int | None = None,
) -> Journal:
    """Replace a journal's header fields and all of its lines."""
    journal = await get_journal(db, journal_id, for_update=True)
    if journal.is_locked:
        raise StateError(
            f"Journal {journal.journal_number} is locked and cannot be edited",
            journal_number=journal.journal_number,
        )
    if not journal.is_editable:
        raise StateError(
            f"Journal {journal.journal_number} was generated automatically and cannot be edited",
            journal_number=journal.journal_number,
        )
    if journal_type == JournalType.SPECIAL and journal.journal_type != JournalType.SPECIAL:
        raise StateError(
            "Manual journals cannot be changed to special journals",
            journal_number=journal.journal_number,
        )

    normalized = _validate_lines(lines)
    await _validate_accounts(db, [ln["chart_of_account_id"] for ln in normalized])

    new_date = transaction_date or journal.transaction_date
    target_period_id = accounting_period_id
    if target_period_id is None and transaction_date is None:
        target_period_id = journal.accounting_period_id
    journal.accounting_period_id = await _resolve_period_id(db, new_date, target_period_id)
    journal.transaction_date = new_date
    if description is not None:
        journal.description = description
    if journal_type is not None:
        journal.journal_type = journal_type

    # delete-orphan cascade removes the old rows on flush
    journal.details.clear()
    _build_details(journal, normalized)

    await db.flush()
    logger.info("Updated journal %s with %d lines", journal.journal_number, len(normalized))
    return journal


async def delete_journal(db: AsyncSession, journal_id: int) -> None:
    journal = await get_journal(db, journal_id, for_update=True)
    if journal.is_locked:
        raise StateError(
            f"Journal {journal.journal_number} is locked and cannot be deleted",
            journal_number=journal.journal_number,
        )
    if journal.journal_type == JournalType.SPECIAL:
        raise StateError(
            f"Journal {journal.journal_number} is a special journal and cannot be deleted",
            journal_number=journal.journal_number,
        )
    number = journal.journal_number
    await db.delete(journal)
    await db.flush()
    logger.info("Deleted journal %s", number)


async def lock_journal(db: AsyncSession, journal_id: int) -> Journal:
    journal = await get_journal(db, journal_id, for_update=True)
    if journal.is_locked:
        raise StateError(
            f"Journal {journal.journal_number} is already locked",
            journal_number=journal.journal_number,
        )
    journal.is_locked = True
    await db.flush()
    logger.info("Locked journal %s", journal.journal_number)
    return journal
