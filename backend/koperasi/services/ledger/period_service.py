"""Accounting period management.

Periods are open or closed. Closing a period locks every journal assigned to
it, plus any unassigned journal dated inside it; reopening clears the closed
flag but leaves those journals locked. A posting dated outside every period
gets a monthly period created for it, so every journal belongs to one.
"""

import calendar
import logging
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import and_, or_, select, update, func as sa_func
from sqlalchemy.ext.asyncio import AsyncSession

from koperasi.models.ledger import AccountingPeriod, Journal
from koperasi.services.ledger.exceptions import NotFoundError, StateError

logger = logging.getLogger(__name__)


def period_type(period: AccountingPeriod) -> str:
    """Classify a period by its length."""
    days = period.duration_days
    if days <= 31:
        return "Monthly"
    if days <= 92:
        return "Quarterly"
    if days <= 366:
        return "Yearly"
    return "Custom"


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def list_periods(
    db: AsyncSession,
    *,
    is_closed: bool | None = None,
    year: int | None = None,
) -> list[AccountingPeriod]:
    q = select(AccountingPeriod).order_by(AccountingPeriod.start_date)
    if is_closed is not None:
        q = q.where(AccountingPeriod.is_closed.is_(is_closed))
    if year:
        q = q.where(
            AccountingPeriod.start_date <= date(year, 12, 31),
            AccountingPeriod.end_date >= date(year, 1, 1),
        )
    result = await db.execute(q)
    return list(result.scalars().all())


async def get_period(db: AsyncSession, period_id: int) -> AccountingPeriod:
    result = await db.execute(
        select(AccountingPeriod).where(AccountingPeriod.id == period_id)
    )
    period = result.scalar_one_or_none()
    if period is None:
        raise NotFoundError(f"Accounting period {period_id} not found")
    return period


async def find_period_for_date(
    db: AsyncSession, on: date
) -> AccountingPeriod | None:
    """The period containing *on*, if any (earliest start wins)."""
    result = await db.execute(
        select(AccountingPeriod)
        .where(
            AccountingPeriod.start_date <= on,
            AccountingPeriod.end_date >= on,
        )
        .order_by(AccountingPeriod.start_date)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_active_period(
    db: AsyncSession, today: date | None = None
) -> AccountingPeriod | None:
    """Open period containing today."""
    today = today or date.today()
    result = await db.execute(
        select(AccountingPeriod)
        .where(
            AccountingPeriod.start_date <= today,
            AccountingPeriod.end_date >= today,
            AccountingPeriod.is_closed.is_(False),
        )
        .order_by(AccountingPeriod.start_date)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def count_journals(db: AsyncSession, period_id: int) -> int:
    result = await db.execute(
        select(sa_func.count(Journal.id)).where(Journal.accounting_period_id == period_id)
    )
    return result.scalar() or 0


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

async def create_period(
    db: AsyncSession,
    *,
    period_name: str,
    start_date: date,
    end_date: date,
) -> AccountingPeriod:
    if end_date < start_date:
        raise StateError("Period end date must not be before its start date")

    overlap = await db.execute(
        select(AccountingPeriod).where(
            AccountingPeriod.start_date <= end_date,
            AccountingPeriod.end_date >= start_date,
        ).limit(1)
    )
    existing = overlap.scalar_one_or_none()
    if existing is not None:
        raise StateError(f"Period overlaps existing period {existing.period_name}")

    period = AccountingPeriod(
        period_name=period_name,
        start_date=start_date,
        end_date=end_date,
        is_closed=False,
    )
    db.add(period)
    await db.flush()
    logger.info("Created accounting period %s (%s to %s)", period_name, start_date, end_date)
    return period


async def create_fiscal_year(db: AsyncSession, year: int) -> list[AccountingPeriod]:
    """Create twelve monthly periods for *year*."""
    existing = await list_periods(db, year=year)
    if existing:
        raise StateError(f"Year {year} already has {len(existing)} periods")

    periods = []
    for month in range(1, 13):
        _, last_day = calendar.monthrange(year, month)
        period = AccountingPeriod(
            period_name=f"{calendar.month_name[month]} {year}",
            start_date=date(year, month, 1),
            end_date=date(year, month, last_day),
            is_closed=False,
        )
        db.add(period)
        periods.append(period)

    await db.flush()
    logger.info("Created fiscal year %d with 12 periods", year)
    return periods


async def get_or_create_period_for_date(db: AsyncSession, on: date) -> AccountingPeriod:
    """The period containing *on*, creating its calendar month when none does.

    A new period is trimmed so it never overlaps a neighbouring period that
    covers part of the same month.
    """
    period = await find_period_for_date(db, on)
    if period is not None:
        return period

    _, last_day = calendar.monthrange(on.year, on.month)
    start, end = on.replace(day=1), on.replace(day=last_day)

    before = await db.execute(
        select(sa_func.max(AccountingPeriod.end_date)).where(
            AccountingPeriod.end_date < on,
            AccountingPeriod.end_date >= start,
        )
    )
    prev_end = before.scalar()
    if prev_end is not None:
        start = prev_end + timedelta(days=1)

    after = await db.execute(
        select(sa_func.min(AccountingPeriod.start_date)).where(
            AccountingPeriod.start_date > on,
            AccountingPeriod.start_date <= end,
        )
    )
    next_start = after.scalar()
    if next_start is not None:
        end = next_start - timedelta(days=1)

    if start.day == 1 and end.day == last_day:
        name = f"{calendar.month_name[on.month]} {on.year}"
    else:
        name = f"{start:%d %b %Y} - {end:%d %b %Y}"

    period = AccountingPeriod(
        period_name=name,
        start_date=start,
        end_date=end,
        is_closed=False,
    )
    db.add(period)
    await db.flush()
    logger.info("Opened accounting period %s for posting dated %s", name, on)
    return period


async def close_period(
    db: AsyncSession, period_id: int, user_id: int
) -> tuple[AccountingPeriod, int]:
    """Close a period and lock its journals. Returns (period, locked_count).

    Journals dated inside the period without a period assigned are claimed
    by it and locked as well.
    """
    period = await get_period(db, period_id)
    if period.is_closed:
        raise StateError(f"Accounting period {period.period_name} is already closed")

    period.is_closed = True
    period.closed_by = user_id
    period.closed_at = datetime.now(timezone.utc)

    result = await db.execute(
        update(Journal)
        .where(
            or_(
                Journal.accounting_period_id == period_id,
                and_(
                    Journal.accounting_period_id.is_(None),
                    Journal.transaction_date >= period.start_date,
                    Journal.transaction_date <= period.end_date,
                ),
            ),
            Journal.is_locked.is_(False),
        )
        .values(is_locked=True, accounting_period_id=period_id)
    )
    locked = result.rowcount or 0
    await db.flush()
    logger.info(
        "Closed period %s by user %d, locked %d journals", period.period_name, user_id, locked
    )
    return period, locked


async def reopen_period(db: AsyncSession, period_id: int, user_id: int) -> AccountingPeriod:
    period = await get_period(db, period_id)
    if not period.is_closed:
        raise StateError(f"Accounting period {period.period_name} is not closed")
    period.is_closed = False
    period.closed_by = None
    period.closed_at = None
    await db.flush()
    logger.info("Reopened period %s by user %d", period.period_name, user_id)
    return period
