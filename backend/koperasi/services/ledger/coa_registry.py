"""Chart of accounts lookups and the fixed posting maps.

The maps below mirror the cooperative's bookkeeping policy. Changing a code
here requires a matching data migration of ``chart_of_accounts``.
"""

import logging
from enum import Enum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from koperasi.models.ledger import AccountCategory, ChartOfAccount
from koperasi.services.ledger.exceptions import (
    AccountNotFoundError,
    ConfigurationError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Posting maps
# ---------------------------------------------------------------------------

# Cash account type -> cash/bank COA code
CASH_ACCOUNT_COA_MAP: dict[str, str] = {
    "I": "1-101",    # Kas Umum
    "II": "1-102",   # Kas Sosial
    "III": "1-103",  # Kas Pengadaan
    "IV": "1-104",   # Kas Hadiah
    "V": "1-105",    # Bank
}

# Savings type -> member savings liability COA code
SAVING_TYPE_COA_MAP: dict[str, str] = {
    "principal": "2-201",  # Simpanan Pokok Anggota
    "mandatory": "2-202",  # Simpanan Wajib Anggota
    "voluntary": "2-203",  # Simpanan Sukarela Anggota
    "holiday": "2-204",    # Simpanan Hari Raya
}

COA_LOAN_RECEIVABLE = "1-201"   # Piutang Anggota
COA_INTEREST_INCOME = "4-101"   # Pendapatan Bunga Pinjaman
COA_OTHER_INCOME = "4-201"      # Pendapatan Lain-lain


def _tag(value: str | Enum) -> str:
    return value.value if isinstance(value, Enum) else str(value)


def resolve_cash_account_coa(cash_account_type: str | Enum) -> str:
    """COA code for a cash account type tag (I..V)."""
    tag = _tag(cash_account_type)
    code = CASH_ACCOUNT_COA_MAP.get(tag)
    if code is None:
        raise ConfigurationError(f"Cash account type '{tag}' has no COA mapping")
    return code


def resolve_saving_type_coa(savings_type: str | Enum) -> str:
    """COA code for a savings type tag."""
    tag = _tag(savings_type)
    code = SAVING_TYPE_COA_MAP.get(tag)
    if code is None:
        raise ConfigurationError(f"Savings type '{tag}' has no COA mapping")
    return code


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

async def lookup(db: AsyncSession, code: str) -> ChartOfAccount:
    """Return the active account with *code* or raise AccountNotFoundError."""
    result = await db.execute(
        select(ChartOfAccount).where(
            ChartOfAccount.code == code,
            ChartOfAccount.is_active.is_(True),
        )
    )
    account = result.scalar_one_or_none()
    if account is None:
        raise AccountNotFoundError(
            f"Chart of account '{code}' not found or inactive; seed the chart of accounts first"
        )
    return account


async def lookup_many(db: AsyncSession, codes: list[str]) -> dict[str, ChartOfAccount]:
    """Resolve several codes in one query. Every code must be active."""
    wanted = set(codes)
    result = await db.execute(
        select(ChartOfAccount).where(
            ChartOfAccount.code.in_(wanted),
            ChartOfAccount.is_active.is_(True),
        )
    )
    found = {acct.code: acct for acct in result.scalars().all()}
    missing = sorted(wanted - found.keys())
    if missing:
        raise AccountNotFoundError(
            f"Chart of account(s) {', '.join(missing)} not found or inactive"
        )
    return found


async def list_accounts(
    db: AsyncSession,
    *,
    category: AccountCategory | None = None,
    is_active: bool | None = None,
    search: str | None = None,
) -> list[ChartOfAccount]:
    q = select(ChartOfAccount)
    if category is not None:
        q = q.where(ChartOfAccount.category == category)
    if is_active is not None:
        q = q.where(ChartOfAccount.is_active.is_(is_active))
    if search:
        pattern = f"%{search}%"
        q = q.where(ChartOfAccount.code.ilike(pattern) | ChartOfAccount.name.ilike(pattern))
    result = await db.execute(q.order_by(ChartOfAccount.code))
    return list(result.scalars().all())


async def get_account(db: AsyncSession, account_id: int) -> ChartOfAccount:
    result = await db.execute(
        select(ChartOfAccount).where(ChartOfAccount.id == account_id)
    )
    account = result.scalar_one_or_none()
    if account is None:
        raise NotFoundError(f"Chart of account {account_id} not found")
    return account
