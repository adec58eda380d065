"""Running balances of cash accounts.

Balance changes always happen inside the caller's transaction, next to the
journal that records the same movement. The row is read ``FOR UPDATE`` so
concurrent postings against one account are serialized.
"""

import enum
import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from koperasi.models.cash_account import CashAccount, CashAccountType
from koperasi.services.ledger.exceptions import ConfigurationError, NotFoundError

logger = logging.getLogger(__name__)


class BalanceDirection(str, enum.Enum):
    ADD = "add"
    SUBTRACT = "subtract"


def apply_balance_change(
    account: CashAccount, amount: Decimal, direction: BalanceDirection
) -> Decimal:
    """Mutate ``account.current_balance`` and return the new value."""
    amount = Decimal(str(amount))
    if amount < 0:
        raise ValueError("Balance change amount must not be negative")
    current = Decimal(str(account.current_balance or 0))
    direction = BalanceDirection(direction)
    if direction == BalanceDirection.ADD:
        account.current_balance = current + amount
    else:
        account.current_balance = current - amount
    return account.current_balance


async def get_cash_account(
    db: AsyncSession, cash_account_id: int, *, for_update: bool = False
) -> CashAccount:
    q = select(CashAccount).where(CashAccount.id == cash_account_id)
    if for_update:
        q = q.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(q)
    account = result.scalar_one_or_none()
    if account is None:
        raise NotFoundError(f"Cash account {cash_account_id} not found")
    return account


async def get_cash_account_by_type(
    db: AsyncSession, account_type: CashAccountType | str, *, for_update: bool = False
) -> CashAccount:
    """First active cash account of the given type tag."""
    q = (
        select(CashAccount)
        .where(
            CashAccount.type == CashAccountType(account_type),
            CashAccount.is_active.is_(True),
        )
        .order_by(CashAccount.id)
        .limit(1)
    )
    if for_update:
        q = q.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(q)
    account = result.scalar_one_or_none()
    if account is None:
        raise ConfigurationError(f"No active cash account of type '{account_type}'")
    return account


async def list_cash_accounts(
    db: AsyncSession, *, is_active: bool | None = None
) -> list[CashAccount]:
    q = select(CashAccount).order_by(CashAccount.code)
    if is_active is not None:
        q = q.where(CashAccount.is_active.is_(is_active))
    result = await db.execute(q)
    return list(result.scalars().all())


async def update_balance(
    db: AsyncSession,
    cash_account_id: int,
    amount: Decimal,
    direction: BalanceDirection,
) -> CashAccount:
    """Lock the cash account row and move its balance by *amount*."""
    account = await get_cash_account(db, cash_account_id, for_update=True)
    before = account.current_balance
    apply_balance_change(account, amount, direction)
    await db.flush()
    logger.info(
        "Cash account %s %s %s: %s -> %s",
        account.code, BalanceDirection(direction).value, amount, before, account.current_balance,
    )
    return account
