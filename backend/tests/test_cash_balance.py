"""Tests for cash account running balances."""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from koperasi.models.cash_account import CashAccount, CashAccountType
from koperasi.services.ledger import cash_balance
from koperasi.services.ledger.cash_balance import BalanceDirection, apply_balance_change
from koperasi.services.ledger.exceptions import ConfigurationError, NotFoundError


def _account(balance="1000000"):
    return CashAccount(
        id=1,
        code="KAS-I",
        name="Kas Umum",
        type=CashAccountType.I,
        opening_balance=Decimal("1000000"),
        current_balance=Decimal(balance),
        is_active=True,
    )


class TestApplyBalanceChange:

    def test_add(self):
        account = _account()
        assert apply_balance_change(account, Decimal("250000"), BalanceDirection.ADD) == Decimal("1250000")
        assert account.current_balance == Decimal("1250000")

    def test_subtract(self):
        account = _account()
        apply_balance_change(account, Decimal("400000"), "subtract")
        assert account.current_balance == Decimal("600000")

    def test_subtract_may_go_negative(self):
        account = _account("100")
        apply_balance_change(account, Decimal("150"), BalanceDirection.SUBTRACT)
        assert account.current_balance == Decimal("-50")

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError, match="negative"):
            apply_balance_change(_account(), Decimal("-1"), BalanceDirection.ADD)

    def test_unknown_direction(self):
        with pytest.raises(ValueError):
            apply_balance_change(_account(), Decimal("1"), "sideways")


class TestUpdateBalance:

    @pytest.mark.asyncio
    async def test_locks_and_updates(self, db):
        account = _account()
        loader = AsyncMock(return_value=account)
        with patch.object(cash_balance, "get_cash_account", new=loader):
            result = await cash_balance.update_balance(
                db, 1, Decimal("500000"), BalanceDirection.ADD
            )
        assert result.current_balance == Decimal("1500000")
        loader.assert_awaited_once_with(db, 1, for_update=True)
        db.flush.assert_awaited()


class TestLookups:

    @pytest.mark.asyncio
    async def test_missing_account(self, db, make_result):
        db.execute.return_value = make_result(one=None)
        with pytest.raises(NotFoundError, match="Cash account 9"):
            await cash_balance.get_cash_account(db, 9)

    @pytest.mark.asyncio
    async def test_no_account_of_type(self, db, make_result):
        db.execute.return_value = make_result(one=None)
        with pytest.raises(ConfigurationError, match="type 'III'"):
            await cash_balance.get_cash_account_by_type(db, "III")

    @pytest.mark.asyncio
    async def test_by_type(self, db, make_result):
        account = _account()
        db.execute.return_value = make_result(one=account)
        assert await cash_balance.get_cash_account_by_type(db, CashAccountType.I) is account
