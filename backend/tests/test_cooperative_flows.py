"""Tests for the cooperative flows that move cash and post journals.

Covers:
- Loan schedule arithmetic (annuity, zero rate, month-end clamping)
- Status guards on every flow
- Cash balance direction and amount per flow
- All-or-nothing behaviour when posting fails
"""

from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, call, patch

import pytest

from koperasi.models.cooperative import (
    AllowanceStatus,
    DeductionStatus,
    InstallmentStatus,
    LoanStatus,
    PaymentMethod,
    SavingStatus,
    TransferStatus,
)
from koperasi.services import cooperative
from koperasi.services.cooperative import (
    add_months,
    build_installment_schedule,
    calculate_installment,
)
from koperasi.services.ledger.cash_balance import BalanceDirection
from koperasi.services.ledger.exceptions import (
    AccountNotFoundError,
    ConfigurationError,
    InsufficientBalanceError,
    StateError,
)

COOP = "koperasi.services.cooperative"
AUTO = "koperasi.services.ledger.auto_journal"
CASH = "koperasi.services.ledger.cash_balance"

JOURNAL = SimpleNamespace(id=900, journal_number="JK-202602-0001")


def _load(record):
    return patch(f"{COOP}._load_for_update", new=AsyncMock(return_value=record))


def _update_balance():
    return patch(f"{CASH}.update_balance", new=AsyncMock())


# ===================================================================
# Schedule arithmetic
# ===================================================================


class TestAddMonths:

    def test_plain(self):
        assert add_months(date(2026, 1, 15), 1) == date(2026, 2, 15)

    def test_clamps_to_month_end(self):
        assert add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
        assert add_months(date(2028, 1, 31), 1) == date(2028, 2, 29)

    def test_crosses_year(self):
        assert add_months(date(2026, 11, 30), 3) == date(2027, 2, 28)


class TestInstallmentMath:

    def test_annuity(self):
        assert calculate_installment(Decimal("6000000"), Decimal("12"), 12) == Decimal("533093")

    def test_zero_rate_splits_evenly(self):
        assert calculate_installment(Decimal("6000000"), Decimal("0"), 12) == Decimal("500000.00")

    def test_invalid_tenure(self):
        with pytest.raises(ValueError, match="at least one month"):
            calculate_installment(Decimal("1000"), Decimal("12"), 0)

    def test_schedule_repays_principal_exactly(self):
        amount = calculate_installment(Decimal("6000000"), Decimal("12"), 12)
        rows = build_installment_schedule(
            Decimal("6000000"), Decimal("12"), 12, amount, date(2026, 1, 31)
        )
        assert len(rows) == 12
        assert sum(r["principal_amount"] for r in rows) == Decimal("6000000")
        assert rows[-1]["remaining_principal"] == Decimal("0")
        assert [r["installment_number"] for r in rows] == list(range(1, 13))
        assert rows[0]["interest_amount"] == Decimal("60000.00")
        assert rows[0]["total_amount"] == Decimal("533093")
        assert rows[0]["due_date"] == date(2026, 2, 28)
        assert rows[11]["due_date"] == date(2027, 1, 31)

    def test_interest_declines(self):
        amount = calculate_installment(Decimal("6000000"), Decimal("12"), 12)
        rows = build_installment_schedule(
            Decimal("6000000"), Decimal("12"), 12, amount, date(2026, 1, 1)
        )
        interest = [r["interest_amount"] for r in rows]
        assert interest == sorted(interest, reverse=True)

    def test_zero_rate_schedule(self):
        rows = build_installment_schedule(
            Decimal("1000000"), Decimal("0"), 3, Decimal("333333.33"), date(2026, 1, 1)
        )
        assert [r["interest_amount"] for r in rows] == [Decimal("0.00")] * 3
        assert rows[-1]["principal_amount"] == Decimal("333333.34")
        assert sum(r["principal_amount"] for r in rows) == Decimal("1000000")


# ===================================================================
# Savings
# ===================================================================


class TestApproveSaving:

    @staticmethod
    def _saving(status=SavingStatus.PENDING):
        return SimpleNamespace(
            id=44, status=status, amount=Decimal("500000"), cash_account_id=1, approved_by=None,
        )

    @pytest.mark.asyncio
    async def test_approves_and_posts(self, db):
        saving = self._saving()
        with _load(saving), _update_balance() as update, \
             patch(f"{AUTO}.saving_approved", new=AsyncMock(return_value=JOURNAL)) as post:
            result, journal = await cooperative.approve_saving(db, 44, approved_by=2)

        assert result.status == SavingStatus.APPROVED
        assert result.approved_by == 2
        assert journal is JOURNAL
        update.assert_awaited_once_with(db, 1, Decimal("500000"), BalanceDirection.ADD)
        post.assert_awaited_once_with(db, saving, 2)
        db.begin_nested.assert_called_once()

    @pytest.mark.asyncio
    async def test_not_pending(self, db):
        with _load(self._saving(SavingStatus.APPROVED)), _update_balance() as update:
            with pytest.raises(StateError, match="expected pending"):
                await cooperative.approve_saving(db, 44, approved_by=2)
        update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_posting_rolls_back(self, db):
        missing = AccountNotFoundError("Chart of account(s) 2-203 not found or inactive")
        with _load(self._saving()), _update_balance(), \
             patch(f"{AUTO}.saving_approved", new=AsyncMock(side_effect=missing)):
            with pytest.raises(AccountNotFoundError):
                await cooperative.approve_saving(db, 44, approved_by=2)

        exc_type, exc, _ = db.nested.__aexit__.await_args.args
        assert exc_type is AccountNotFoundError
        assert exc is missing


# ===================================================================
# Loans and installments
# ===================================================================


def _loan(**overrides):
    fields = dict(
        id=31,
        loan_number="PJ-2026-0031",
        status=LoanStatus.APPROVED,
        principal_amount=Decimal("6000000"),
        interest_percentage=Decimal("12"),
        tenure_months=12,
        installment_amount=None,
        remaining_principal=Decimal("0"),
        cash_account_id=5,
        approval_date=None,
        disbursement_date=None,
        approved_by=None,
        installments=[],
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestDisburseLoan:

    @pytest.mark.asyncio
    async def test_disburses_and_builds_schedule(self, db):
        loan = _loan()
        with _load(loan), _update_balance() as update, \
             patch(f"{AUTO}.loan_disbursed", new=AsyncMock(return_value=JOURNAL)):
            result, journal = await cooperative.disburse_loan(
                db, 31, approved_by=2, disbursement_date=date(2026, 1, 20)
            )

        assert result.status == LoanStatus.ACTIVE
        assert result.installment_amount == Decimal("533093")
        assert result.remaining_principal == Decimal("6000000")
        assert result.disbursement_date == date(2026, 1, 20)
        assert result.approval_date == date(2026, 1, 20)
        assert len(result.installments) == 12
        assert all(i.status == InstallmentStatus.PENDING for i in result.installments)
        assert result.installments[0].due_date == date(2026, 2, 20)
        update.assert_awaited_once_with(db, 5, Decimal("6000000"), BalanceDirection.SUBTRACT)
        assert journal is JOURNAL

    @pytest.mark.asyncio
    async def test_rate_falls_back_to_configured(self, db):
        loan = _loan(interest_percentage=None)
        with _load(loan), _update_balance(), \
             patch(f"{COOP}._effective_loan_rate", new=AsyncMock(return_value=Decimal("0"))), \
             patch(f"{AUTO}.loan_disbursed", new=AsyncMock(return_value=JOURNAL)):
            result, _ = await cooperative.disburse_loan(
                db, 31, approved_by=2, disbursement_date=date(2026, 1, 20)
            )
        assert result.interest_percentage == Decimal("0")
        assert result.installment_amount == Decimal("500000.00")

    @pytest.mark.asyncio
    async def test_no_rate_configured(self, db, make_result):
        loan = _loan(interest_percentage=None)
        db.execute.return_value = make_result(one=None)
        with _load(loan), _update_balance() as update:
            with pytest.raises(ConfigurationError, match="No loan interest rate"):
                await cooperative.disburse_loan(db, 31, approved_by=2)
        update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_active_loan_refused(self, db):
        with _load(_loan(status=LoanStatus.ACTIVE)), _update_balance() as update:
            with pytest.raises(StateError, match="cannot disburse"):
                await cooperative.disburse_loan(db, 31, approved_by=2)
        update.assert_not_awaited()


class TestPayInstallment:

    @staticmethod
    def _setup(loan_status=LoanStatus.ACTIVE, other_status=InstallmentStatus.PAID):
        loan = _loan(
            status=loan_status,
            remaining_principal=Decimal("500000"),
            installments=[],
        )
        paid = SimpleNamespace(installment_number=1, status=other_status)
        current = SimpleNamespace(
            id=302,
            installment_number=2,
            status=InstallmentStatus.PENDING,
            principal_amount=Decimal("500000"),
            interest_amount=Decimal("5000"),
            total_amount=Decimal("505000"),
            paid_amount=Decimal("0"),
            loan=loan,
        )
        loan.installments.extend([paid, current])
        return loan, current

    @pytest.mark.asyncio
    async def test_last_installment_pays_off_loan(self, db):
        loan, installment = self._setup()
        post = AsyncMock(return_value=JOURNAL)
        with _load(installment), _update_balance() as update, \
             patch(f"{AUTO}.installment_paid", new=post):
            result, journal = await cooperative.pay_installment(
                db, 302, confirmed_by=2, payment_method="salary", payment_date=date(2026, 3, 1)
            )

        assert result.status == InstallmentStatus.PAID
        assert result.paid_amount == Decimal("505000")
        assert result.payment_method == PaymentMethod.SALARY
        assert result.payment_date == date(2026, 3, 1)
        assert loan.remaining_principal == Decimal("0")
        assert loan.status == LoanStatus.PAID_OFF
        update.assert_awaited_once_with(db, 5, Decimal("505000"), BalanceDirection.ADD)
        post.assert_awaited_once_with(db, installment, 2, "salary")

    @pytest.mark.asyncio
    async def test_loan_stays_active_with_open_installments(self, db):
        loan, installment = self._setup(other_status=InstallmentStatus.PENDING)
        with _load(installment), _update_balance(), \
             patch(f"{AUTO}.installment_paid", new=AsyncMock(return_value=JOURNAL)):
            await cooperative.pay_installment(db, 302, confirmed_by=2)
        assert loan.status == LoanStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_already_paid(self, db):
        _, installment = self._setup()
        installment.status = InstallmentStatus.PAID
        with _load(installment), _update_balance() as update:
            with pytest.raises(StateError, match="is paid"):
                await cooperative.pay_installment(db, 302, confirmed_by=2)
        update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_loan_not_active(self, db):
        _, installment = self._setup(loan_status=LoanStatus.PAID_OFF)
        with _load(installment), _update_balance() as update:
            with pytest.raises(StateError, match="expected active"):
                await cooperative.pay_installment(db, 302, confirmed_by=2)
        update.assert_not_awaited()


class TestSettleLoanEarly:

    @pytest.mark.asyncio
    async def test_waives_future_interest(self, db):
        installments = [
            SimpleNamespace(status=InstallmentStatus.PAID, interest_amount=Decimal("60000"), notes=None),
            SimpleNamespace(status=InstallmentStatus.PENDING, interest_amount=Decimal("40000"), notes=None),
            SimpleNamespace(status=InstallmentStatus.OVERDUE, interest_amount=Decimal("20000"), notes=None),
        ]
        loan = _loan(
            status=LoanStatus.ACTIVE,
            remaining_principal=Decimal("4000000"),
            installments=installments,
        )
        with _load(loan), _update_balance() as update, \
             patch(f"{AUTO}.loan_early_settlement", new=AsyncMock(return_value=JOURNAL)):
            result, journal, waived = await cooperative.settle_loan_early(
                db, 31, settled_by=2, notes="Bonus payout", settlement_date=date(2026, 6, 1)
            )

        assert waived == Decimal("60000")
        assert result.status == LoanStatus.PAID_OFF
        assert result.is_early_settlement is True
        assert result.settlement_amount == Decimal("4000000")
        assert result.remaining_principal == Decimal("0")
        assert result.settlement_notes == "Bonus payout"
        assert [i.status for i in installments] == [
            InstallmentStatus.PAID, InstallmentStatus.CANCELLED, InstallmentStatus.CANCELLED,
        ]
        assert installments[1].notes == "Cancelled by early settlement"
        update.assert_awaited_once_with(db, 5, Decimal("4000000"), BalanceDirection.ADD)

    @pytest.mark.asyncio
    async def test_only_active(self, db):
        with _load(_loan(status=LoanStatus.PAID_OFF)):
            with pytest.raises(StateError, match="Only active loans"):
                await cooperative.settle_loan_early(db, 31, settled_by=2)

    @pytest.mark.asyncio
    async def test_nothing_remaining(self, db):
        with _load(_loan(status=LoanStatus.ACTIVE, remaining_principal=Decimal("0"))):
            with pytest.raises(StateError, match="no remaining principal"):
                await cooperative.settle_loan_early(db, 31, settled_by=2)


# ===================================================================
# Cash transfers
# ===================================================================


class TestCashTransfer:

    @staticmethod
    def _transfer(amount="2500000", balance="3000000", to_id=5):
        return SimpleNamespace(
            id=12,
            transfer_number="TRF-2026-0012",
            status=TransferStatus.PENDING,
            amount=Decimal(amount),
            from_cash_account_id=1,
            to_cash_account_id=to_id,
            from_cash_account=SimpleNamespace(name="Kas Umum", current_balance=Decimal(balance)),
            to_cash_account=SimpleNamespace(name="Bank", current_balance=Decimal("0")),
            journal_id=None,
            approved_by=None,
            approved_at=None,
        )

    @pytest.mark.asyncio
    async def test_moves_cash_and_completes(self, db):
        transfer = self._transfer()
        locker = AsyncMock()
        with _load(transfer), _update_balance() as update, \
             patch(f"{CASH}.get_cash_account", new=locker), \
             patch(f"{AUTO}.cash_transfer_approved", new=AsyncMock(return_value=JOURNAL)):
            result, journal = await cooperative.approve_cash_transfer(db, 12, approved_by=2)

        assert result.status == TransferStatus.COMPLETED
        assert result.journal_id == 900
        assert result.approved_by == 2
        assert result.approved_at is not None
        assert locker.await_args_list == [
            call(db, 1, for_update=True), call(db, 5, for_update=True),
        ]
        assert update.await_args_list == [
            call(db, 1, Decimal("2500000"), BalanceDirection.SUBTRACT),
            call(db, 5, Decimal("2500000"), BalanceDirection.ADD),
        ]

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, db):
        transfer = self._transfer(amount="5000000", balance="3000000")
        with _load(transfer), _update_balance() as update, \
             patch(f"{CASH}.get_cash_account", new=AsyncMock()):
            with pytest.raises(InsufficientBalanceError, match="cannot cover"):
                await cooperative.approve_cash_transfer(db, 12, approved_by=2)
        update.assert_not_awaited()
        assert transfer.status == TransferStatus.PENDING

    @pytest.mark.asyncio
    async def test_same_account(self, db):
        with _load(self._transfer(to_id=1)):
            with pytest.raises(StateError, match="must differ"):
                await cooperative.approve_cash_transfer(db, 12, approved_by=2)

    @pytest.mark.asyncio
    async def test_not_pending(self, db):
        transfer = self._transfer()
        transfer.status = TransferStatus.COMPLETED
        with _load(transfer):
            with pytest.raises(StateError, match="expected pending"):
                await cooperative.approve_cash_transfer(db, 12, approved_by=2)


# ===================================================================
# Payroll deductions and service allowances
# ===================================================================


class TestSalaryDeduction:

    @staticmethod
    def _deduction(total="350000", status=DeductionStatus.PENDING):
        return SimpleNamespace(
            id=8,
            status=status,
            total_deductions=Decimal(total),
            deduction_date=None,
            processed_by=None,
            journal_id=None,
        )

    @pytest.mark.asyncio
    async def test_posts_into_kas_umum(self, db):
        deduction = self._deduction()
        kas = SimpleNamespace(id=1)
        post = AsyncMock(return_value=JOURNAL)
        with _load(deduction), _update_balance() as update, \
             patch(f"{CASH}.get_cash_account_by_type", new=AsyncMock(return_value=kas)) as by_type, \
             patch(f"{AUTO}.salary_deduction_processed", new=post):
            result, journal = await cooperative.process_salary_deduction(
                db, 8, processed_by=2, principal_portion=Decimal("250000"),
                interest_portion=Decimal("50000"), deduction_date=date(2026, 2, 25),
            )

        assert result.status == DeductionStatus.PROCESSED
        assert result.deduction_date == date(2026, 2, 25)
        assert result.journal_id == 900
        by_type.assert_awaited_once_with(db, "I")
        update.assert_awaited_once_with(db, 1, Decimal("350000"), BalanceDirection.ADD)
        post.assert_awaited_once_with(db, deduction, 2, Decimal("250000"), Decimal("50000"))
        assert journal is JOURNAL

    @pytest.mark.asyncio
    async def test_nothing_deducted(self, db):
        with _load(self._deduction(total="0")), _update_balance() as update:
            result, journal = await cooperative.process_salary_deduction(db, 8, processed_by=2)
        assert journal is None
        assert result.status == DeductionStatus.PROCESSED
        update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_not_pending(self, db):
        with _load(self._deduction(status=DeductionStatus.PROCESSED)):
            with pytest.raises(StateError, match="expected pending"):
                await cooperative.process_salary_deduction(db, 8, processed_by=2)


class TestServiceAllowance:

    @staticmethod
    def _allowance(paid="200000"):
        return SimpleNamespace(
            id=4,
            status=AllowanceStatus.PENDING,
            received_amount=Decimal("1500000"),
            installment_paid=Decimal(paid),
            principal_deduction=Decimal("150000"),
            interest_deduction=Decimal("50000"),
            remaining_amount=Decimal("0"),
            payment_date=None,
            distributed_by=None,
            journal_id=None,
        )

    @pytest.mark.asyncio
    async def test_withholds_installment(self, db):
        allowance = self._allowance()
        post = AsyncMock(return_value=JOURNAL)
        with _load(allowance), _update_balance() as update, \
             patch(f"{CASH}.get_cash_account_by_type", new=AsyncMock(return_value=SimpleNamespace(id=1))), \
             patch(f"{AUTO}.service_allowance_processed", new=post):
            result, journal = await cooperative.process_service_allowance(
                db, 4, processed_by=2, payment_date=date(2026, 3, 31)
            )

        assert result.status == AllowanceStatus.PAID
        assert result.remaining_amount == Decimal("1300000")
        assert result.payment_date == date(2026, 3, 31)
        assert result.journal_id == 900
        update.assert_awaited_once_with(db, 1, Decimal("200000"), BalanceDirection.ADD)
        post.assert_awaited_once_with(db, allowance, 2, Decimal("150000"), Decimal("50000"))

    @pytest.mark.asyncio
    async def test_nothing_withheld(self, db):
        allowance = self._allowance(paid="0")
        with _load(allowance), _update_balance() as update:
            result, journal = await cooperative.process_service_allowance(db, 4, processed_by=2)
        assert journal is None
        assert result.remaining_amount == Decimal("1500000")
        update.assert_not_awaited()
