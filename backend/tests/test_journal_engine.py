"""Unit tests for the double-entry journal engine.

Covers:
- Amount coercion and totals
- Line validation (balance, one side per line, minimum line count)
- Account and period checks before posting
- create / update / delete / lock rules for manual, auto and special journals
"""

from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from koperasi.models.ledger import (
    AccountingPeriod,
    Journal,
    JournalType,
    ReferenceType,
    SourceModule,
)
from koperasi.services.ledger import journal_engine
from koperasi.services.ledger.exceptions import (
    BalanceInvariantError,
    ConfigurationError,
    NotFoundError,
    StateError,
)
from koperasi.services.ledger.journal_engine import (
    _build_details,
    _resolve_period_id,
    _validate_accounts,
    _validate_lines,
    calculate_totals,
    create_journal,
    delete_journal,
    lock_journal,
    to_amount,
    update_journal,
)

ENGINE = "koperasi.services.ledger.journal_engine"


def _line(account_id, debit=0, credit=0, description=None):
    return {
        "chart_of_account_id": account_id,
        "debit": debit,
        "credit": credit,
        "description": description,
    }


def _journal(**overrides) -> Journal:
    fields = dict(
        id=7,
        journal_number="JU-202601-0001",
        journal_type=JournalType.GENERAL,
        description="Office supplies",
        transaction_date=date(2026, 1, 15),
        is_locked=False,
        is_auto_generated=False,
        is_editable=True,
        source_module=SourceModule.MANUAL,
    )
    fields.update(overrides)
    return Journal(**fields)


BALANCED = [_line(1, debit="150000"), _line(2, credit="150000")]


# ===================================================================
# Amount helpers
# ===================================================================


class TestAmounts:
    """Decimal coercion and totals."""

    def test_none_and_blank_are_zero(self):
        assert to_amount(None) == Decimal("0")
        assert to_amount("") == Decimal("0")

    def test_quantized_to_cents(self):
        assert to_amount("10.456") == Decimal("10.46")
        assert to_amount(3) == Decimal("3.00")

    def test_garbage_raises(self):
        with pytest.raises(BalanceInvariantError, match="Invalid amount"):
            to_amount("ten")

    def test_totals_from_dicts(self):
        debit, credit = calculate_totals(BALANCED)
        assert debit == Decimal("150000.00")
        assert credit == Decimal("150000.00")

    def test_totals_from_objects(self):
        details = [
            SimpleNamespace(debit=Decimal("100"), credit=Decimal("0")),
            SimpleNamespace(debit=Decimal("0"), credit=Decimal("60")),
            SimpleNamespace(debit=None, credit=Decimal("40")),
        ]
        assert calculate_totals(details) == (Decimal("100.00"), Decimal("100.00"))


# ===================================================================
# Line validation
# ===================================================================


class TestValidateLines:
    """Shape and balance checks on incoming lines."""

    def test_balanced_lines_pass(self):
        normalized = _validate_lines(BALANCED)
        assert len(normalized) == 2
        assert normalized[0]["debit"] == Decimal("150000.00")
        assert normalized[0]["credit"] == Decimal("0")
        assert normalized[1]["chart_of_account_id"] == 2

    def test_multi_line_balanced(self):
        lines = [
            _line(1, debit="560000"),
            _line(2, credit="500000"),
            _line(3, credit="60000"),
        ]
        assert len(_validate_lines(lines)) == 3

    def test_unbalanced_rejected(self):
        with pytest.raises(BalanceInvariantError, match="Unbalanced"):
            _validate_lines([_line(1, debit="1000"), _line(2, credit="999")])

    def test_one_cent_difference_rejected(self):
        with pytest.raises(BalanceInvariantError, match="Unbalanced"):
            _validate_lines([_line(1, debit="100.00"), _line(2, credit="100.01")])

    def test_single_line_rejected(self):
        with pytest.raises(BalanceInvariantError, match="at least two lines"):
            _validate_lines([_line(1, debit="100")])

    def test_empty_rejected(self):
        with pytest.raises(BalanceInvariantError, match="at least two lines"):
            _validate_lines([])

    def test_both_sides_rejected(self):
        with pytest.raises(BalanceInvariantError, match="cannot have both"):
            _validate_lines([_line(1, debit="100", credit="100"), _line(2, credit="0.01")])

    def test_zero_line_rejected(self):
        with pytest.raises(BalanceInvariantError, match="either debit or credit"):
            _validate_lines([_line(1, debit="100"), _line(2), _line(3, credit="100")])

    def test_negative_rejected(self):
        with pytest.raises(BalanceInvariantError, match="negative"):
            _validate_lines([_line(1, debit="-100"), _line(2, credit="-100")])

    def test_missing_account_rejected(self):
        with pytest.raises(BalanceInvariantError, match="chart_of_account_id"):
            _validate_lines([_line(None, debit="100"), _line(2, credit="100")])


class TestBuildDetails:

    def test_details_carry_journal_description_by_default(self):
        journal = _journal()
        _build_details(journal, _validate_lines([
            _line(1, debit="50"), _line(2, credit="50", description="Own text"),
        ]))
        assert [d.description for d in journal.details] == ["Office supplies", "Own text"]
        assert journal.total_debit == journal.total_credit == Decimal("50.00")
        assert journal.is_balanced


# ===================================================================
# Account and period checks
# ===================================================================


class TestValidateAccounts:

    @pytest.mark.asyncio
    async def test_all_active(self, db, make_result):
        db.execute.return_value = make_result(many=[
            SimpleNamespace(id=1, code="1-101", name="Kas Umum", is_active=True),
            SimpleNamespace(id=2, code="4-201", name="Pendapatan Lain-lain", is_active=True),
        ])
        await _validate_accounts(db, [1, 2])

    @pytest.mark.asyncio
    async def test_missing_account(self, db, make_result):
        db.execute.return_value = make_result(many=[
            SimpleNamespace(id=1, code="1-101", name="Kas Umum", is_active=True),
        ])
        with pytest.raises(NotFoundError, match="2 not found"):
            await _validate_accounts(db, [1, 2])

    @pytest.mark.asyncio
    async def test_inactive_account(self, db, make_result):
        db.execute.return_value = make_result(many=[
            SimpleNamespace(id=1, code="1-101", name="Kas Umum", is_active=True),
            SimpleNamespace(id=2, code="5-999", name="Old expense", is_active=False),
        ])
        with pytest.raises(ConfigurationError, match="inactive"):
            await _validate_accounts(db, [1, 2])


class TestResolvePeriod:

    @staticmethod
    def _period(is_closed=False):
        return AccountingPeriod(
            id=3,
            period_name="January 2026",
            start_date=date(2026, 1, 1),
            end_date=date(2026, 1, 31),
            is_closed=is_closed,
        )

    @pytest.mark.asyncio
    async def test_uncovered_date_gets_a_period(self, db):
        opener = AsyncMock(return_value=self._period())
        with patch(f"{ENGINE}.get_or_create_period_for_date", new=opener):
            assert await _resolve_period_id(db, date(2026, 1, 10), None) == 3
        opener.assert_awaited_once_with(db, date(2026, 1, 10))

    @pytest.mark.asyncio
    async def test_closed_period_refused(self, db):
        with patch(
            f"{ENGINE}.get_or_create_period_for_date",
            new=AsyncMock(return_value=self._period(is_closed=True)),
        ):
            with pytest.raises(StateError, match="closed"):
                await _resolve_period_id(db, date(2026, 1, 10), None)

    @pytest.mark.asyncio
    async def test_explicit_period_must_contain_date(self, db):
        with patch(f"{ENGINE}.get_period", new=AsyncMock(return_value=self._period())):
            with pytest.raises(StateError, match="outside period"):
                await _resolve_period_id(db, date(2026, 2, 1), 3)

    @pytest.mark.asyncio
    async def test_explicit_closed_period_refused(self, db):
        with patch(f"{ENGINE}.get_period", new=AsyncMock(return_value=self._period(is_closed=True))):
            with pytest.raises(StateError, match="January 2026 is closed"):
                await _resolve_period_id(db, date(2026, 1, 10), 3)


# ===================================================================
# Create
# ===================================================================


class TestCreateJournal:

    @pytest.mark.asyncio
    async def test_creates_balanced_journal(self, db):
        with patch(f"{ENGINE}._validate_accounts", new=AsyncMock()), \
             patch(f"{ENGINE}._resolve_period_id", new=AsyncMock(return_value=3)), \
             patch(
                 f"{ENGINE}.next_journal_number",
                 new=AsyncMock(return_value="JU-202601-0004"),
             ):
            journal = await create_journal(
                db,
                lines=BALANCED,
                description="Office supplies",
                transaction_date=date(2026, 1, 15),
                created_by=1,
            )

        assert journal.journal_number == "JU-202601-0004"
        assert journal.accounting_period_id == 3
        assert journal.total_debit == Decimal("150000.00")
        assert journal.total_credit == Decimal("150000.00")
        assert len(journal.details) == 2
        assert journal.is_editable is True
        assert journal.is_auto_generated is False
        assert journal.source_module == SourceModule.MANUAL
        db.add.assert_called_once_with(journal)
        db.flush.assert_awaited()

    @pytest.mark.asyncio
    async def test_auto_generated_flags_pass_through(self, db):
        with patch(f"{ENGINE}._validate_accounts", new=AsyncMock()), \
             patch(f"{ENGINE}._resolve_period_id", new=AsyncMock(return_value=3)), \
             patch(
                 f"{ENGINE}.next_journal_number",
                 new=AsyncMock(return_value="JK-202601-0001"),
             ):
            journal = await create_journal(
                db,
                lines=BALANCED,
                description="Saving deposit",
                transaction_date=date(2026, 1, 15),
                journal_type="special",
                source_module="savings",
                reference_type=ReferenceType.SAVING,
                reference_id=44,
                is_auto_generated=True,
                is_editable=False,
            )

        assert journal.journal_type == JournalType.SPECIAL
        assert journal.source_module == SourceModule.SAVINGS
        assert journal.reference_type == ReferenceType.SAVING
        assert journal.reference_id == 44
        assert journal.is_editable is False

    @pytest.mark.asyncio
    async def test_unbalanced_writes_nothing(self, db):
        numbering = AsyncMock(return_value="JU-202601-0001")
        with patch(f"{ENGINE}.next_journal_number", new=numbering):
            with pytest.raises(BalanceInvariantError):
                await create_journal(
                    db,
                    lines=[_line(1, debit="100"), _line(2, credit="90")],
                    description="Bad",
                    transaction_date=date(2026, 1, 15),
                )
        numbering.assert_not_awaited()
        db.add.assert_not_called()
        db.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_closed_period_writes_nothing(self, db):
        numbering = AsyncMock(return_value="JU-202601-0001")
        with patch(f"{ENGINE}._validate_accounts", new=AsyncMock()), \
             patch(
                 f"{ENGINE}._resolve_period_id",
                 new=AsyncMock(side_effect=StateError("Accounting period January 2026 is closed")),
             ), \
             patch(f"{ENGINE}.next_journal_number", new=numbering):
            with pytest.raises(StateError, match="closed"):
                await create_journal(
                    db,
                    lines=BALANCED,
                    description="Late entry",
                    transaction_date=date(2026, 1, 15),
                )
        numbering.assert_not_awaited()
        db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_journal_outside_every_period_is_assigned_one(self, db):
        january = AccountingPeriod(
            id=11, period_name="January 2026",
            start_date=date(2026, 1, 1), end_date=date(2026, 1, 31), is_closed=False,
        )
        with patch(f"{ENGINE}._validate_accounts", new=AsyncMock()), \
             patch(f"{ENGINE}.get_or_create_period_for_date", new=AsyncMock(return_value=january)), \
             patch(f"{ENGINE}.next_journal_number", new=AsyncMock(return_value="JU-202601-0001")):
            journal = await create_journal(
                db,
                lines=BALANCED,
                description="Opening stationery",
                transaction_date=date(2026, 1, 5),
            )
        assert journal.accounting_period_id == 11


# ===================================================================
# Update / delete / lock
# ===================================================================


class TestUpdateJournal:

    @pytest.mark.asyncio
    async def test_replaces_lines(self, db):
        journal = _journal()
        _build_details(journal, _validate_lines(BALANCED))
        new_lines = [_line(1, debit="200"), _line(5, credit="120"), _line(6, credit="80")]

        with patch(f"{ENGINE}.get_journal", new=AsyncMock(return_value=journal)), \
             patch(f"{ENGINE}._validate_accounts", new=AsyncMock()), \
             patch(f"{ENGINE}._resolve_period_id", new=AsyncMock(return_value=3)):
            updated = await update_journal(
                db, 7, lines=new_lines, description="Corrected supplies"
            )

        assert updated is journal
        assert len(journal.details) == 3
        assert journal.total_debit == Decimal("200.00")
        assert journal.description == "Corrected supplies"
        assert journal.transaction_date == date(2026, 1, 15)
        db.flush.assert_awaited()

    @pytest.mark.asyncio
    async def test_new_date_resolves_period(self, db):
        journal = _journal(accounting_period_id=3)
        resolver = AsyncMock(return_value=4)
        with patch(f"{ENGINE}.get_journal", new=AsyncMock(return_value=journal)), \
             patch(f"{ENGINE}._validate_accounts", new=AsyncMock()), \
             patch(f"{ENGINE}._resolve_period_id", new=resolver):
            await update_journal(db, 7, lines=BALANCED, transaction_date=date(2026, 2, 2))

        resolver.assert_awaited_once_with(db, date(2026, 2, 2), None)
        assert journal.accounting_period_id == 4
        assert journal.transaction_date == date(2026, 2, 2)

    @pytest.mark.asyncio
    async def test_locked_journal_refused(self, db):
        journal = _journal(is_locked=True)
        with patch(f"{ENGINE}.get_journal", new=AsyncMock(return_value=journal)):
            with pytest.raises(StateError, match="locked"):
                await update_journal(db, 7, lines=BALANCED)

    @pytest.mark.asyncio
    async def test_auto_journal_refused(self, db):
        journal = _journal(
            journal_type=JournalType.SPECIAL, is_auto_generated=True, is_editable=False
        )
        with patch(f"{ENGINE}.get_journal", new=AsyncMock(return_value=journal)):
            with pytest.raises(StateError, match="generated automatically"):
                await update_journal(db, 7, lines=BALANCED)

    @pytest.mark.asyncio
    async def test_unbalanced_update_keeps_old_lines(self, db):
        journal = _journal()
        _build_details(journal, _validate_lines(BALANCED))
        with patch(f"{ENGINE}.get_journal", new=AsyncMock(return_value=journal)):
            with pytest.raises(BalanceInvariantError):
                await update_journal(db, 7, lines=[_line(1, debit="5"), _line(2, credit="4")])
        assert len(journal.details) == 2
        assert journal.total_debit == Decimal("150000.00")

    @pytest.mark.asyncio
    async def test_edit_without_date_rechecks_current_period(self, db):
        journal = _journal(accounting_period_id=3)
        resolver = AsyncMock(side_effect=StateError("Accounting period January 2026 is closed"))
        with patch(f"{ENGINE}.get_journal", new=AsyncMock(return_value=journal)), \
             patch(f"{ENGINE}._validate_accounts", new=AsyncMock()), \
             patch(f"{ENGINE}._resolve_period_id", new=resolver):
            with pytest.raises(StateError, match="closed"):
                await update_journal(db, 7, lines=BALANCED)
        resolver.assert_awaited_once_with(db, date(2026, 1, 15), 3)
        db.flush.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unassigned_journal_in_closed_month_refused(self, db):
        journal = _journal(accounting_period_id=None)
        _build_details(journal, _validate_lines(BALANCED))
        closed_january = AccountingPeriod(
            id=3, period_name="January 2026",
            start_date=date(2026, 1, 1), end_date=date(2026, 1, 31), is_closed=True,
        )
        with patch(f"{ENGINE}.get_journal", new=AsyncMock(return_value=journal)), \
             patch(f"{ENGINE}._validate_accounts", new=AsyncMock()), \
             patch(
                 f"{ENGINE}.get_or_create_period_for_date",
                 new=AsyncMock(return_value=closed_january),
             ):
            with pytest.raises(StateError, match="January 2026 is closed"):
                await update_journal(
                    db, 7, lines=[_line(1, debit="999"), _line(2, credit="999")]
                )
        assert journal.total_debit == Decimal("150000.00")
        assert journal.accounting_period_id is None

    @pytest.mark.asyncio
    async def test_retype_to_special_refused(self, db):
        journal = _journal()
        with patch(f"{ENGINE}.get_journal", new=AsyncMock(return_value=journal)):
            with pytest.raises(StateError, match="special") as excinfo:
                await update_journal(db, 7, lines=BALANCED, journal_type=JournalType.SPECIAL)
        assert excinfo.value.context == {"journal_number": "JU-202601-0001"}
        assert journal.journal_type == JournalType.GENERAL


class TestDeleteJournal:

    @pytest.mark.asyncio
    async def test_deletes_unlocked_general_journal(self, db):
        journal = _journal()
        with patch(f"{ENGINE}.get_journal", new=AsyncMock(return_value=journal)):
            await delete_journal(db, 7)
        db.delete.assert_awaited_once_with(journal)

    @pytest.mark.asyncio
    async def test_locked_refused(self, db):
        with patch(f"{ENGINE}.get_journal", new=AsyncMock(return_value=_journal(is_locked=True))):
            with pytest.raises(StateError, match="locked"):
                await delete_journal(db, 7)
        db.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_special_refused(self, db):
        journal = _journal(journal_type=JournalType.SPECIAL, journal_number="JK-202601-0001")
        with patch(f"{ENGINE}.get_journal", new=AsyncMock(return_value=journal)):
            with pytest.raises(StateError, match="special journal"):
                await delete_journal(db, 7)
        db.delete.assert_not_awaited()


class TestLockJournal:

    @pytest.mark.asyncio
    async def test_lock(self, db):
        journal = _journal()
        with patch(f"{ENGINE}.get_journal", new=AsyncMock(return_value=journal)):
            locked = await lock_journal(db, 7)
        assert locked.is_locked is True

    @pytest.mark.asyncio
    async def test_lock_twice_refused(self, db):
        with patch(f"{ENGINE}.get_journal", new=AsyncMock(return_value=_journal(is_locked=True))):
            with pytest.raises(StateError, match="already locked"):
                await lock_journal(db, 7)


class TestGetJournal:

    @pytest.mark.asyncio
    async def test_missing_journal(self, db, make_result):
        db.execute.return_value = make_result(one=None)
        with pytest.raises(NotFoundError, match="Journal 99 not found"):
            await journal_engine.get_journal(db, 99)
