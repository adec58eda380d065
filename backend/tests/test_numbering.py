"""Tests for journal numbering.

Covers:
- Prefix per journal type and month
- Zero padding
- Counter initialisation on the first journal of a month
- Uniqueness under concurrent postings
"""

import asyncio
from datetime import date
from unittest.mock import MagicMock

import pytest

from koperasi.models.ledger import JournalType
from koperasi.services.ledger.numbering import (
    JOURNAL_TYPE_PREFIX,
    format_journal_number,
    next_journal_number,
    next_sequence_value,
    sequence_prefix,
)


class FakeCounterSession:
    """Models the journal_sequences table for a single prefix.

    UPDATE ... RETURNING increments and reads with no await in between,
    the way the row lock serialises it in PostgreSQL. Every statement yields
    to the event loop first so concurrent callers interleave.
    """

    def __init__(self, start: int | None = None):
        self.value = start
        self.statements = []

    async def execute(self, stmt):
        await asyncio.sleep(0)
        self.statements.append(stmt)
        result = MagicMock()
        if stmt.is_insert:
            if self.value is None:
                self.value = 0
            return result
        if stmt.is_update:
            if self.value is None:
                result.scalar_one_or_none.return_value = None
            else:
                self.value += 1
                result.scalar_one_or_none.return_value = self.value
            return result
        raise AssertionError(f"unexpected statement {stmt}")


# ===================================================================
# Formatting
# ===================================================================


class TestFormatting:

    def test_every_type_has_a_prefix(self):
        assert set(JOURNAL_TYPE_PREFIX) == set(JournalType)
        assert len(set(JOURNAL_TYPE_PREFIX.values())) == len(JournalType)

    def test_sequence_prefix(self):
        assert sequence_prefix(JournalType.GENERAL, date(2026, 1, 9)) == "JU-202601"
        assert sequence_prefix(JournalType.SPECIAL, date(2026, 11, 30)) == "JK-202611"
        assert sequence_prefix("adjusting", date(2025, 12, 31)) == "JP-202512"

    def test_default_padding(self):
        assert format_journal_number("JU-202601", 1) == "JU-202601-0001"
        assert format_journal_number("JU-202601", 12345) == "JU-202601-12345"

    def test_custom_padding(self):
        assert format_journal_number("JK-202601", 7, padding=6) == "JK-202601-000007"


# ===================================================================
# Counter
# ===================================================================


class TestNextNumber:

    @pytest.mark.asyncio
    async def test_existing_counter(self, db, make_result):
        db.execute.return_value = make_result(one=5)
        number = await next_journal_number(db, JournalType.SPECIAL, date(2026, 3, 2))
        assert number == "JK-202603-0005"
        assert db.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_first_journal_of_month(self, db, make_result):
        db.execute.side_effect = [make_result(one=None), make_result(), make_result(one=1)]
        number = await next_journal_number(db, JournalType.GENERAL, date(2026, 4, 1))
        assert number == "JU-202604-0001"
        assert db.execute.await_count == 3

    @pytest.mark.asyncio
    async def test_initialisation_failure(self, db, make_result):
        db.execute.side_effect = [make_result(one=None), make_result(), make_result(one=None)]
        with pytest.raises(RuntimeError, match="could not be initialised"):
            await next_sequence_value(db, "JU-202604")

    @pytest.mark.asyncio
    async def test_counter_continues(self):
        session = FakeCounterSession(start=41)
        first = await next_journal_number(session, JournalType.GENERAL, date(2026, 1, 5))
        second = await next_journal_number(session, JournalType.GENERAL, date(2026, 1, 6))
        assert (first, second) == ("JU-202601-0042", "JU-202601-0043")


class TestConcurrentNumbering:
    """Postings racing for the same month never share a number."""

    @pytest.mark.asyncio
    async def test_concurrent_first_postings_are_unique(self):
        session = FakeCounterSession()
        numbers = await asyncio.gather(*[
            next_journal_number(session, JournalType.SPECIAL, date(2026, 5, 20))
            for _ in range(25)
        ])
        assert len(set(numbers)) == 25
        assert sorted(numbers) == [f"JK-202605-{i:04d}" for i in range(1, 26)]

    @pytest.mark.asyncio
    async def test_concurrent_postings_on_existing_counter(self):
        session = FakeCounterSession(start=100)
        numbers = await asyncio.gather(*[
            next_journal_number(session, JournalType.GENERAL, date(2026, 5, 20))
            for _ in range(10)
        ])
        assert len(set(numbers)) == 10
        assert max(numbers) == "JU-202605-0110"
