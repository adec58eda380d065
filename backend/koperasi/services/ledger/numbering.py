"""Journal number generation.

Numbers look like ``JU-202601-0001``: a prefix per journal type, the
transaction month, and a counter kept in ``journal_sequences``. The counter
is advanced with a single ``UPDATE ... RETURNING`` so two concurrent postings
in the same month can never read the same value; the UNIQUE constraint on
``journals.journal_number`` backs this up.
"""

import logging
from datetime import date

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from koperasi.config import settings
from koperasi.models.ledger import JournalSequence, JournalType

logger = logging.getLogger(__name__)


JOURNAL_TYPE_PREFIX: dict[JournalType, str] = {
    JournalType.GENERAL: "JU",
    JournalType.SPECIAL: "JK",
    JournalType.ADJUSTING: "JP",
    JournalType.CLOSING: "JT",
    JournalType.REVERSING: "JB",
}


def sequence_prefix(journal_type: JournalType, on: date) -> str:
    """Counter key for a journal type and month, e.g. ``JK-202601``."""
    return f"{JOURNAL_TYPE_PREFIX[JournalType(journal_type)]}-{on:%Y%m}"


def format_journal_number(prefix: str, value: int, padding: int | None = None) -> str:
    width = padding or settings.journal_number_padding
    return f"{prefix}-{value:0{width}d}"


async def _increment(db: AsyncSession, prefix: str) -> int | None:
    result = await db.execute(
        update(JournalSequence)
        .where(JournalSequence.prefix == prefix)
        .values(last_value=JournalSequence.last_value + 1)
        .returning(JournalSequence.last_value)
    )
    return result.scalar_one_or_none()


async def next_sequence_value(db: AsyncSession, prefix: str) -> int:
    """Atomically advance the counter for *prefix* and return the new value."""
    value = await _increment(db, prefix)
    if value is not None:
        return value

    # First journal for this prefix. A concurrent insert of the same row
    # makes this a no-op and the increment below then sees the winner's row.
    await db.execute(
        pg_insert(JournalSequence)
        .values(prefix=prefix, last_value=0)
        .on_conflict_do_nothing(index_elements=[JournalSequence.prefix])
    )
    value = await _increment(db, prefix)
    if value is None:
        raise RuntimeError(f"Journal sequence '{prefix}' could not be initialised")
    logger.info("Started journal sequence %s", prefix)
    return value


async def next_journal_number(
    db: AsyncSession, journal_type: JournalType, transaction_date: date
) -> str:
    prefix = sequence_prefix(journal_type, transaction_date)
    value = await next_sequence_value(db, prefix)
    return format_journal_number(prefix, value)
