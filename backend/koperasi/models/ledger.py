"""Ledger models.

Double-entry bookkeeping for the cooperative:
- Chart of accounts with a fixed normal-balance side per account
- Journals (headers) owning balanced journal details (lines)
- Accounting periods that lock their journals when closed
- Per-prefix counters backing journal numbering
"""

import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    String,
    Numeric,
    Integer,
    Boolean,
    DateTime,
    Date,
    ForeignKey,
    Text,
    Index,
    CheckConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from koperasi.database import Base, value_enum


# ===================================================================
# Enumerations
# ===================================================================


class AccountCategory(str, enum.Enum):
    ASSETS = "assets"
    LIABILITIES = "liabilities"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSES = "expenses"


class JournalType(str, enum.Enum):
    GENERAL = "general"
    SPECIAL = "special"
    ADJUSTING = "adjusting"
    CLOSING = "closing"
    REVERSING = "reversing"


class SourceModule(str, enum.Enum):
    MANUAL = "manual"
    SAVINGS = "savings"
    LOANS = "loans"
    INSTALLMENTS = "installments"
    CASH_TRANSFERS = "cash_transfers"
    SALARY_DEDUCTIONS = "salary_deductions"
    SERVICE_ALLOWANCES = "service_allowances"


class ReferenceType(str, enum.Enum):
    """Kind of business record a journal was generated from."""
    SAVING = "saving"
    LOAN = "loan"
    INSTALLMENT = "installment"
    CASH_TRANSFER = "cash_transfer"
    SALARY_DEDUCTION = "salary_deduction"
    SERVICE_ALLOWANCE = "service_allowance"


# Debit-normal categories; the rest are credit-normal.
DEBIT_NORMAL_CATEGORIES = frozenset({AccountCategory.ASSETS, AccountCategory.EXPENSES})


# ===================================================================
# Chart of Accounts
# ===================================================================


class ChartOfAccount(Base):
    __tablename__ = "chart_of_accounts"
    __table_args__ = (
        Index("ix_coa_category", "category"),
        Index("ix_coa_is_active", "is_active"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[AccountCategory] = mapped_column(
        value_enum(AccountCategory), nullable=False
    )
    account_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_debit: Mapped[bool] = mapped_column(Boolean, nullable=False)
    is_contra: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    contra_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    details = relationship("JournalDetail", back_populates="account")

    def __repr__(self) -> str:
        return f"<ChartOfAccount {self.code} {self.name}>"


# ===================================================================
# Accounting Periods
# ===================================================================


class AccountingPeriod(Base):
    __tablename__ = "accounting_periods"
    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="ck_period_date_order"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    period_name: Mapped[str] = mapped_column(String(100), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_closed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    closed_by: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    journals = relationship("Journal", back_populates="accounting_period")

    def contains(self, value: date) -> bool:
        return self.start_date <= value <= self.end_date

    @property
    def duration_days(self) -> int:
        return (self.end_date - self.start_date).days + 1


# ===================================================================
# Journals
# ===================================================================


class Journal(Base):
    """Journal header. Details are owned and deleted with it."""

    __tablename__ = "journals"
    __table_args__ = (
        Index("ix_journals_transaction_date", "transaction_date"),
        Index("ix_journals_type", "journal_type"),
        Index("ix_journals_reference", "reference_type", "reference_id"),
        Index("ix_journals_source_module", "source_module"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    journal_number: Mapped[str] = mapped_column(
        String(30), unique=True, nullable=False
    )
    journal_type: Mapped[JournalType] = mapped_column(
        value_enum(JournalType), default=JournalType.GENERAL, nullable=False
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)

    accounting_period_id: Mapped[int | None] = mapped_column(
        ForeignKey("accounting_periods.id"), nullable=True
    )
    cash_account_id: Mapped[int | None] = mapped_column(
        ForeignKey("cash_accounts.id"), nullable=True
    )
    created_by: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )

    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_auto_generated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_editable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    source_module: Mapped[SourceModule] = mapped_column(
        value_enum(SourceModule), default=SourceModule.MANUAL, nullable=False
    )

    # Weak back-reference to the originating business record
    reference_type: Mapped[ReferenceType | None] = mapped_column(
        value_enum(ReferenceType), nullable=True
    )
    reference_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    total_debit: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), default=Decimal("0"), nullable=False
    )
    total_credit: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), default=Decimal("0"), nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    accounting_period = relationship("AccountingPeriod", back_populates="journals")
    details = relationship(
        "JournalDetail",
        back_populates="journal",
        cascade="all, delete-orphan",
        order_by="JournalDetail.id",
    )

    @property
    def is_balanced(self) -> bool:
        return (self.total_debit or Decimal("0")) == (self.total_credit or Decimal("0"))

    def __repr__(self) -> str:
        return f"<Journal {self.journal_number}>"


class JournalDetail(Base):
    """One debit-or-credit line of a journal."""

    __tablename__ = "journal_details"
    __table_args__ = (
        CheckConstraint("debit >= 0 AND credit >= 0", name="ck_journal_detail_non_negative"),
        CheckConstraint(
            "NOT (debit > 0 AND credit > 0)", name="ck_journal_detail_one_side"
        ),
        Index("ix_journal_details_account", "chart_of_account_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    journal_id: Mapped[int] = mapped_column(
        ForeignKey("journals.id", ondelete="CASCADE"), nullable=False, index=True
    )
    chart_of_account_id: Mapped[int] = mapped_column(
        ForeignKey("chart_of_accounts.id"), nullable=False
    )
    debit: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), default=Decimal("0"), nullable=False
    )
    credit: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), default=Decimal("0"), nullable=False
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    journal = relationship("Journal", back_populates="details")
    account = relationship("ChartOfAccount", back_populates="details")


class JournalSequence(Base):
    """Last issued sequence value per journal-number prefix (e.g. ``JU-202601``)."""

    __tablename__ = "journal_sequences"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    prefix: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    last_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
