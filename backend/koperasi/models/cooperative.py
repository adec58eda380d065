"""Cooperative business records that produce ledger postings.

Only the columns the ledger reads, or the posting flows change, are mapped.
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
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from koperasi.database import Base, value_enum


# ===================================================================
# Enumerations
# ===================================================================


class SavingsType(str, enum.Enum):
    PRINCIPAL = "principal"
    MANDATORY = "mandatory"
    VOLUNTARY = "voluntary"
    HOLIDAY = "holiday"


class SavingStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class LoanStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DISBURSED = "disbursed"
    ACTIVE = "active"
    PAID_OFF = "paid_off"


class InstallmentStatus(str, enum.Enum):
    PENDING = "pending"
    AUTO_PAID = "auto_paid"
    MANUAL_PENDING = "manual_pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    SALARY = "salary"
    SERVICE_ALLOWANCE = "service_allowance"


class TransferStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DeductionStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    PAID = "paid"
    CANCELLED = "cancelled"


class AllowanceStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class RateTransactionType(str, enum.Enum):
    SAVINGS = "savings"
    LOANS = "loans"


# ===================================================================
# Savings
# ===================================================================


class Saving(Base):
    __tablename__ = "savings"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    cash_account_id: Mapped[int] = mapped_column(
        ForeignKey("cash_accounts.id"), nullable=False, index=True
    )
    savings_type: Mapped[SavingsType] = mapped_column(value_enum(SavingsType), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    interest_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("0"), nullable=False
    )
    final_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[SavingStatus] = mapped_column(
        value_enum(SavingStatus), default=SavingStatus.PENDING, nullable=False
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    user = relationship("User", foreign_keys=[user_id])
    cash_account = relationship("CashAccount")


# ===================================================================
# Loans and installments
# ===================================================================


class Loan(Base):
    __tablename__ = "loans"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    cash_account_id: Mapped[int] = mapped_column(
        ForeignKey("cash_accounts.id"), nullable=False, index=True
    )
    loan_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    principal_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    interest_percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    tenure_months: Mapped[int] = mapped_column(Integer, nullable=False)
    installment_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    remaining_principal: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), default=Decimal("0"), nullable=False
    )
    status: Mapped[LoanStatus] = mapped_column(
        value_enum(LoanStatus), default=LoanStatus.PENDING, nullable=False, index=True
    )
    application_date: Mapped[date] = mapped_column(Date, nullable=False)
    approval_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    disbursement_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    approved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    is_early_settlement: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    settlement_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    settlement_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    settled_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    settlement_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    user = relationship("User", foreign_keys=[user_id])
    cash_account = relationship("CashAccount")
    installments = relationship(
        "Installment",
        back_populates="loan",
        cascade="all, delete-orphan",
        order_by="Installment.installment_number",
    )


class Installment(Base):
    __tablename__ = "installments"
    __table_args__ = (
        UniqueConstraint("loan_id", "installment_number", name="uq_installment_number"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    loan_id: Mapped[int] = mapped_column(
        ForeignKey("loans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    principal_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    interest_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), default=Decimal("0"), nullable=False
    )
    remaining_principal: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    status: Mapped[InstallmentStatus] = mapped_column(
        value_enum(InstallmentStatus), default=InstallmentStatus.PENDING, nullable=False
    )
    payment_method: Mapped[PaymentMethod | None] = mapped_column(
        value_enum(PaymentMethod), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    confirmed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    loan = relationship("Loan", back_populates="installments")


class InterestRate(Base):
    """Effective-dated rate per cash account, used when a loan carries none."""

    __tablename__ = "interest_rates"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    cash_account_id: Mapped[int] = mapped_column(
        ForeignKey("cash_accounts.id"), nullable=False, index=True
    )
    transaction_type: Mapped[RateTransactionType] = mapped_column(
        value_enum(RateTransactionType), nullable=False
    )
    rate_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    updated_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)


# ===================================================================
# Cash transfers
# ===================================================================


class CashTransfer(Base):
    __tablename__ = "cash_transfers"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    transfer_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    from_cash_account_id: Mapped[int] = mapped_column(
        ForeignKey("cash_accounts.id"), nullable=False
    )
    to_cash_account_id: Mapped[int] = mapped_column(
        ForeignKey("cash_accounts.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    transfer_date: Mapped[date] = mapped_column(Date, nullable=False)
    purpose: Mapped[str] = mapped_column(String(255), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    journal_id: Mapped[int | None] = mapped_column(ForeignKey("journals.id"), nullable=True)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    approved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[TransferStatus] = mapped_column(
        value_enum(TransferStatus), default=TransferStatus.PENDING, nullable=False
    )

    from_cash_account = relationship("CashAccount", foreign_keys=[from_cash_account_id])
    to_cash_account = relationship("CashAccount", foreign_keys=[to_cash_account_id])


# ===================================================================
# Payroll deductions and service allowances
# ===================================================================


class SalaryDeduction(Base):
    __tablename__ = "salary_deductions"
    __table_args__ = (
        UniqueConstraint("user_id", "period_month", "period_year", name="uq_salary_deduction_period"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    period_month: Mapped[int] = mapped_column(Integer, nullable=False)
    period_year: Mapped[int] = mapped_column(Integer, nullable=False)
    gross_salary: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    loan_deduction: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    savings_deduction: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    other_deductions: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    net_salary: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    deduction_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    processed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    status: Mapped[DeductionStatus] = mapped_column(
        value_enum(DeductionStatus), default=DeductionStatus.PENDING, nullable=False
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    journal_id: Mapped[int | None] = mapped_column(ForeignKey("journals.id"), nullable=True)

    user = relationship("User", foreign_keys=[user_id])

    @property
    def period_display(self) -> str:
        return f"{self.period_month:02d}/{self.period_year}"


class ServiceAllowance(Base):
    __tablename__ = "service_allowances"
    __table_args__ = (
        UniqueConstraint("user_id", "period_month", "period_year", name="uq_service_allowance_period"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    period_month: Mapped[int] = mapped_column(Integer, nullable=False)
    period_year: Mapped[int] = mapped_column(Integer, nullable=False)
    received_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    installment_paid: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    remaining_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    loan_id: Mapped[int | None] = mapped_column(ForeignKey("loans.id"), nullable=True)
    installment_id: Mapped[int | None] = mapped_column(ForeignKey("installments.id"), nullable=True)
    principal_deduction: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    interest_deduction: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    status: Mapped[AllowanceStatus] = mapped_column(
        value_enum(AllowanceStatus), default=AllowanceStatus.PENDING, nullable=False
    )
    payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    distributed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    journal_id: Mapped[int | None] = mapped_column(ForeignKey("journals.id"), nullable=True)

    user = relationship("User", foreign_keys=[user_id])

    @property
    def period_display(self) -> str:
        return f"{self.period_month:02d}/{self.period_year}"
