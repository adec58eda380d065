"""SQLAlchemy models for the cooperative ledger service."""

from koperasi.models.user import User, UserRole
from koperasi.models.error_log import ErrorLog, ErrorSeverity
from koperasi.models.cash_account import CashAccount, CashAccountType
from koperasi.models.ledger import (
    AccountCategory,
    AccountingPeriod,
    ChartOfAccount,
    Journal,
    JournalDetail,
    JournalSequence,
    JournalType,
    ReferenceType,
    SourceModule,
)
from koperasi.models.cooperative import (
    AllowanceStatus,
    CashTransfer,
    DeductionStatus,
    Installment,
    InstallmentStatus,
    InterestRate,
    Loan,
    LoanStatus,
    PaymentMethod,
    RateTransactionType,
    SalaryDeduction,
    Saving,
    SavingStatus,
    SavingsType,
    ServiceAllowance,
    TransferStatus,
)

__all__ = [
    "User", "UserRole",
    "ErrorLog", "ErrorSeverity",
    "CashAccount", "CashAccountType",
    "AccountCategory", "AccountingPeriod", "ChartOfAccount", "Journal",
    "JournalDetail", "JournalSequence", "JournalType", "ReferenceType", "SourceModule",
    "AllowanceStatus", "CashTransfer", "DeductionStatus", "Installment",
    "InstallmentStatus", "InterestRate", "Loan", "LoanStatus", "PaymentMethod",
    "RateTransactionType", "SalaryDeduction", "Saving", "SavingStatus",
    "SavingsType", "ServiceAllowance", "TransferStatus",
]
