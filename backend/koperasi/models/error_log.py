"""Recorded failures: failed requests and failed ledger postings."""

import enum
from datetime import datetime

from sqlalchemy import String, Text, Integer, DateTime, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from koperasi.database import Base, value_enum


class ErrorSeverity(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorLog(Base):
    __tablename__ = "error_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    severity: Mapped[ErrorSeverity] = mapped_column(
        value_enum(ErrorSeverity), default=ErrorSeverity.ERROR, nullable=False,
    )
    error_type: Mapped[str] = mapped_column(String(100), nullable=False)
    # LedgerError.category, or "unexpected" for anything else
    error_category: Mapped[str] = mapped_column(String(30), nullable=False, default="unexpected")
    message: Mapped[str] = mapped_column(Text, nullable=False)
    traceback: Mapped[str | None] = mapped_column(Text, nullable=True)
    origin: Mapped[str | None] = mapped_column(String(300), nullable=True)

    # Posting context
    journal_number: Mapped[str | None] = mapped_column(String(30), nullable=True)
    source_module: Mapped[str | None] = mapped_column(String(30), nullable=True)
    reference_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    reference_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Request context
    request_method: Mapped[str | None] = mapped_column(String(10), nullable=True)
    request_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )

    __table_args__ = (
        Index("ix_error_logs_created_at", "created_at"),
        Index("ix_error_logs_severity", "severity"),
        Index("ix_error_logs_reference", "reference_type", "reference_id"),
    )
