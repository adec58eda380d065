"""Ledger core: users, cash accounts, chart of accounts, periods, journals,
journal numbering counters and the cooperative records that post journals.

Revision ID: 001
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _enum(name: str, *values: str) -> postgresql.ENUM:
    return postgresql.ENUM(*values, name=name, create_type=False)


user_role = _enum("userrole", "admin", "manager", "member")
error_severity = _enum("errorseverity", "info", "warning", "error", "critical")
cash_account_type = _enum("cashaccounttype", "I", "II", "III", "IV", "V")
account_category = _enum("accountcategory", "assets", "liabilities", "equity", "revenue", "expenses")
journal_type = _enum("journaltype", "general", "special", "adjusting", "closing", "reversing")
source_module = _enum(
    "sourcemodule",
    "manual", "savings", "loans", "installments", "cash_transfers",
    "salary_deductions", "service_allowances",
)
reference_type = _enum(
    "referencetype",
    "saving", "loan", "installment", "cash_transfer", "salary_deduction", "service_allowance",
)
savings_type = _enum("savingstype", "principal", "mandatory", "voluntary", "holiday")
saving_status = _enum("savingstatus", "pending", "approved", "rejected")
loan_status = _enum("loanstatus", "pending", "approved", "rejected", "disbursed", "active", "paid_off")
installment_status = _enum(
    "installmentstatus", "pending", "auto_paid", "manual_pending", "paid", "overdue", "cancelled",
)
payment_method = _enum("paymentmethod", "cash", "salary", "service_allowance")
transfer_status = _enum("transferstatus", "pending", "approved", "completed", "cancelled")
deduction_status = _enum("deductionstatus", "pending", "processed", "paid", "cancelled")
allowance_status = _enum("allowancestatus", "pending", "paid", "cancelled")
rate_transaction_type = _enum("ratetransactiontype", "savings", "loans")

ALL_ENUMS = [
    user_role, error_severity, cash_account_type, account_category, journal_type,
    source_module, reference_type, savings_type, saving_status, loan_status,
    installment_status, payment_method, transfer_status, deduction_status,
    allowance_status, rate_transaction_type,
]


def _timestamps(updated: bool = True) -> list[sa.Column]:
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()))
    return cols


def _money(name: str, nullable: bool = False, default: bool = True) -> sa.Column:
    return sa.Column(
        name, sa.Numeric(15, 2), nullable=nullable,
        server_default="0" if default else None,
    )


def upgrade() -> None:
    bind = op.get_bind()
    for e in ALL_ENUMS:
        e.create(bind, checkfirst=True)

    # -- Users and error logs --------------------------------------------------

    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("member_number", sa.String(30), unique=True, nullable=True),
        sa.Column("role", user_role, nullable=False, server_default="member"),
        sa.Column("is_active", sa.Boolean, server_default="true"),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "error_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("severity", error_severity, nullable=False, server_default="error"),
        sa.Column("error_type", sa.String(100), nullable=False),
        sa.Column("error_category", sa.String(30), nullable=False, server_default="unexpected"),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("traceback", sa.Text, nullable=True),
        sa.Column("origin", sa.String(300), nullable=True),
        sa.Column("journal_number", sa.String(30), nullable=True),
        sa.Column("source_module", sa.String(30), nullable=True),
        sa.Column("reference_type", sa.String(30), nullable=True),
        sa.Column("reference_id", sa.Integer, nullable=True),
        sa.Column("request_method", sa.String(10), nullable=True),
        sa.Column("request_path", sa.String(500), nullable=True),
        sa.Column("status_code", sa.Integer, nullable=True),
        sa.Column("user_id", sa.Integer, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_error_logs_created_at", "error_logs", ["created_at"])
    op.create_index("ix_error_logs_severity", "error_logs", ["severity"])
    op.create_index("ix_error_logs_reference", "error_logs", ["reference_type", "reference_id"])

    # -- Cash accounts and chart of accounts -----------------------------------

    op.create_table(
        "cash_accounts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(20), unique=True, nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("type", cash_account_type, nullable=False),
        _money("opening_balance"),
        _money("current_balance"),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        *_timestamps(),
    )

    op.create_table(
        "chart_of_accounts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(20), unique=True, nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("category", account_category, nullable=False),
        sa.Column("account_type", sa.String(50), nullable=True),
        sa.Column("is_debit", sa.Boolean, nullable=False),
        sa.Column("is_contra", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("contra_description", sa.Text, nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("description", sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_coa_category", "chart_of_accounts", ["category"])
    op.create_index("ix_coa_is_active", "chart_of_accounts", ["is_active"])

    # -- Periods, journals and numbering ---------------------------------------

    op.create_table(
        "accounting_periods",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("period_name", sa.String(100), nullable=False),
        sa.Column("start_date", sa.Date, nullable=False),
        sa.Column("end_date", sa.Date, nullable=False),
        sa.Column("is_closed", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("closed_by", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
        sa.CheckConstraint("end_date >= start_date", name="ck_period_date_order"),
    )

    op.create_table(
        "journal_sequences",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("prefix", sa.String(20), unique=True, nullable=False),
        sa.Column("last_value", sa.Integer, nullable=False, server_default="0"),
    )

    op.create_table(
        "journals",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("journal_number", sa.String(30), unique=True, nullable=False),
        sa.Column("journal_type", journal_type, nullable=False, server_default="general"),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("transaction_date", sa.Date, nullable=False),
        sa.Column("accounting_period_id", sa.Integer, sa.ForeignKey("accounting_periods.id"), nullable=True),
        sa.Column("cash_account_id", sa.Integer, sa.ForeignKey("cash_accounts.id"), nullable=True),
        sa.Column("created_by", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("is_locked", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("is_auto_generated", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("is_editable", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("source_module", source_module, nullable=False, server_default="manual"),
        sa.Column("reference_type", reference_type, nullable=True),
        sa.Column("reference_id", sa.Integer, nullable=True),
        _money("total_debit"),
        _money("total_credit"),
        *_timestamps(),
    )
    op.create_index("ix_journals_transaction_date", "journals", ["transaction_date"])
    op.create_index("ix_journals_type", "journals", ["journal_type"])
    op.create_index("ix_journals_reference", "journals", ["reference_type", "reference_id"])
    op.create_index("ix_journals_source_module", "journals", ["source_module"])

    op.create_table(
        "journal_details",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("journal_id", sa.Integer, sa.ForeignKey("journals.id", ondelete="CASCADE"), nullable=False),
        sa.Column("chart_of_account_id", sa.Integer, sa.ForeignKey("chart_of_accounts.id"), nullable=False),
        _money("debit"),
        _money("credit"),
        sa.Column("description", sa.Text, nullable=True),
        sa.CheckConstraint("debit >= 0 AND credit >= 0", name="ck_journal_detail_non_negative"),
        sa.CheckConstraint("NOT (debit > 0 AND credit > 0)", name="ck_journal_detail_one_side"),
    )
    op.create_index("ix_journal_details_journal_id", "journal_details", ["journal_id"])
    op.create_index("ix_journal_details_account", "journal_details", ["chart_of_account_id"])

    # -- Cooperative records ---------------------------------------------------

    op.create_table(
        "savings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("cash_account_id", sa.Integer, sa.ForeignKey("cash_accounts.id"), nullable=False),
        sa.Column("savings_type", savings_type, nullable=False),
        _money("amount", default=False),
        sa.Column("interest_percentage", sa.Numeric(5, 2), nullable=False, server_default="0"),
        _money("final_amount", default=False),
        sa.Column("transaction_date", sa.Date, nullable=False),
        sa.Column("status", saving_status, nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("approved_by", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_savings_user_id", "savings", ["user_id"])
    op.create_index("ix_savings_cash_account_id", "savings", ["cash_account_id"])

    op.create_table(
        "loans",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("cash_account_id", sa.Integer, sa.ForeignKey("cash_accounts.id"), nullable=False),
        sa.Column("loan_number", sa.String(30), unique=True, nullable=False),
        _money("principal_amount", default=False),
        sa.Column("interest_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("tenure_months", sa.Integer, nullable=False),
        _money("installment_amount", nullable=True, default=False),
        _money("remaining_principal"),
        sa.Column("status", loan_status, nullable=False, server_default="pending"),
        sa.Column("application_date", sa.Date, nullable=False),
        sa.Column("approval_date", sa.Date, nullable=True),
        sa.Column("disbursement_date", sa.Date, nullable=True),
        sa.Column("approved_by", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("is_early_settlement", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("settlement_date", sa.Date, nullable=True),
        _money("settlement_amount", nullable=True, default=False),
        sa.Column("settled_by", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("settlement_notes", sa.Text, nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_loans_user_id", "loans", ["user_id"])
    op.create_index("ix_loans_cash_account_id", "loans", ["cash_account_id"])
    op.create_index("ix_loans_status", "loans", ["status"])

    op.create_table(
        "installments",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("loan_id", sa.Integer, sa.ForeignKey("loans.id", ondelete="CASCADE"), nullable=False),
        sa.Column("installment_number", sa.Integer, nullable=False),
        sa.Column("due_date", sa.Date, nullable=False),
        sa.Column("payment_date", sa.Date, nullable=True),
        _money("principal_amount", default=False),
        _money("interest_amount", default=False),
        _money("total_amount", default=False),
        _money("paid_amount"),
        _money("remaining_principal", default=False),
        sa.Column("status", installment_status, nullable=False, server_default="pending"),
        sa.Column("payment_method", payment_method, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("confirmed_by", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.UniqueConstraint("loan_id", "installment_number", name="uq_installment_number"),
    )
    op.create_index("ix_installments_loan_id", "installments", ["loan_id"])

    op.create_table(
        "interest_rates",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("cash_account_id", sa.Integer, sa.ForeignKey("cash_accounts.id"), nullable=False),
        sa.Column("transaction_type", rate_transaction_type, nullable=False),
        sa.Column("rate_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("effective_date", sa.Date, nullable=False),
        sa.Column("updated_by", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
    )
    op.create_index("ix_interest_rates_cash_account_id", "interest_rates", ["cash_account_id"])

    op.create_table(
        "cash_transfers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("transfer_number", sa.String(30), unique=True, nullable=False),
        sa.Column("from_cash_account_id", sa.Integer, sa.ForeignKey("cash_accounts.id"), nullable=False),
        sa.Column("to_cash_account_id", sa.Integer, sa.ForeignKey("cash_accounts.id"), nullable=False),
        _money("amount", default=False),
        sa.Column("transfer_date", sa.Date, nullable=False),
        sa.Column("purpose", sa.String(255), nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("journal_id", sa.Integer, sa.ForeignKey("journals.id"), nullable=True),
        sa.Column("created_by", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approved_by", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", transfer_status, nullable=False, server_default="pending"),
    )

    op.create_table(
        "salary_deductions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("period_month", sa.Integer, nullable=False),
        sa.Column("period_year", sa.Integer, nullable=False),
        _money("gross_salary"),
        _money("loan_deduction"),
        _money("savings_deduction"),
        _money("other_deductions"),
        _money("total_deductions"),
        _money("net_salary"),
        sa.Column("deduction_date", sa.Date, nullable=True),
        sa.Column("processed_by", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("status", deduction_status, nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("journal_id", sa.Integer, sa.ForeignKey("journals.id"), nullable=True),
        sa.UniqueConstraint("user_id", "period_month", "period_year", name="uq_salary_deduction_period"),
    )
    op.create_index("ix_salary_deductions_user_id", "salary_deductions", ["user_id"])

    op.create_table(
        "service_allowances",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("period_month", sa.Integer, nullable=False),
        sa.Column("period_year", sa.Integer, nullable=False),
        _money("received_amount", default=False),
        _money("installment_paid"),
        _money("remaining_amount"),
        sa.Column("loan_id", sa.Integer, sa.ForeignKey("loans.id"), nullable=True),
        sa.Column("installment_id", sa.Integer, sa.ForeignKey("installments.id"), nullable=True),
        _money("principal_deduction"),
        _money("interest_deduction"),
        sa.Column("status", allowance_status, nullable=False, server_default="pending"),
        sa.Column("payment_date", sa.Date, nullable=True),
        sa.Column("distributed_by", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("journal_id", sa.Integer, sa.ForeignKey("journals.id"), nullable=True),
        sa.UniqueConstraint("user_id", "period_month", "period_year", name="uq_service_allowance_period"),
    )
    op.create_index("ix_service_allowances_user_id", "service_allowances", ["user_id"])


def downgrade() -> None:
    for table in (
        "service_allowances", "salary_deductions", "cash_transfers", "interest_rates",
        "installments", "loans", "savings", "journal_details", "journals",
        "journal_sequences", "accounting_periods", "chart_of_accounts",
        "cash_accounts", "error_logs", "users",
    ):
        op.drop_table(table)
    bind = op.get_bind()
    for e in reversed(ALL_ENUMS):
        e.drop(bind, checkfirst=True)
