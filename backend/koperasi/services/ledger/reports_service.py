"""Financial reports derived from journal details.

Every report is split in two: an async query that pulls aggregated rows from
``journal_details`` / ``journals`` / ``chart_of_accounts``, and a pure
``build_*`` function that turns those rows into the report. Reports never
write; accounts without matching details simply do not appear.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import select, func as sa_func
from sqlalchemy.ext.asyncio import AsyncSession

from koperasi.models.ledger import (
    AccountCategory,
    ChartOfAccount,
    DEBIT_NORMAL_CATEGORIES,
    Journal,
    JournalDetail,
    SourceModule,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CASH_ACCOUNT_TYPES = ("cash", "bank")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fmt(val) -> float:
    """Decimal/int to a 2dp float for JSON."""
    if val is None:
        return 0.0
    return round(float(val), 2)


def _dec(val) -> Decimal:
    return val if isinstance(val, Decimal) else Decimal(str(val or 0))


def _category(val) -> AccountCategory:
    return AccountCategory(val)


def _check_range(start_date: date, end_date: date) -> None:
    if start_date > end_date:
        raise ValueError("start_date must not be after end_date")


def previous_period(start_date: date, end_date: date) -> tuple[date, date]:
    """The period of equal length ending the day before *start_date*."""
    prior_end = start_date - timedelta(days=1)
    prior_start = prior_end - (end_date - start_date)
    return prior_start, prior_end


def _account_totals_query(
    *,
    date_from: date | None = None,
    date_to: date | None = None,
    period_id: int | None = None,
    categories: Iterable[AccountCategory] | None = None,
):
    q = (
        select(
            ChartOfAccount.id.label("account_id"),
            ChartOfAccount.code,
            ChartOfAccount.name,
            ChartOfAccount.category,
            ChartOfAccount.account_type,
            ChartOfAccount.is_debit,
            sa_func.coalesce(sa_func.sum(JournalDetail.debit), 0).label("total_debit"),
            sa_func.coalesce(sa_func.sum(JournalDetail.credit), 0).label("total_credit"),
        )
        .select_from(JournalDetail)
        .join(Journal, JournalDetail.journal_id == Journal.id)
        .join(ChartOfAccount, JournalDetail.chart_of_account_id == ChartOfAccount.id)
        .group_by(ChartOfAccount.id)
        .order_by(ChartOfAccount.code)
    )
    if date_from is not None:
        q = q.where(Journal.transaction_date >= date_from)
    if date_to is not None:
        q = q.where(Journal.transaction_date <= date_to)
    if period_id is not None:
        q = q.where(Journal.accounting_period_id == period_id)
    if categories is not None:
        q = q.where(ChartOfAccount.category.in_(list(categories)))
    return q


async def _fetch(db: AsyncSession, q) -> list[dict[str, Any]]:
    result = await db.execute(q)
    return [dict(row._mapping) for row in result.all()]


# ---------------------------------------------------------------------------
# 1. Trial Balance
# ---------------------------------------------------------------------------

def build_trial_balance(rows: list[dict[str, Any]]) -> dict[str, Any]:
    """Net each account to a debit or credit balance and check the totals."""
    accounts = []
    total_debit = ZERO
    total_credit = ZERO
    for row in rows:
        net = _dec(row["total_debit"]) - _dec(row["total_credit"])
        debit = net if net > 0 else ZERO
        credit = -net if net < 0 else ZERO
        total_debit += debit
        total_credit += credit
        accounts.append({
            "account_id": row["account_id"],
            "code": row["code"],
            "name": row["name"],
            "category": _category(row["category"]).value,
            "debit": _fmt(debit),
            "credit": _fmt(credit),
        })

    return {
        "accounts": accounts,
        "total_debit": _fmt(total_debit),
        "total_credit": _fmt(total_credit),
        "is_balanced": round(total_debit, 2) == round(total_credit, 2),
        "difference": _fmt(total_debit - total_credit),
    }


async def trial_balance(
    db: AsyncSession,
    *,
    as_of_date: date | None = None,
    period_id: int | None = None,
) -> dict[str, Any]:
    as_of_date = as_of_date or date.today()
    rows = await _fetch(db, _account_totals_query(date_to=as_of_date, period_id=period_id))
    report = build_trial_balance(rows)
    report["as_of_date"] = as_of_date.isoformat()
    report["accounting_period_id"] = period_id
    return report


# ---------------------------------------------------------------------------
# 2. General Ledger
# ---------------------------------------------------------------------------

def build_general_ledger(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Group detail rows per account with a running balance.

    *rows* must already be in journal-id order (then detail id); the running
    balance follows that order, not the transaction date.
    """
    ledgers: dict[int, dict[str, Any]] = {}
    for row in rows:
        ledger = ledgers.get(row["account_id"])
        if ledger is None:
            ledger = ledgers[row["account_id"]] = {
                "account": {
                    "id": row["account_id"],
                    "code": row["code"],
                    "name": row["name"],
                },
                "transactions": [],
                "_debit": ZERO,
                "_credit": ZERO,
                "_balance": ZERO,
            }
        debit = _dec(row["debit"])
        credit = _dec(row["credit"])
        ledger["_debit"] += debit
        ledger["_credit"] += credit
        ledger["_balance"] += debit - credit
        txn_date = row["transaction_date"]
        ledger["transactions"].append({
            "journal_id": row["journal_id"],
            "journal_number": row["journal_number"],
            "transaction_date": txn_date.isoformat() if txn_date else None,
            "description": row.get("description") or row.get("journal_description"),
            "debit": _fmt(debit),
            "credit": _fmt(credit),
            "balance": _fmt(ledger["_balance"]),
        })

    result = []
    for ledger in sorted(ledgers.values(), key=lambda lg: lg["account"]["code"]):
        result.append({
            "account": ledger["account"],
            "transactions": ledger["transactions"],
            "total_debit": _fmt(ledger["_debit"]),
            "total_credit": _fmt(ledger["_credit"]),
            "balance": _fmt(ledger["_balance"]),
        })
    return result


async def general_ledger(
    db: AsyncSession,
    *,
    start_date: date,
    end_date: date,
    account_id: int | None = None,
) -> dict[str, Any]:
    _check_range(start_date, end_date)
    q = (
        select(
            JournalDetail.id.label("detail_id"),
            JournalDetail.debit,
            JournalDetail.credit,
            JournalDetail.description,
            Journal.id.label("journal_id"),
            Journal.journal_number,
            Journal.transaction_date,
            Journal.description.label("journal_description"),
            ChartOfAccount.id.label("account_id"),
            ChartOfAccount.code,
            ChartOfAccount.name,
        )
        .select_from(JournalDetail)
        .join(Journal, JournalDetail.journal_id == Journal.id)
        .join(ChartOfAccount, JournalDetail.chart_of_account_id == ChartOfAccount.id)
        .where(Journal.transaction_date.between(start_date, end_date))
        .order_by(Journal.id, JournalDetail.id)
    )
    if account_id is not None:
        q = q.where(JournalDetail.chart_of_account_id == account_id)

    rows = await _fetch(db, q)
    return {
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "accounts": build_general_ledger(rows),
    }


# ---------------------------------------------------------------------------
# 3. Income Statement
# ---------------------------------------------------------------------------

def build_income_statement(rows: list[dict[str, Any]]) -> dict[str, Any]:
    """Revenue is credit-normal, expenses debit-normal; other categories are ignored."""
    revenue = []
    expenses = []
    total_revenue = ZERO
    total_expenses = ZERO
    for row in rows:
        category = _category(row["category"])
        debit = _dec(row["total_debit"])
        credit = _dec(row["total_credit"])
        if category == AccountCategory.REVENUE:
            balance = credit - debit
            total_revenue += balance
            target = revenue
        elif category == AccountCategory.EXPENSES:
            balance = debit - credit
            total_expenses += balance
            target = expenses
        else:
            continue
        target.append({
            "account_id": row["account_id"],
            "code": row["code"],
            "name": row["name"],
            "balance": _fmt(balance),
        })

    net_income = total_revenue - total_expenses
    margin = (net_income / total_revenue * 100) if total_revenue != 0 else ZERO
    return {
        "revenue": {"accounts": revenue, "total": _fmt(total_revenue)},
        "expenses": {"accounts": expenses, "total": _fmt(total_expenses)},
        "summary": {
            "total_revenue": _fmt(total_revenue),
            "total_expenses": _fmt(total_expenses),
            "net_income": _fmt(net_income),
            "operating_margin": _fmt(margin),
        },
    }


def compare_income(current: dict[str, Any], prior: dict[str, Any]) -> dict[str, Any]:
    """Variance between two income-statement summaries."""
    cur_net = _dec(current["net_income"])
    prior_net = _dec(prior["net_income"])
    change = cur_net - prior_net
    if prior_net == 0:
        pct = Decimal("100") if cur_net != 0 else ZERO
    else:
        pct = change / abs(prior_net) * 100

    if change > 0:
        trend = "up"
    elif change < 0:
        trend = "down"
    else:
        trend = "flat"

    return {
        "net_income_change": _fmt(change),
        "net_income_change_pct": _fmt(pct),
        "revenue_change": _fmt(_dec(current["total_revenue"]) - _dec(prior["total_revenue"])),
        "expense_change": _fmt(_dec(current["total_expenses"]) - _dec(prior["total_expenses"])),
        "trend": trend,
    }


async def income_statement(
    db: AsyncSession,
    *,
    start_date: date,
    end_date: date,
    compare: bool = False,
) -> dict[str, Any]:
    _check_range(start_date, end_date)
    pl_categories = (AccountCategory.REVENUE, AccountCategory.EXPENSES)
    rows = await _fetch(db, _account_totals_query(
        date_from=start_date, date_to=end_date, categories=pl_categories,
    ))
    report = build_income_statement(rows)
    report["start_date"] = start_date.isoformat()
    report["end_date"] = end_date.isoformat()

    if compare:
        prior_start, prior_end = previous_period(start_date, end_date)
        prior_rows = await _fetch(db, _account_totals_query(
            date_from=prior_start, date_to=prior_end, categories=pl_categories,
        ))
        prior = build_income_statement(prior_rows)
        report["comparison"] = {
            "previous_period": {
                "start_date": prior_start.isoformat(),
                "end_date": prior_end.isoformat(),
                "summary": prior["summary"],
            },
            **compare_income(report["summary"], prior["summary"]),
        }
    return report


# ---------------------------------------------------------------------------
# 4. Balance Sheet
# ---------------------------------------------------------------------------

def build_balance_sheet(rows: list[dict[str, Any]]) -> dict[str, Any]:
    """Assets = Liabilities + Equity + net income.

    Each account's balance is shown on its own normal side, so contra
    accounts show positive balances. Section totals net contra accounts
    against the section's normal side.
    """
    sections = {
        AccountCategory.ASSETS: {"accounts": [], "total": ZERO},
        AccountCategory.LIABILITIES: {"accounts": [], "total": ZERO},
        AccountCategory.EQUITY: {"accounts": [], "total": ZERO},
    }
    pl_rows = []

    for row in rows:
        category = _category(row["category"])
        if category not in sections:
            pl_rows.append(row)
            continue
        debit = _dec(row["total_debit"])
        credit = _dec(row["total_credit"])
        balance = (debit - credit) if row["is_debit"] else (credit - debit)
        section_debit_normal = category in DEBIT_NORMAL_CATEGORIES
        contribution = balance if bool(row["is_debit"]) == section_debit_normal else -balance
        sections[category]["total"] += contribution
        sections[category]["accounts"].append({
            "account_id": row["account_id"],
            "code": row["code"],
            "name": row["name"],
            "is_contra": bool(row["is_debit"]) != section_debit_normal,
            "balance": _fmt(balance),
        })

    net_income = _dec(build_income_statement(pl_rows)["summary"]["net_income"])
    total_assets = sections[AccountCategory.ASSETS]["total"]
    total_liabilities = sections[AccountCategory.LIABILITIES]["total"]
    total_equity = sections[AccountCategory.EQUITY]["total"]
    equity_with_income = total_equity + net_income
    difference = total_assets - (total_liabilities + equity_with_income)

    def _section(cat: AccountCategory) -> dict[str, Any]:
        return {"accounts": sections[cat]["accounts"], "total": _fmt(sections[cat]["total"])}

    return {
        "assets": _section(AccountCategory.ASSETS),
        "liabilities": _section(AccountCategory.LIABILITIES),
        "equity": _section(AccountCategory.EQUITY),
        "summary": {
            "total_assets": _fmt(total_assets),
            "total_liabilities": _fmt(total_liabilities),
            "total_equity": _fmt(total_equity),
            "net_income": _fmt(net_income),
            "total_equity_with_income": _fmt(equity_with_income),
            "total_liabilities_and_equity": _fmt(total_liabilities + equity_with_income),
            "is_balanced": abs(difference) < Decimal("0.01"),
            "difference": _fmt(difference),
        },
    }


async def balance_sheet(db: AsyncSession, *, as_of_date: date | None = None) -> dict[str, Any]:
    as_of_date = as_of_date or date.today()
    rows = await _fetch(db, _account_totals_query(date_to=as_of_date))
    report = build_balance_sheet(rows)
    report["as_of_date"] = as_of_date.isoformat()
    if not report["summary"]["is_balanced"]:
        logger.warning(
            "Balance sheet as of %s is out of balance by %s",
            as_of_date, report["summary"]["difference"],
        )
    return report


# ---------------------------------------------------------------------------
# 5. Cash Flow Summary
# ---------------------------------------------------------------------------

def build_cash_flow(rows: list[dict[str, Any]]) -> dict[str, Any]:
    """Per cash/bank account inflow (debit) and outflow (credit) by source module."""
    accounts: dict[int, dict[str, Any]] = {}
    for row in rows:
        acct = accounts.get(row["account_id"])
        if acct is None:
            acct = accounts[row["account_id"]] = {
                "account_id": row["account_id"],
                "code": row["code"],
                "name": row["name"],
                "in": ZERO,
                "out": ZERO,
                "by_source": {},
            }
        debit = _dec(row["total_debit"])
        credit = _dec(row["total_credit"])
        source = row.get("source_module")
        source = SourceModule(source).value if source else SourceModule.MANUAL.value
        acct["in"] += debit
        acct["out"] += credit
        bucket = acct["by_source"].setdefault(source, [ZERO, ZERO])
        bucket[0] += debit
        bucket[1] += credit

    total_in = ZERO
    total_out = ZERO
    result = []
    for acct in sorted(accounts.values(), key=lambda a: a["code"]):
        total_in += acct["in"]
        total_out += acct["out"]
        result.append({
            "account_id": acct["account_id"],
            "code": acct["code"],
            "name": acct["name"],
            "kas_masuk": _fmt(acct["in"]),
            "kas_keluar": _fmt(acct["out"]),
            "net_flow": _fmt(acct["in"] - acct["out"]),
            "by_source": [
                {
                    "source_module": source,
                    "kas_masuk": _fmt(cash_in),
                    "kas_keluar": _fmt(cash_out),
                    "net_flow": _fmt(cash_in - cash_out),
                }
                for source, (cash_in, cash_out) in sorted(acct["by_source"].items())
            ],
        })

    return {
        "accounts": result,
        "summary": {
            "total_kas_masuk": _fmt(total_in),
            "total_kas_keluar": _fmt(total_out),
            "net_flow": _fmt(total_in - total_out),
        },
    }


async def cash_flow(db: AsyncSession, *, start_date: date, end_date: date) -> dict[str, Any]:
    _check_range(start_date, end_date)
    q = (
        select(
            ChartOfAccount.id.label("account_id"),
            ChartOfAccount.code,
            ChartOfAccount.name,
            Journal.source_module,
            sa_func.coalesce(sa_func.sum(JournalDetail.debit), 0).label("total_debit"),
            sa_func.coalesce(sa_func.sum(JournalDetail.credit), 0).label("total_credit"),
        )
        .select_from(JournalDetail)
        .join(Journal, JournalDetail.journal_id == Journal.id)
        .join(ChartOfAccount, JournalDetail.chart_of_account_id == ChartOfAccount.id)
        .where(
            Journal.transaction_date.between(start_date, end_date),
            sa_func.lower(ChartOfAccount.account_type).in_(CASH_ACCOUNT_TYPES),
        )
        .group_by(ChartOfAccount.id, Journal.source_module)
        .order_by(ChartOfAccount.code)
    )
    rows = await _fetch(db, q)
    report = build_cash_flow(rows)
    report["start_date"] = start_date.isoformat()
    report["end_date"] = end_date.isoformat()
    return report


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

REPORT_REGISTRY = {
    "trial_balance": {
        "name": "Trial Balance",
        "description": "Net debit or credit balance of every posted account",
        "fn": trial_balance,
    },
    "general_ledger": {
        "name": "General Ledger",
        "description": "Per-account transactions with running balance",
        "fn": general_ledger,
    },
    "income_statement": {
        "name": "Income Statement",
        "description": "Revenue, expenses and net income, optionally against the prior period",
        "fn": income_statement,
    },
    "balance_sheet": {
        "name": "Balance Sheet",
        "description": "Assets, liabilities and equity including net income",
        "fn": balance_sheet,
    },
    "cash_flow": {
        "name": "Cash Flow Summary",
        "description": "Cash and bank inflow/outflow by account and source module",
        "fn": cash_flow,
    },
}
