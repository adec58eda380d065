"""Reference data for the ledger.

Creates (all idempotent):
- The standard chart of accounts, including the contra asset 1-405
- The five cash accounts (Kas I..V) with their opening balances
- Default savings and loan interest rates per cash account
- Monthly accounting periods for the current year

Run with ``python -m koperasi.seed``; the API also runs it at startup in
development.
"""

import asyncio
import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from koperasi.models.cash_account import CashAccount, CashAccountType
from koperasi.models.cooperative import InterestRate, RateTransactionType
from koperasi.models.ledger import AccountCategory, ChartOfAccount
from koperasi.services.ledger import period_service

logger = logging.getLogger(__name__)

A = AccountCategory.ASSETS
L = AccountCategory.LIABILITIES
E = AccountCategory.EQUITY
R = AccountCategory.REVENUE
X = AccountCategory.EXPENSES

# (code, name, category, account_type, is_debit, description)
STANDARD_COA: list[tuple[str, str, AccountCategory, str, bool, str]] = [
    ("1-101", "Kas Umum",                  A, "Cash",                     True,  "Kas untuk operasional umum koperasi"),
    ("1-102", "Kas Sosial",                A, "Cash",                     True,  "Kas untuk kegiatan sosial"),
    ("1-103", "Kas Pengadaan",             A, "Cash",                     True,  "Kas untuk pengadaan barang/jasa"),
    ("1-104", "Kas Hadiah",                A, "Cash",                     True,  "Kas untuk hadiah anggota"),
    ("1-105", "Bank",                      A, "Bank",                     True,  "Rekening bank koperasi"),
    ("1-201", "Piutang Anggota",           A, "Receivables",              True,  "Piutang pinjaman kepada anggota"),
    ("1-301", "Persediaan",                A, "Inventory",                True,  "Persediaan barang koperasi"),
    ("1-401", "Tanah",                     A, "Fixed Assets",             True,  "Tanah milik koperasi"),
    ("1-402", "Bangunan",                  A, "Fixed Assets",             True,  "Bangunan milik koperasi"),
    ("1-403", "Kendaraan",                 A, "Fixed Assets",             True,  "Kendaraan operasional koperasi"),
    ("1-404", "Peralatan",                 A, "Fixed Assets",             True,  "Peralatan kantor dan operasional"),
    ("1-405", "Akumulasi Penyusutan",      A, "Accumulated Depreciation", False, "Akumulasi penyusutan aset tetap"),
    ("2-101", "Hutang Usaha",              L, "Payables",                 False, "Hutang kepada supplier"),
    ("2-201", "Simpanan Pokok Anggota",    L, "Member Savings",           False, "Simpanan pokok dari anggota"),
    ("2-202", "Simpanan Wajib Anggota",    L, "Member Savings",           False, "Simpanan wajib dari anggota"),
    ("2-203", "Simpanan Sukarela Anggota", L, "Member Savings",           False, "Simpanan sukarela dari anggota"),
    ("2-204", "Simpanan Hari Raya",        L, "Member Savings",           False, "Simpanan khusus hari raya"),
    ("3-101", "Modal Sendiri",             E, "Capital",                  False, "Modal dasar koperasi"),
    ("3-201", "Laba Ditahan",              E, "Retained Earnings",        False, "Laba yang tidak dibagikan"),
    ("3-202", "SHU Tahun Berjalan",        E, "Current Year Earnings",    False, "Sisa Hasil Usaha tahun berjalan"),
    ("4-101", "Pendapatan Bunga Pinjaman", R, "Interest Income",          False, "Pendapatan dari bunga pinjaman anggota"),
    ("4-102", "Pendapatan Administrasi",   R, "Administrative Income",    False, "Pendapatan dari biaya administrasi"),
    ("4-201", "Pendapatan Lain-lain",      R, "Other Income",             False, "Pendapatan di luar usaha utama"),
    ("5-101", "Beban Gaji",                X, "Salary Expense",           True,  "Beban gaji karyawan koperasi"),
    ("5-102", "Beban Operasional",         X, "Operating Expense",        True,  "Beban operasional harian"),
    ("5-103", "Beban Listrik dan Air",     X, "Utility Expense",          True,  "Beban utilitas kantor"),
    ("5-104", "Beban Penyusutan",          X, "Depreciation Expense",     True,  "Beban penyusutan aset tetap"),
    ("5-105", "Beban Hadiah",              X, "Gift Expense",             True,  "Beban pemberian hadiah kepada anggota"),
    ("5-201", "Beban Lain-lain",           X, "Other Expense",            True,  "Beban di luar operasional utama"),
]

CONTRA_DESCRIPTIONS = {
    "1-405": "Reduces fixed assets; credit-normal inside the assets section",
}

# (code, name, type, opening_balance, description)
STANDARD_CASH_ACCOUNTS = [
    ("KAS-I",   "Kas Umum",      CashAccountType.I,   Decimal("50000000"),  "Kas untuk operasional umum koperasi"),
    ("KAS-II",  "Kas Sosial",    CashAccountType.II,  Decimal("10000000"),  "Kas untuk kegiatan sosial dan kesejahteraan anggota"),
    ("KAS-III", "Kas Pengadaan", CashAccountType.III, Decimal("30000000"),  "Kas untuk pengadaan barang dan jasa"),
    ("KAS-IV",  "Kas Hadiah",    CashAccountType.IV,  Decimal("5000000"),   "Kas untuk pemberian hadiah kepada anggota"),
    ("KAS-V",   "Bank",          CashAccountType.V,   Decimal("100000000"), "Rekening bank koperasi"),
]

DEFAULT_RATES = {
    RateTransactionType.SAVINGS: Decimal("8.00"),
    RateTransactionType.LOANS: Decimal("12.00"),
}


def contra_flag(category: AccountCategory, is_debit: bool) -> bool:
    """An account is contra when its side differs from its category's normal side."""
    return is_debit != (category in (A, X))


async def _seed_coa(db: AsyncSession) -> int:
    result = await db.execute(select(ChartOfAccount.code))
    existing = set(result.scalars().all())
    created = 0
    for code, name, category, account_type, is_debit, description in STANDARD_COA:
        if code in existing:
            continue
        db.add(ChartOfAccount(
            code=code,
            name=name,
            category=category,
            account_type=account_type,
            is_debit=is_debit,
            is_contra=contra_flag(category, is_debit),
            contra_description=CONTRA_DESCRIPTIONS.get(code),
            is_active=True,
            description=description,
        ))
        created += 1
    await db.flush()
    return created


async def _seed_cash_accounts(db: AsyncSession) -> list[CashAccount]:
    result = await db.execute(select(CashAccount))
    by_code = {acct.code: acct for acct in result.scalars().all()}
    for code, name, acct_type, opening, description in STANDARD_CASH_ACCOUNTS:
        if code in by_code:
            continue
        acct = CashAccount(
            code=code,
            name=name,
            type=acct_type,
            opening_balance=opening,
            current_balance=opening,
            description=description,
            is_active=True,
        )
        db.add(acct)
        by_code[code] = acct
    await db.flush()
    return list(by_code.values())


async def _seed_interest_rates(db: AsyncSession, accounts: list[CashAccount]) -> None:
    effective = date(date.today().year, 1, 1)
    for acct in accounts:
        for txn_type, rate in DEFAULT_RATES.items():
            existing = await db.execute(
                select(InterestRate.id).where(
                    InterestRate.cash_account_id == acct.id,
                    InterestRate.transaction_type == txn_type,
                ).limit(1)
            )
            if existing.scalar_one_or_none() is not None:
                continue
            db.add(InterestRate(
                cash_account_id=acct.id,
                transaction_type=txn_type,
                rate_percentage=rate,
                effective_date=effective,
            ))
    await db.flush()


async def _seed_periods(db: AsyncSession) -> None:
    year = date.today().year
    if await period_service.list_periods(db, year=year):
        return
    await period_service.create_fiscal_year(db, year)


async def seed_reference_data(db: AsyncSession) -> None:
    """Seed COA, cash accounts, interest rates and periods (idempotent)."""
    created = await _seed_coa(db)
    accounts = await _seed_cash_accounts(db)
    await _seed_interest_rates(db, accounts)
    await _seed_periods(db)
    await db.commit()
    logger.info("Ledger reference data applied (%d new COA rows)", created)


async def _main() -> None:
    from koperasi.database import async_session

    async with async_session() as db:
        await seed_reference_data(db)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(_main())
