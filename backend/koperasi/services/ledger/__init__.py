"""Cooperative ledger: chart of accounts, journals, auto-postings and reports."""
