"""Repositories over the ledger tables."""
