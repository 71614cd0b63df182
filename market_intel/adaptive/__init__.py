"""Adaptive score adjustment driven by the performance ledger."""
