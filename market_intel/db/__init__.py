"""SQLite storage for the performance ledger."""
