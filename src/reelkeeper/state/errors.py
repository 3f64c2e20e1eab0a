"""Ledger persistence errors."""


class LedgerError(Exception):
    """Base exception for ledger repository operations."""


class MissingLedgerError(LedgerError):
    """Raised when no ledger is stored under the requested id."""
