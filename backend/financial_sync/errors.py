"""
Financial sync error taxonomy.

Reader-level errors and DataIntegrityError are fatal for a run: they abort
before any write and surface as ``SyncResult(success=False, error=...)``.
LedgerWriteError is per-record and ends up in ``changes.errors``.
"""

from typing import Optional


class FinancialSyncError(Exception):
    """Base exception for the financial sync engine."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class SourceUnavailable(FinancialSyncError):
    """Practice-management store could not be reached or authenticated."""
    pass


class SourceFormatError(FinancialSyncError):
    """A source row could not be normalized."""
    def __init__(self, message: str, field: Optional[str] = None, record_id: Optional[str] = None):
        self.field = field
        self.record_id = record_id
        super().__init__(message)


class LedgerUnavailable(FinancialSyncError):
    """Sales ledger could not be read."""
    pass


class DataIntegrityError(FinancialSyncError):
    """Duplicate source/ledger mapping; indicates upstream corruption."""
    def __init__(self, message: str, key: Optional[str] = None):
        self.key = key
        super().__init__(message)


class LedgerWriteError(FinancialSyncError):
    """A single ledger insert/update/delete failed."""
    pass
