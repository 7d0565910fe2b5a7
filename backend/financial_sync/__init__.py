"""
Financial Sync Module

Synchronizes billable time entries from the practice-management store into
the customer_sales ledger.

Components:
- readers: Source/ledger readers and source row normalization
- mapper: Eligibility gate and source-to-ledger field mapping
- reconciler: Create/update/delete planning
- executor: Bounded-concurrency plan execution
- aggregator: SyncResult assembly
- customers: Customer id resolution from practice store customer names
- tracking: Pending plan storage for use_pending_only runs
- service: FinancialSyncService orchestration
- periods: Month-by-month runs
"""

from .errors import (
    FinancialSyncError,
    SourceUnavailable,
    SourceFormatError,
    LedgerUnavailable,
    DataIntegrityError,
    LedgerWriteError,
)
from .models import (
    SourceUsageRecord,
    LedgerRow,
    PlanItem,
    ReconciliationPlan,
    SyncOptions,
    ExecutionResult,
    SyncSummary,
    SyncChanges,
    SyncResult,
)
from .mapper import SKIP, round2, is_eligible, map_to_ledger_row
from .reconciler import reconcile
from .executor import execute, remaining_plan
from .customers import assign_customer_ids
from .service import FinancialSyncService, synchronize
from .periods import SyncPeriod, month_periods, sync_periods

__all__ = [
    'FinancialSyncError',
    'SourceUnavailable',
    'SourceFormatError',
    'LedgerUnavailable',
    'DataIntegrityError',
    'LedgerWriteError',
    'SourceUsageRecord',
    'LedgerRow',
    'PlanItem',
    'ReconciliationPlan',
    'SyncOptions',
    'ExecutionResult',
    'SyncSummary',
    'SyncChanges',
    'SyncResult',
    'SKIP',
    'round2',
    'is_eligible',
    'map_to_ledger_row',
    'reconcile',
    'execute',
    'remaining_plan',
    'assign_customer_ids',
    'FinancialSyncService',
    'synchronize',
    'SyncPeriod',
    'month_periods',
    'sync_periods',
]
