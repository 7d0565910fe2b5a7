"""Assemble SyncResult envelopes from a plan and its execution outcome."""

from typing import List, Optional

from financial_sync.models import (
    ExecutionResult,
    ReconciliationPlan,
    SyncChanges,
    SyncOptions,
    SyncResult,
    SyncSummary,
)

SYNC_TYPE_FULL = "full_review"
SYNC_TYPE_PENDING = "pending_only"


def build_notes(plan: ReconciliationPlan, options: SyncOptions) -> List[str]:
    notes = []
    for item in plan.protected:
        if item.changes:
            notes.append(
                f"Source record {item.source.id} changed ({', '.join(sorted(item.changes))}) "
                f"but ledger row {item.existing.id} is invoiced ({item.existing.invoice_id}); not updated"
            )
    if plan.to_delete and not options.delete_orphaned:
        notes.append(
            f"{len(plan.to_delete)} orphaned ledger rows found; not deleted (delete_orphaned is off)"
        )
    return notes


def build_sync_result(
    plan: ReconciliationPlan,
    execution: ExecutionResult,
    options: SyncOptions,
    duration_ms: int,
    sync_type: str = SYNC_TYPE_FULL,
) -> SyncResult:
    summary = SyncSummary(
        dev_records_count=plan.source_count,
        customer_sales_count=plan.ledger_count,
        to_create=len(plan.to_create),
        to_update=len(plan.to_update),
        to_delete=len(plan.to_delete) if options.delete_orphaned else 0,
        unchanged=len(plan.unchanged),
        skipped=len(plan.skipped),
        protected=len(plan.protected),
        sync_type=sync_type,
    )
    changes = SyncChanges(
        created=[row.to_dict() for row in execution.created],
        updated=[row.to_dict() for row in execution.updated],
        deleted=[row.to_dict() for row in execution.deleted],
        orphaned=[row.to_dict() for row in execution.orphaned],
        errors=list(execution.errors),
        notes=build_notes(plan, options),
    )
    return SyncResult(
        success=True,
        summary=summary,
        changes=changes,
        duration=duration_ms,
        dry_run=options.dry_run,
    )


def build_failure_result(
    error: str,
    duration_ms: int,
    dry_run: bool = False,
    error_type: Optional[str] = None,
) -> SyncResult:
    return SyncResult(success=False, error=error, error_type=error_type, duration=duration_ms, dry_run=dry_run)
