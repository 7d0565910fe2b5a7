"""
Batch executor: apply a ReconciliationPlan to the ledger.

Every create/update/delete is an independent write issued through a bounded
pool (asyncio.Semaphore). A failed write becomes an entry in
``ExecutionResult.errors``; the remaining writes still run. Output lists keep
plan order regardless of completion order.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from financial_sync.models import ExecutionResult, LedgerRow, PlanItem, ReconciliationPlan, SyncOptions, match_key

logger = logging.getLogger(__name__)

DEFAULT_WRITE_CONCURRENCY = 5

WRITE_CREATE = "create"
WRITE_UPDATE = "update"
WRITE_DELETE = "delete"


def update_patch(item: PlanItem) -> Dict[str, Any]:
    """Full set of engine-owned columns, so total_price always matches quantity * unit_price."""
    mapped = item.mapped
    return {
        "customer_id": mapped.customer_id,
        "product_name": mapped.product_name,
        "quantity": mapped.quantity,
        "unit_price": mapped.unit_price,
        "total_price": mapped.total_price,
        "date": mapped.date,
    }


def _error_entry(kind: str, source_record_id: Optional[str], ledger_row_id: Optional[str], error: Exception) -> Dict[str, Any]:
    return {
        "type": kind,
        "source_record_id": source_record_id,
        "ledger_row_id": ledger_row_id,
        "error": str(error) or error.__class__.__name__,
    }


def remaining_plan(plan: ReconciliationPlan, execution: ExecutionResult) -> ReconciliationPlan:
    """
    The part of ``plan`` still outstanding after a live run: only the writes
    that failed. Writes that succeeded, and deletes that were never attempted,
    are dropped so a pending-only rerun cannot replay them.
    """
    failed = {
        (entry["type"], match_key(entry.get("source_record_id")), entry.get("ledger_row_id"))
        for entry in execution.errors
    }
    return ReconciliationPlan(
        to_create=[
            item for item in plan.to_create
            if (WRITE_CREATE, match_key(item.source.id), None) in failed
        ],
        to_update=[
            item for item in plan.to_update
            if (WRITE_UPDATE, match_key(item.source.id), item.existing.id) in failed
        ],
        to_delete=[
            row for row in plan.to_delete
            if (WRITE_DELETE, match_key(row.source_record_id), row.id) in failed
        ],
        source_count=plan.source_count,
        ledger_count=plan.ledger_count,
    )


async def execute(
    plan: ReconciliationPlan,
    ledger,
    options: SyncOptions,
    concurrency: int = DEFAULT_WRITE_CONCURRENCY,
) -> ExecutionResult:
    """
    Apply ``plan`` to ``ledger``.

    Dry run returns the would-be rows and never touches ``ledger``.
    Orphan candidates are always reported in ``orphaned``; they are only
    deleted when ``options.delete_orphaned`` is set.
    """
    result = ExecutionResult(orphaned=list(plan.to_delete))
    deletions = list(plan.to_delete) if options.delete_orphaned else []

    if options.dry_run:
        result.created = [item.mapped for item in plan.to_create]
        result.updated = [item.mapped for item in plan.to_update]
        result.deleted = deletions
        return result

    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def run_write(
        kind: str,
        source_record_id: Optional[str],
        ledger_row_id: Optional[str],
        write: Callable[[], Awaitable[Any]],
    ) -> Tuple[bool, Any]:
        async with semaphore:
            try:
                return True, await write()
            except Exception as e:
                logger.error(
                    f"Ledger {kind} failed for source record {source_record_id}: {e}",
                    extra={"write_type": kind, "ledger_row_id": ledger_row_id},
                )
                return False, _error_entry(kind, source_record_id, ledger_row_id, e)

    def create_write(item: PlanItem):
        return lambda: ledger.insert(item.mapped)

    def update_write(item: PlanItem):
        return lambda: ledger.update(item.existing.id, update_patch(item))

    def delete_write(row: LedgerRow):
        async def _delete():
            await ledger.delete(row.id)
            return row
        return _delete

    writes: List[Tuple[str, Awaitable[Tuple[bool, Any]]]] = []
    for item in plan.to_create:
        writes.append((WRITE_CREATE, run_write(WRITE_CREATE, item.source.id, None, create_write(item))))
    for item in plan.to_update:
        writes.append((WRITE_UPDATE, run_write(WRITE_UPDATE, item.source.id, item.existing.id, update_write(item))))
    for row in deletions:
        writes.append((WRITE_DELETE, run_write(WRITE_DELETE, row.source_record_id, row.id, delete_write(row))))

    outcomes = await asyncio.gather(*(coro for _, coro in writes))

    buckets = {WRITE_CREATE: result.created, WRITE_UPDATE: result.updated, WRITE_DELETE: result.deleted}
    for (kind, _), (ok, value) in zip(writes, outcomes):
        if ok:
            buckets[kind].append(value)
        else:
            result.errors.append(value)

    logger.info(
        f"Batch applied: {len(result.created)} created, {len(result.updated)} updated, "
        f"{len(result.deleted)} deleted, {len(result.errors)} errors"
    )
    return result
