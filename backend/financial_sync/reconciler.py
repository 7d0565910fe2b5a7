"""
Reconciler: diff source records against ledger rows.

Produces a ReconciliationPlan:
- to_create: eligible source records with no ledger row
- to_update: uninvoiced ledger rows whose mapped fields drifted
- to_delete: uninvoiced ledger rows whose source record is gone (orphans)
- skipped: source records failing the eligibility gate
- unchanged / protected: matches needing no write (protected = invoiced)

Pure function of its inputs; no I/O.
"""

import logging
from dataclasses import replace
from typing import Any, Dict, Iterable, List

from financial_sync.errors import DataIntegrityError
from financial_sync.mapper import SKIP, map_to_ledger_row, round2
from financial_sync.models import (
    LedgerRow,
    PlanItem,
    ReconciliationPlan,
    SourceUsageRecord,
    match_key,
)

logger = logging.getLogger(__name__)

MONEY_FIELDS = ("quantity", "unit_price", "total_price")
PLAIN_FIELDS = ("customer_id", "product_name", "date")


def diff_fields(mapped: LedgerRow, stored: LedgerRow) -> Dict[str, Any]:
    """Fields of ``mapped`` that differ from ``stored``; numbers compared at cent precision."""
    changes: Dict[str, Any] = {}
    for name in MONEY_FIELDS:
        new_value = getattr(mapped, name)
        if round2(new_value) != round2(getattr(stored, name)):
            changes[name] = new_value
    for name in PLAIN_FIELDS:
        new_value = getattr(mapped, name)
        if new_value != getattr(stored, name):
            changes[name] = new_value
    return changes


def index_ledger_rows(ledger_rows: Iterable[LedgerRow]) -> Dict[str, LedgerRow]:
    """
    Index ledger rows by source record id.

    Raises:
        DataIntegrityError: two rows reference the same source record
    """
    index: Dict[str, LedgerRow] = {}
    for row in ledger_rows:
        key = match_key(row.source_record_id)
        if not key:
            continue
        if key in index:
            raise DataIntegrityError(
                f"Ledger rows {index[key].id} and {row.id} both reference source record {row.source_record_id}",
                key=row.source_record_id,
            )
        index[key] = row
    return index


def reconcile(
    source_records: List[SourceUsageRecord],
    ledger_rows: List[LedgerRow]
) -> ReconciliationPlan:
    """Build the create/update/delete plan for one window."""
    index = index_ledger_rows(ledger_rows)
    plan = ReconciliationPlan(source_count=len(source_records), ledger_count=len(ledger_rows))
    visited = set()
    seen_sources = set()

    for source in source_records:
        key = match_key(source.id)
        if key in seen_sources:
            raise DataIntegrityError(f"Source record {source.id} returned more than once", key=source.id)
        seen_sources.add(key)

        existing = index.get(key)
        if existing is not None:
            visited.add(key)

        mapped = map_to_ledger_row(source)
        if mapped is SKIP:
            # Ineligible records are invisible to the ledger, never orphans
            plan.skipped.append(source)
            continue

        if existing is None:
            plan.to_create.append(PlanItem(source=source, mapped=mapped))
            continue

        item = PlanItem(
            source=source,
            mapped=replace(mapped, id=existing.id, invoice_id=existing.invoice_id),
            existing=existing,
            changes=diff_fields(mapped, existing),
        )

        if existing.is_invoiced:
            if item.changes:
                logger.warning(
                    f"Source record {source.id} changed after invoicing "
                    f"(invoice {existing.invoice_id}); ledger row {existing.id} left untouched",
                    extra={"changed_fields": sorted(item.changes)},
                )
            plan.protected.append(item)
        elif item.changes:
            plan.to_update.append(item)
        else:
            plan.unchanged.append(item)

    for key, row in index.items():
        if key in visited:
            continue
        if row.is_invoiced:
            logger.info(f"Orphaned ledger row {row.id} is invoiced ({row.invoice_id}); not a delete candidate")
            continue
        plan.to_delete.append(row)

    plan.to_create.sort(key=lambda item: item.sort_key)
    plan.to_update.sort(key=lambda item: item.sort_key)
    plan.unchanged.sort(key=lambda item: item.sort_key)
    plan.protected.sort(key=lambda item: item.sort_key)
    plan.to_delete.sort(key=lambda row: (row.date, match_key(row.source_record_id)))

    logger.info(
        f"Reconciliation plan: {len(plan.to_create)} create, {len(plan.to_update)} update, "
        f"{len(plan.to_delete)} orphaned, {len(plan.unchanged)} unchanged, "
        f"{len(plan.skipped)} skipped, {len(plan.protected)} invoiced"
    )
    return plan
