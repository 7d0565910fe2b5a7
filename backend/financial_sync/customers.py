"""
Customer resolution for ledger rows.

The practice store identifies customers by its own ids; the ledger keys
customer_sales.customer_id on the customers table. Before reconciling, each
eligible source record gets the customer id resolved from its customer name,
so the create path, the update path and the reconciler's customer_id
comparison all see the same value.

Preview runs only look customers up. A name with no customer yet resolves to
None until a live run creates it.
"""

import logging
from dataclasses import replace
from typing import Dict, Iterable, List

from sqlalchemy.exc import SQLAlchemyError

from financial_sync.errors import LedgerUnavailable
from financial_sync.mapper import is_eligible
from financial_sync.models import ReconciliationPlan, SourceUsageRecord

logger = logging.getLogger(__name__)


def customer_key(name: str) -> str:
    return (name or "").strip()


async def _resolve(directory, names: Iterable[str], organization_id: str, create: bool) -> Dict[str, str]:
    try:
        if create:
            return await directory.get_or_create(names, organization_id)
        return await directory.find(names)
    except (SQLAlchemyError, OSError) as e:
        raise LedgerUnavailable(f"Failed to resolve customers: {e}") from e


async def assign_customer_ids(
    records: List[SourceUsageRecord],
    directory,
    organization_id: str,
    create: bool = True,
) -> List[SourceUsageRecord]:
    """
    Replace ``customer_id`` on eligible records with the resolved customer id.

    Ineligible records are returned unchanged and never create customers.

    Raises:
        LedgerUnavailable: the customer tables could not be queried
    """
    eligible = [record for record in records if is_eligible(record)]
    names = {customer_key(record.customer_name) for record in eligible}
    names.discard("")

    customer_ids = await _resolve(directory, names, organization_id, create) if names else {}

    unnamed = sum(1 for record in eligible if not customer_key(record.customer_name))
    if unnamed:
        logger.warning(f"{unnamed} source records have no customer name; customer_id left empty")
    unresolved = names - set(customer_ids)
    if unresolved:
        logger.info(f"{len(unresolved)} customers not found; they are created on a live run")

    return [
        replace(record, customer_id=customer_ids.get(customer_key(record.customer_name)))
        if is_eligible(record) else record
        for record in records
    ]


async def assign_plan_customers(plan: ReconciliationPlan, directory, organization_id: str) -> ReconciliationPlan:
    """Resolve (creating as needed) customer ids for the pending writes of a stored plan."""
    items = plan.to_create + plan.to_update
    names = {customer_key(item.source.customer_name) for item in items}
    names.discard("")
    if not names:
        return plan

    customer_ids = await _resolve(directory, names, organization_id, create=True)
    for item in items:
        item.mapped = replace(item.mapped, customer_id=customer_ids.get(customer_key(item.source.customer_name)))
    return plan
