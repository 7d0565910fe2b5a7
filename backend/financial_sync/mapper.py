"""
Field mapper: SourceUsageRecord -> LedgerRow.

Monetary totals are rounded to cents with round-half-to-even. The same
``round2`` is used on the create path, the update path and in the
reconciler's comparison, so re-running a sync never oscillates a value.
"""

from decimal import Decimal, ROUND_HALF_EVEN
from typing import Any, Union

from financial_sync.models import LedgerRow, SourceUsageRecord

CENT = Decimal("0.01")
UNLABELED_PRODUCT = "Unlabeled"


class _Skip:
    """Sentinel returned for records that fail the eligibility gate."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SKIP"

    def __bool__(self) -> bool:
        return False


SKIP = _Skip()


def round2(value: Any) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_EVEN)


def is_eligible(source: SourceUsageRecord) -> bool:
    return bool(source.billable) and not source.do_not_bill and not source.omit


def product_name_for(source: SourceUsageRecord) -> str:
    return source.description or source.project_label or UNLABELED_PRODUCT


def map_to_ledger_row(source: SourceUsageRecord) -> Union[LedgerRow, _Skip]:
    """Map a source record to the ledger row it should produce, or SKIP."""
    if not is_eligible(source):
        return SKIP

    quantity = source.quantity
    unit_price = source.unit_rate
    return LedgerRow(
        source_record_id=source.id,
        organization_id=source.organization_id,
        customer_id=source.customer_id,
        product_name=product_name_for(source),
        quantity=quantity,
        unit_price=unit_price,
        total_price=round2(quantity * unit_price),
        date=source.date,
    )
