"""
Financial Sync Models

Canonical shapes used by the sync engine:
- SourceUsageRecord: a normalized billable time/usage entry from the
  practice-management store
- LedgerRow: a row in the customer_sales ledger
- PlanItem / ReconciliationPlan: output of the reconciler
- ExecutionResult: output of the batch executor
- SyncResult: response envelope returned to callers
"""

from dataclasses import dataclass, field, asdict
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def _money(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if value is None or value == "":
        return Decimal("0")
    return Decimal(str(value))


def _as_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def match_key(record_id: Optional[str]) -> str:
    """Key used to pair source records with ledger rows (case-insensitive)."""
    return str(record_id or "").strip().lower()


@dataclass(frozen=True)
class SourceUsageRecord:
    """Billable usage entry as read from the practice-management store."""
    id: str
    organization_id: str
    customer_id: Optional[str]
    project_id: Optional[str]
    date: date
    quantity: Decimal
    unit_rate: Decimal
    description: str = ""
    project_label: str = ""
    customer_name: str = ""
    billable: bool = True
    do_not_bill: bool = False
    omit: bool = False
    already_billed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        data["quantity"] = float(self.quantity)
        data["unit_rate"] = float(self.unit_rate)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceUsageRecord":
        return cls(
            id=data["id"],
            organization_id=data["organization_id"],
            customer_id=data.get("customer_id"),
            project_id=data.get("project_id"),
            date=_as_date(data["date"]),
            quantity=_money(data.get("quantity")),
            unit_rate=_money(data.get("unit_rate")),
            description=data.get("description") or "",
            project_label=data.get("project_label") or "",
            customer_name=data.get("customer_name") or "",
            billable=bool(data.get("billable", True)),
            do_not_bill=bool(data.get("do_not_bill", False)),
            omit=bool(data.get("omit", False)),
            already_billed=bool(data.get("already_billed", False)),
        )


@dataclass(frozen=True)
class LedgerRow:
    """Row of the customer_sales ledger. ``id`` is None until inserted."""
    source_record_id: Optional[str]
    organization_id: str
    customer_id: Optional[str]
    product_name: str
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal
    date: date
    id: Optional[str] = None
    invoice_id: Optional[str] = None

    @property
    def is_invoiced(self) -> bool:
        return self.invoice_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_record_id": self.source_record_id,
            "organization_id": self.organization_id,
            "customer_id": self.customer_id,
            "product_name": self.product_name,
            "quantity": float(self.quantity),
            "unit_price": float(self.unit_price),
            "total_price": float(self.total_price),
            "date": self.date.isoformat(),
            "invoice_id": self.invoice_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerRow":
        return cls(
            id=str(data["id"]) if data.get("id") is not None else None,
            source_record_id=data.get("source_record_id"),
            organization_id=str(data["organization_id"]),
            customer_id=str(data["customer_id"]) if data.get("customer_id") is not None else None,
            product_name=data.get("product_name") or "",
            quantity=_money(data.get("quantity")),
            unit_price=_money(data.get("unit_price")),
            total_price=_money(data.get("total_price")),
            date=_as_date(data["date"]),
            invoice_id=data.get("invoice_id"),
        )


@dataclass
class PlanItem:
    """A source record paired with its mapped row and (for matches) the stored row."""
    source: SourceUsageRecord
    mapped: LedgerRow
    existing: Optional[LedgerRow] = None
    changes: Dict[str, Any] = field(default_factory=dict)

    @property
    def sort_key(self):
        return (self.mapped.date, match_key(self.source.id))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source.to_dict(),
            "mapped": self.mapped.to_dict(),
            "existing": self.existing.to_dict() if self.existing else None,
            "changes": {k: _jsonable(v) for k, v in self.changes.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlanItem":
        existing = data.get("existing")
        return cls(
            source=SourceUsageRecord.from_dict(data["source"]),
            mapped=LedgerRow.from_dict(data["mapped"]),
            existing=LedgerRow.from_dict(existing) if existing else None,
            changes=dict(data.get("changes") or {}),
        )


@dataclass
class ReconciliationPlan:
    """
    Create/update/delete decisions for one sync window.

    ``protected`` holds matches against invoiced ledger rows; they are never
    written. ``to_delete`` holds orphan candidates; deletion is gated by
    ``SyncOptions.delete_orphaned`` at execution time.
    """
    to_create: List[PlanItem] = field(default_factory=list)
    to_update: List[PlanItem] = field(default_factory=list)
    to_delete: List[LedgerRow] = field(default_factory=list)
    skipped: List[SourceUsageRecord] = field(default_factory=list)
    unchanged: List[PlanItem] = field(default_factory=list)
    protected: List[PlanItem] = field(default_factory=list)
    source_count: int = 0
    ledger_count: int = 0

    @property
    def has_pending_writes(self) -> bool:
        return bool(self.to_create or self.to_update or self.to_delete)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "to_create": [item.to_dict() for item in self.to_create],
            "to_update": [item.to_dict() for item in self.to_update],
            "to_delete": [row.to_dict() for row in self.to_delete],
            "skipped": [record.to_dict() for record in self.skipped],
            "unchanged": [item.to_dict() for item in self.unchanged],
            "protected": [item.to_dict() for item in self.protected],
            "source_count": self.source_count,
            "ledger_count": self.ledger_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReconciliationPlan":
        return cls(
            to_create=[PlanItem.from_dict(i) for i in data.get("to_create", [])],
            to_update=[PlanItem.from_dict(i) for i in data.get("to_update", [])],
            to_delete=[LedgerRow.from_dict(r) for r in data.get("to_delete", [])],
            skipped=[SourceUsageRecord.from_dict(r) for r in data.get("skipped", [])],
            unchanged=[PlanItem.from_dict(i) for i in data.get("unchanged", [])],
            protected=[PlanItem.from_dict(i) for i in data.get("protected", [])],
            source_count=data.get("source_count", 0),
            ledger_count=data.get("ledger_count", 0),
        )


@dataclass
class SyncOptions:
    dry_run: bool = False
    delete_orphaned: bool = False
    use_pending_only: bool = False


@dataclass
class ExecutionResult:
    """Outcome of applying (or simulating) a plan."""
    created: List[LedgerRow] = field(default_factory=list)
    updated: List[LedgerRow] = field(default_factory=list)
    deleted: List[LedgerRow] = field(default_factory=list)
    orphaned: List[LedgerRow] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


# ==================== RESPONSE ENVELOPE ====================

class SyncSummary(BaseModel):
    dev_records_count: int = 0
    customer_sales_count: int = 0
    to_create: int = 0
    to_update: int = 0
    to_delete: int = 0
    unchanged: int = 0
    skipped: int = 0
    protected: int = 0
    sync_type: str = "full_review"


class SyncChanges(BaseModel):
    created: List[Dict[str, Any]] = Field(default_factory=list)
    updated: List[Dict[str, Any]] = Field(default_factory=list)
    deleted: List[Dict[str, Any]] = Field(default_factory=list)
    orphaned: List[Dict[str, Any]] = Field(default_factory=list)
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)


class SyncResult(BaseModel):
    """Top-level result of a synchronization call."""
    success: bool
    summary: Optional[SyncSummary] = None
    changes: Optional[SyncChanges] = None
    duration: Optional[int] = Field(default=None, description="Wall-clock milliseconds")
    dry_run: bool = False
    error: Optional[str] = None
    error_type: Optional[str] = Field(default=None, description="Exception class name for fatal errors")
