"""
Shared fixtures for the financial sync tests.

Provides record factories and in-memory source/ledger stores that behave like
PracticeStoreClient and LedgerStore without any network or database.
"""

import uuid
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set

from financial_sync.errors import LedgerWriteError
from financial_sync.models import LedgerRow, SourceUsageRecord, match_key

ORG_ID = "11111111-2222-3333-4444-555555555555"


def make_source(
    record_id: str = "rec-1",
    record_date: date = date(2024, 10, 1),
    quantity: str = "1.5",
    unit_rate: str = "100.00",
    description: str = "Bookkeeping",
    **overrides,
) -> SourceUsageRecord:
    fields = dict(
        id=record_id,
        organization_id=ORG_ID,
        customer_id="cust-1",
        project_id="proj-1",
        date=record_date,
        quantity=Decimal(quantity),
        unit_rate=Decimal(unit_rate),
        description=description,
        project_label="Monthly Accounts",
        customer_name="Acme Pty Ltd",
    )
    fields.update(overrides)
    return SourceUsageRecord(**fields)


def make_row(
    source_record_id: str = "rec-1",
    row_id: Optional[str] = None,
    record_date: date = date(2024, 10, 1),
    quantity: str = "1.5",
    unit_price: str = "100.00",
    total_price: Optional[str] = None,
    product_name: str = "Bookkeeping",
    invoice_id: Optional[str] = None,
    **overrides,
) -> LedgerRow:
    total = Decimal(total_price) if total_price is not None else Decimal(quantity) * Decimal(unit_price)
    fields = dict(
        id=row_id or f"row-{source_record_id}",
        source_record_id=source_record_id,
        organization_id=ORG_ID,
        customer_id="cust-1",
        product_name=product_name,
        quantity=Decimal(quantity),
        unit_price=Decimal(unit_price),
        total_price=total.quantize(Decimal("0.01")),
        date=record_date,
        invoice_id=invoice_id,
    )
    fields.update(overrides)
    return LedgerRow(**fields)


def make_raw(record_id: str = "rec-1", **fields) -> Dict[str, Any]:
    """Raw practice store fieldData."""
    raw = {
        "__ID": record_id,
        "_custID": "cust-1",
        "_projectID": "proj-1",
        "DateStart": "10/01/2024",
        "Billable_Time_Rounded": "1.5",
        "Hourly_Rate": "100",
        "Work Performed": "Bookkeeping",
        "customers_Projects::projectName": "Monthly Accounts",
        "Customers::Name": "Acme Pty Ltd",
        "f_billable": "1",
        "f_dnb": "",
        "f_omit": "",
        "f_billed": "",
    }
    raw.update(fields)
    return raw


class FakeSourceStore:
    """In-memory stand-in for PracticeStoreClient."""

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None, error: Optional[Exception] = None):
        self.rows = list(rows or [])
        self.error = error
        self.list_calls = 0
        self.closed = False

    async def list(self, organization_id, start_date, end_date):
        self.list_calls += 1
        if self.error is not None:
            raise self.error
        return [dict(r) for r in self.rows]

    async def close(self):
        self.closed = True


class FakeLedgerStore:
    """In-memory stand-in for LedgerStore with write failure injection."""

    def __init__(self, rows: Optional[List[LedgerRow]] = None, list_error: Optional[Exception] = None):
        self.rows: Dict[str, LedgerRow] = {row.id: row for row in rows or []}
        self.list_error = list_error
        self.fail_source_ids: Set[str] = set()
        self.list_calls = 0
        self.inserts: List[LedgerRow] = []
        self.updates: List[tuple] = []
        self.deletes: List[str] = []

    @property
    def write_count(self) -> int:
        return len(self.inserts) + len(self.updates) + len(self.deletes)

    def _maybe_fail(self, source_record_id):
        if match_key(source_record_id) in self.fail_source_ids:
            raise LedgerWriteError(f"simulated failure for {source_record_id}")

    async def list(self, organization_id, start_date, end_date):
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return sorted(
            (
                row for row in self.rows.values()
                if row.organization_id == organization_id and start_date <= row.date <= end_date
            ),
            key=lambda row: (row.date, row.source_record_id or ""),
        )

    async def insert(self, row: LedgerRow) -> LedgerRow:
        self._maybe_fail(row.source_record_id)
        created = replace(row, id=str(uuid.uuid4()), invoice_id=None)
        self.rows[created.id] = created
        self.inserts.append(created)
        return created

    async def update(self, row_id: str, patch: Dict[str, Any]) -> LedgerRow:
        stored = self.rows.get(row_id)
        if stored is None or stored.invoice_id is not None:
            raise LedgerWriteError(f"Ledger row {row_id} not found or already invoiced")
        self._maybe_fail(stored.source_record_id)
        updated = replace(stored, **patch)
        self.rows[row_id] = updated
        self.updates.append((row_id, patch))
        return updated

    async def delete(self, row_id: str) -> None:
        stored = self.rows.get(row_id)
        if stored is None or stored.invoice_id is not None:
            raise LedgerWriteError(f"Ledger row {row_id} not found or already invoiced")
        self._maybe_fail(stored.source_record_id)
        del self.rows[row_id]
        self.deletes.append(row_id)


class FakeCustomerDirectory:
    """In-memory stand-in for CustomerDirectory."""

    def __init__(self, customers: Optional[Dict[str, str]] = None, error: Optional[Exception] = None):
        self.customers: Dict[str, str] = dict(customers or {})
        self.error = error
        self.created: List[str] = []
        self.links: Set[tuple] = set()
        self.find_calls = 0

    async def find(self, names):
        self.find_calls += 1
        if self.error is not None:
            raise self.error
        return {name: self.customers[name] for name in names if name in self.customers}

    async def get_or_create(self, names, organization_id):
        if self.error is not None:
            raise self.error
        resolved = {}
        for name in sorted(names):
            if name not in self.customers:
                self.customers[name] = f"cust-{uuid.uuid4()}"
                self.created.append(name)
            resolved[name] = self.customers[name]
            self.links.add((resolved[name], organization_id))
        return resolved
