"""
Sales Ledger Store

Row-level access to the customer_sales ledger for the sync engine.
Only rows carrying a financial_id (the back-reference to a practice store
record) are ever loaded or written; manual rows are excluded in SQL.

Each write runs in its own session so that concurrent writes from the batch
executor never share a connection.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List

from sqlalchemy import text
from sqlalchemy.ext.asyncio import async_sessionmaker

from financial_sync.errors import LedgerWriteError
from financial_sync.models import LedgerRow

logger = logging.getLogger(__name__)

LEDGER_COLUMNS = """
    id, financial_id, organization_id, customer_id, product_name,
    quantity, unit_price, total_price, date, inv_id
"""

# Columns the sync engine is allowed to patch
UPDATABLE_COLUMNS = {
    "customer_id": "customer_id",
    "product_name": "product_name",
    "quantity": "quantity",
    "unit_price": "unit_price",
    "total_price": "total_price",
    "date": "date",
}


def row_to_ledger(row: Any) -> LedgerRow:
    """Convert a customer_sales result row into a LedgerRow."""
    return LedgerRow.from_dict({
        "id": row.id,
        "source_record_id": row.financial_id,
        "organization_id": row.organization_id,
        "customer_id": row.customer_id,
        "product_name": row.product_name,
        "quantity": row.quantity,
        "unit_price": row.unit_price,
        "total_price": row.total_price,
        "date": row.date,
        "invoice_id": row.inv_id,
    })


class LedgerStore:
    """customer_sales access: list / insert / update / delete."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def list(self, organization_id: str, start_date: date, end_date: date) -> List[LedgerRow]:
        query = text(f"""
            SELECT {LEDGER_COLUMNS}
            FROM public.customer_sales
            WHERE organization_id = :organization_id
              AND date >= :start_date
              AND date <= :end_date
              AND financial_id IS NOT NULL
            ORDER BY date ASC, financial_id ASC
        """)

        async with self._session_factory() as session:
            result = await session.execute(query, {
                "organization_id": str(organization_id),
                "start_date": start_date,
                "end_date": end_date,
            })
            rows = result.fetchall()

        return [row_to_ledger(row) for row in rows]

    async def insert(self, row: LedgerRow) -> LedgerRow:
        if not row.source_record_id:
            raise LedgerWriteError("Refusing to insert a ledger row without a source record id")

        query = text(f"""
            INSERT INTO public.customer_sales
            (financial_id, organization_id, customer_id, product_name,
             quantity, unit_price, total_price, date, created_at, updated_at)
            VALUES (:financial_id, :organization_id, :customer_id, :product_name,
                    :quantity, :unit_price, :total_price, :date, :now, :now)
            RETURNING {LEDGER_COLUMNS}
        """)

        params = {
            "financial_id": row.source_record_id,
            "organization_id": str(row.organization_id),
            "customer_id": row.customer_id,
            "product_name": row.product_name,
            "quantity": row.quantity,
            "unit_price": row.unit_price,
            "total_price": row.total_price,
            "date": row.date,
            "now": datetime.now(timezone.utc),
        }

        async with self._session_factory() as session:
            result = await session.execute(query, params)
            created = result.fetchone()
            await session.commit()

        if created is None:
            raise LedgerWriteError(f"Insert returned no row for source record {row.source_record_id}")
        return row_to_ledger(created)

    async def update(self, row_id: str, patch: Dict[str, Any]) -> LedgerRow:
        """Patch an uninvoiced row. Invoiced or missing rows raise LedgerWriteError."""
        updates = []
        params: Dict[str, Any] = {"row_id": str(row_id), "now": datetime.now(timezone.utc)}

        for key, value in patch.items():
            column = UPDATABLE_COLUMNS.get(key)
            if column is None:
                raise LedgerWriteError(f"Column {key} cannot be updated by the sync engine")
            updates.append(f"{column} = :{key}")
            params[key] = value

        if not updates:
            raise LedgerWriteError(f"Empty patch for ledger row {row_id}")

        query = text(f"""
            UPDATE public.customer_sales
            SET {', '.join(updates)}, updated_at = :now
            WHERE id = :row_id AND inv_id IS NULL
            RETURNING {LEDGER_COLUMNS}
        """)

        async with self._session_factory() as session:
            result = await session.execute(query, params)
            updated = result.fetchone()
            await session.commit()

        if updated is None:
            raise LedgerWriteError(f"Ledger row {row_id} not found or already invoiced")
        return row_to_ledger(updated)

    async def delete(self, row_id: str) -> None:
        query = text("""
            DELETE FROM public.customer_sales
            WHERE id = :row_id AND inv_id IS NULL AND financial_id IS NOT NULL
            RETURNING id
        """)

        async with self._session_factory() as session:
            result = await session.execute(query, {"row_id": str(row_id)})
            deleted = result.fetchone()
            await session.commit()

        if deleted is None:
            raise LedgerWriteError(f"Ledger row {row_id} not found or already invoiced")
