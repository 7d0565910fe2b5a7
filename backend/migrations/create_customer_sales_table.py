"""
Database Migration: Create Sales Ledger Table

Creates the customer_sales ledger written by the financial sync engine,
along with the customers it refers to and their organization links.
Rows with a non-null financial_id are owned by the sync engine; rows with a
null financial_id are manual entries and are never touched by it.
"""

import asyncio
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import text
from database.connection import get_engine


SQL_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS public.customers (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        business_name VARCHAR(255) NOT NULL,
        type VARCHAR(32) NOT NULL DEFAULT 'CUSTOMER',
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,

    # Customers are resolved by name
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_customers_business_name ON public.customers(business_name)",

    """
    CREATE TABLE IF NOT EXISTS public.customer_organization (
        customer_id UUID NOT NULL REFERENCES public.customers(id) ON DELETE CASCADE,
        organization_id UUID NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        PRIMARY KEY (customer_id, organization_id)
    )
    """,

    """
    CREATE TABLE IF NOT EXISTS public.customer_sales (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id UUID NOT NULL,
        customer_id UUID REFERENCES public.customers(id),
        product_id UUID,
        product_name VARCHAR(255) NOT NULL,
        quantity NUMERIC(12,4) NOT NULL DEFAULT 0,
        unit_price NUMERIC(12,2) NOT NULL DEFAULT 0,
        total_price NUMERIC(14,2) NOT NULL DEFAULT 0,
        date DATE NOT NULL,

        -- Back-reference to the practice-management time entry
        financial_id VARCHAR(64),

        -- Set once the row has been invoiced downstream
        inv_id VARCHAR(64),

        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),

        CONSTRAINT customer_sales_quantity_check CHECK (quantity >= 0),
        CONSTRAINT customer_sales_unit_price_check CHECK (unit_price >= 0)
    )
    """,

    # One ledger row per source record (case-insensitive, manual rows excluded)
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_customer_sales_financial_id
        ON public.customer_sales (organization_id, lower(financial_id))
        WHERE financial_id IS NOT NULL
    """,

    "CREATE INDEX IF NOT EXISTS idx_customer_sales_org_date ON public.customer_sales(organization_id, date)",
    "CREATE INDEX IF NOT EXISTS idx_customer_sales_inv ON public.customer_sales(inv_id)",
]


async def create_tables():
    """Create the sales ledger and customer tables."""
    print("Creating customer and customer_sales ledger tables...")

    async with get_engine().begin() as conn:
        for i, sql in enumerate(SQL_STATEMENTS):
            try:
                await conn.execute(text(sql))
                print(f"  ✓ Statement {i+1}/{len(SQL_STATEMENTS)} executed")
            except Exception as e:
                if "already exists" in str(e).lower():
                    print(f"  ✓ Statement {i+1}/{len(SQL_STATEMENTS)} (already exists)")
                else:
                    print(f"  ✗ Statement {i+1}/{len(SQL_STATEMENTS)} failed: {e}")
                    raise

        print("\n✅ customer_sales ledger ready")


if __name__ == "__main__":
    asyncio.run(create_tables())
