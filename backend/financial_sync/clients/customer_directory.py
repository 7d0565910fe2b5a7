"""
Customer Directory

Resolves practice store customer names to rows of the customers table, the
key customer_sales.customer_id refers to. Customers are matched on
business_name; a resolved customer is linked to the organization through
customer_organization.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List

from sqlalchemy import text
from sqlalchemy.ext.asyncio import async_sessionmaker

logger = logging.getLogger(__name__)

CUSTOMER_TYPE = "CUSTOMER"


def _distinct_names(names: Iterable[str]) -> List[str]:
    return sorted({name.strip() for name in names if name and name.strip()})


class CustomerDirectory:
    """customers / customer_organization access: find / get_or_create."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def _lookup(self, session, names: List[str]) -> Dict[str, str]:
        query = text("""
            SELECT id, business_name
            FROM public.customers
            WHERE business_name = ANY(:names)
        """)
        result = await session.execute(query, {"names": names})
        return {row.business_name: str(row.id) for row in result.fetchall()}

    async def find(self, names: Iterable[str]) -> Dict[str, str]:
        """Existing customer ids by name. Never writes."""
        names = _distinct_names(names)
        if not names:
            return {}

        async with self._session_factory() as session:
            return await self._lookup(session, names)

    async def get_or_create(self, names: Iterable[str], organization_id: str) -> Dict[str, str]:
        """
        Customer ids by name, creating missing customers.

        Every returned customer is linked to ``organization_id``.
        """
        names = _distinct_names(names)
        if not names:
            return {}

        insert_customer = text("""
            INSERT INTO public.customers (business_name, type, created_at, updated_at)
            VALUES (:business_name, :type, :now, :now)
            ON CONFLICT (business_name) DO UPDATE SET business_name = EXCLUDED.business_name
            RETURNING id
        """)
        link_customer = text("""
            INSERT INTO public.customer_organization (customer_id, organization_id)
            VALUES (:customer_id, :organization_id)
            ON CONFLICT (customer_id, organization_id) DO NOTHING
        """)

        async with self._session_factory() as session:
            customer_ids = await self._lookup(session, names)

            for name in names:
                if name in customer_ids:
                    continue
                result = await session.execute(insert_customer, {
                    "business_name": name,
                    "type": CUSTOMER_TYPE,
                    "now": datetime.now(timezone.utc),
                })
                customer_ids[name] = str(result.fetchone().id)
                logger.info(f"Created customer {name!r} ({customer_ids[name]})")

            for customer_id in sorted(set(customer_ids.values())):
                await session.execute(link_customer, {
                    "customer_id": customer_id,
                    "organization_id": str(organization_id),
                })

            await session.commit()

        return customer_ids
