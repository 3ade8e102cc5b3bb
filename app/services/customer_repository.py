"""Read access to the customer collection for segmentation."""

from typing import Iterable, List, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.customer import Customer


class CustomerRepository:
    """Queryable customer collection backed by the database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_all(self) -> List[Customer]:
        """Snapshot of every customer, ordered by id."""
        result = await self.db.execute(select(Customer).order_by(Customer.id))
        return list(result.scalars().all())

    async def find_by_ids(self, customer_ids: Iterable[int]) -> List[Customer]:
        ids = list(customer_ids)
        if not ids:
            return []
        result = await self.db.execute(
            select(Customer).where(Customer.id.in_(ids)).order_by(Customer.id)
        )
        return list(result.scalars().all())

    async def page_by_ids(
        self, customer_ids: List[int], page: int, page_size: int
    ) -> Tuple[List[Customer], int]:
        """Page through a fixed id list, returning (customers, total)."""
        ordered = sorted(customer_ids)
        offset = (page - 1) * page_size
        return await self.find_by_ids(ordered[offset:offset + page_size]), len(ordered)
