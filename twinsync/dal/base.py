"""Base repository with common CRUD operations."""

from typing import Any, Generic, TypeVar
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Base repository with common CRUD operations.

    Subclasses must set:
    - model: The SQLAlchemy model class
    - order_by_field: Field used for ordering in list_all() (default: "name")
    """

    model: type[T]
    order_by_field: str = "name"

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, id: str) -> T | None:
        """Get a row by primary key."""
        result = await self.session.execute(select(self.model).where(self.model.id == id))
        return result.scalar_one_or_none()

    async def list_all(self, limit: int = 100, offset: int = 0, **filters) -> list[T]:
        """List rows, filtering on any column passed as a keyword argument.

        Filters whose value is None are ignored.
        """
        query = select(self.model)

        for key, value in filters.items():
            if value is not None and hasattr(self.model, key):
                query = query.where(getattr(self.model, key) == value)

        order_by_attr = getattr(self.model, self.order_by_field, None)
        if order_by_attr is not None:
            query = query.order_by(order_by_attr)

        query = query.limit(limit).offset(offset)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count(self, **filters) -> int:
        """Count rows, optionally with filters."""
        query = select(func.count(self.model.id))

        for key, value in filters.items():
            if value is not None and hasattr(self.model, key):
                query = query.where(getattr(self.model, key) == value)

        result = await self.session.execute(query)
        return result.scalar() or 0

    async def create(self, data: dict[str, Any]) -> T:
        """Insert a row and flush so its id and defaults are populated."""
        entity = self.model(**{"id": str(uuid4()), **data})
        self.session.add(entity)
        await self.session.flush()
        return entity

    async def delete(self, id: str) -> bool:
        """Delete a row by id. Returns False when it did not exist."""
        entity = await self.get_by_id(id)
        if entity is None:
            return False
        await self.session.delete(entity)
        await self.session.flush()
        return True
