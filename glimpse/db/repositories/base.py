from typing import Any, Generic, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from glimpse.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Base class for data access layer.

    Repositories only flush; the calling service owns the transaction and
    decides when to commit or roll back.
    """

    def __init__(self, model: Type[ModelType]):
        self.model = model

    async def get(self, session: AsyncSession, pk: Any) -> ModelType | None:
        """Get a single record by primary key."""
        return await session.get(self.model, pk)

    async def get_by_attribute(self, session: AsyncSession, attribute: str | None = None, value: Any = None, expression: Any | None = None) -> ModelType | None:
        """Get a single record by an attribute or a complex expression."""
        if expression is not None:
            stmt = select(self.model).where(expression)
        elif attribute is not None:
            stmt = select(self.model).where(getattr(self.model, attribute) == value)
        else:
            raise ValueError("Either attribute/value or expression must be provided")
        # Bulk UPDATEs skip the identity map, so refresh what we load
        stmt = stmt.execution_options(populate_existing=True)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, session: AsyncSession, data: dict) -> ModelType:
        """Create a new record."""
        instance = self.model(**data)
        session.add(instance)
        await session.flush()
        return instance
