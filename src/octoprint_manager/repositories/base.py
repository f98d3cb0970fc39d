"""Base repository class for common CRUD operations."""

from typing import Generic, List, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from octoprint_manager.models.base import Base

T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """Base repository with common CRUD operations."""

    def __init__(self, session: AsyncSession, model: type[T]) -> None:
        """
        Initialize repository.

        Args:
            session: Database session
            model: SQLAlchemy model class
        """
        self.session = session
        self.model = model

    async def get(self, id: str | int) -> T | None:
        """Get entity by primary key, or None if absent."""
        return await self.session.get(self.model, id)

    async def list_all(self) -> List[T]:
        """
        Get all entities in primary-key order.

        Returns:
            List of entities
        """
        pk = self.model.__mapper__.primary_key
        result = await self.session.execute(select(self.model).order_by(*pk))
        return list(result.scalars().all())

    async def create(self, entity: T) -> T:
        """
        Insert a new entity.

        Args:
            entity: Entity to create

        Returns:
            Created entity

        Raises:
            IntegrityError: If a unique or primary-key constraint is violated
        """
        self.session.add(entity)
        await self.session.flush()
        await self.session.refresh(entity)
        return entity
