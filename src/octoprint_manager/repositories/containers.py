"""Repository for Container record operations."""

from typing import Set

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from octoprint_manager.models.containers import Container

from .base import BaseRepository


class ContainerRepository(BaseRepository[Container]):
    """Repository for container record CRUD operations."""

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize container repository.

        Args:
            session: Database session
        """
        super().__init__(session, Container)

    async def max_port(self) -> int | None:
        """
        Get the highest port held by any record.

        Returns:
            Highest port, or None when the store is empty
        """
        result = await self.session.execute(select(func.max(Container.port)))
        return result.scalar_one_or_none()

    async def devices_in_use(self) -> Set[str]:
        """Get the device identifiers referenced by any record."""
        result = await self.session.execute(select(Container.device).distinct())
        return set(result.scalars().all())

    async def rename(self, container_id: str, name: str | None) -> Container | None:
        """
        Set the display name of a record.

        Args:
            container_id: Container identity
            name: New display name, or None to clear it

        Returns:
            Updated record or None if not found
        """
        container = await self.get(container_id)
        if container:
            container.name = name
            await self.session.flush()
            await self.session.refresh(container)
        return container

    async def delete_by_id(self, container_id: str) -> bool:
        """
        Delete the record for an identity.

        Args:
            container_id: Container identity

        Returns:
            True if a record was deleted
        """
        result = await self.session.execute(delete(Container).where(Container.id == container_id))
        await self.session.flush()
        return result.rowcount > 0
