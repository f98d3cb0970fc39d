"""Host port allocation for new containers."""

from sqlalchemy.exc import SQLAlchemyError

from octoprint_manager.config import get_settings
from octoprint_manager.models.database import DatabaseManager, get_db_manager
from octoprint_manager.repositories.containers import ContainerRepository
from octoprint_manager.utils import get_logger
from octoprint_manager.utils.exceptions import PortExhaustedError, RecordStoreError

logger = get_logger(__name__)


class PortAllocator:
    """Derives the next host port from the persisted container records.

    The next port is one above the highest port in the store, or the base
    port when the store is empty. Ports freed by deleted containers are not
    reused. The allocator reads a snapshot and holds no lock of its own;
    callers serialize allocation and insertion.
    """

    def __init__(
        self,
        db_manager: DatabaseManager | None = None,
        base: int | None = None,
        ceiling: int | None = None,
    ) -> None:
        """
        Initialize port allocator.

        Args:
            db_manager: Database manager for the record store
            base: Port returned for an empty store
            ceiling: Highest allowed port, None for unbounded
        """
        settings = get_settings()
        self.db_manager = db_manager or get_db_manager()
        self.base = settings.port_base if base is None else base
        self.ceiling = settings.port_ceiling if ceiling is None else ceiling

    def compute_next_port(self, max_port: int | None) -> int:
        """
        Compute the next port from the current maximum.

        Args:
            max_port: Highest port in the store, None when empty

        Returns:
            Next port to hand out

        Raises:
            PortExhaustedError: If a ceiling is set and would be exceeded
        """
        port = self.base if max_port is None else max_port + 1
        if self.ceiling is not None and port > self.ceiling:
            raise PortExhaustedError(self.ceiling)
        return port

    async def next_port(self) -> int:
        """Read the store and return the next free port."""
        try:
            async with self.db_manager.get_session() as session:
                max_port = await ContainerRepository(session).max_port()
        except SQLAlchemyError as e:
            raise RecordStoreError("max port", original_error=e) from e

        port = self.compute_next_port(max_port)
        logger.debug("Allocated port", extra={"port": port, "max_port": max_port})
        return port
