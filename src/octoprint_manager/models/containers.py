"""Container record model: the desired state of one printer container."""

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Container(Base):
    """Persisted record binding a container identity to a device and a host port."""

    __tablename__ = "containers"
    __table_args__ = (Index("ix_containers_port", "port", unique=True),)

    # Primary key - opaque UUID, immutable once created
    id: Mapped[str] = mapped_column(Text, primary_key=True)

    # Serial device identifier (symlink name under the device root)
    device: Mapped[str] = mapped_column(Text, nullable=False)

    # Host port mapped to the OctoPrint web UI
    port: Mapped[int] = mapped_column(Integer, nullable=False)

    # Operator-assigned display name; None is "unnamed", "" is a real name
    name: Mapped[str | None] = mapped_column(String, nullable=True)

    def __repr__(self) -> str:
        """String representation of Container."""
        return (
            f"<Container(id={self.id}, device={self.device}, "
            f"port={self.port}, name={self.name!r})>"
        )
