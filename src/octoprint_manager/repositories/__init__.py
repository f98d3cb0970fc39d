"""Repository pattern implementations for data access."""

from .base import BaseRepository
from .containers import ContainerRepository

__all__ = ["BaseRepository", "ContainerRepository"]
