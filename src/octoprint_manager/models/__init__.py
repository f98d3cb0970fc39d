"""SQLAlchemy models for OctoPrint Manager."""

from .base import Base
from .containers import Container

__all__ = ["Base", "Container"]
