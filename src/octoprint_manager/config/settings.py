"""Settings and configuration management for OctoPrint Manager."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="OCTO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # State database configuration
    state_db: str = Field(
        default="./config/octoprint.db",
        description="Path to SQLite state database",
    )

    # Docker configuration
    docker_host: str | None = Field(
        default=None,
        description="Docker daemon host URL (defaults to Docker's standard detection)",
    )

    image: str = Field(
        default="octoprint/octoprint:latest",
        description="OctoPrint image every managed container runs",
    )

    container_port: int = Field(
        default=80,
        description="Port the OctoPrint web UI listens on inside the container",
    )

    # Filesystem layout
    storage_root: str = Field(
        default="/mnt/storage/octoprint",
        description="Root directory holding one storage directory per container",
    )

    storage_mount_target: str = Field(
        default="/octoprint",
        description="Path the storage directory is mounted at inside the container",
    )

    device_root: str = Field(
        default="/dev/serial/by-id",
        description="Directory of serial device symlinks used for device discovery",
    )

    # Port allocation
    port_base: int = Field(
        default=2000,
        description="First host port handed out when no containers exist",
    )

    port_ceiling: int | None = Field(
        default=None,
        description="Highest host port that may be allocated (unbounded when unset)",
    )

    port_allocation_retries: int = Field(
        default=3,
        description="Attempts to allocate a port when the unique constraint is violated",
    )

    # Container lifecycle configuration
    stop_timeout_s: int = Field(
        default=10,
        description="Seconds to wait for a container to stop before it is force-removed",
    )

    reconcile_concurrency: int = Field(
        default=4,
        description="Maximum number of containers reconciled in parallel",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    log_format: str = Field(
        default="json",
        description="Log format (json or text)",
    )

    # Server configuration
    host: str = Field(
        default="0.0.0.0",
        description="Server host to bind to",
    )

    port: int = Field(
        default=3000,
        description="Server port to bind to",
    )

    transport_mode: Literal["stdio", "sse", "streamable-http"] = Field(
        default="streamable-http",
        description="Transport protocol for the server (stdio, sse, or streamable-http)",
    )

    path: str = Field(
        default="/mcp",
        description="Path for HTTP-based transports (sse or streamable-http)",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
