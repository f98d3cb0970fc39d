"""Docker client utilities for OctoPrint Manager."""

import docker
from docker import DockerClient
from docker.errors import DockerException

from octoprint_manager.config import get_settings
from octoprint_manager.utils import get_logger

logger = get_logger(__name__)


class DockerClientManager:
    """Owns the single Docker client connection used by the runtime gateway."""

    def __init__(self) -> None:
        self._client: DockerClient | None = None
        self.settings = get_settings()

    def get_client(self) -> DockerClient:
        """
        Get or create Docker client instance.

        Returns:
            DockerClient instance

        Raises:
            DockerException: If unable to connect to Docker daemon
        """
        if self._client is None:
            try:
                if self.settings.docker_host:
                    client = docker.DockerClient(base_url=self.settings.docker_host)
                else:
                    client = docker.from_env()

                client.ping()
            except DockerException as e:
                logger.error(
                    "Failed to connect to Docker daemon",
                    extra={"docker_host": self.settings.docker_host, "error": str(e)},
                )
                raise

            self._client = client
            logger.info(
                "Connected to Docker daemon",
                extra={"api_version": client.api.api_version},
            )

        return self._client

    def close(self) -> None:
        """Close Docker client connection."""
        if self._client:
            self._client.close()
            self._client = None
            logger.info("Docker client connection closed")


_docker_manager: DockerClientManager | None = None


def get_docker_client() -> DockerClient:
    """Get the process-wide Docker client, connecting on first use."""
    global _docker_manager
    if _docker_manager is None:
        _docker_manager = DockerClientManager()
    return _docker_manager.get_client()


def close_docker_client() -> None:
    """Close the process-wide Docker client connection."""
    global _docker_manager
    if _docker_manager:
        _docker_manager.close()
        _docker_manager = None
