"""Runtime gateway: the narrow interface to the container engine."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass

from docker import DockerClient
from docker.errors import DockerException, ImageNotFound, NotFound
from docker.types import Mount

from octoprint_manager.utils import get_logger
from octoprint_manager.utils.docker_client import get_docker_client
from octoprint_manager.utils.exceptions import (
    ImagePullError,
    InstanceNotFoundError,
    RuntimeCreateFailedError,
    RuntimeGatewayError,
    RuntimeRemoveFailedError,
    RuntimeRestartFailedError,
    RuntimeStartFailedError,
    RuntimeStopFailedError,
)

logger = get_logger(__name__)

RESTART_UNLESS_STOPPED = "unless-stopped"


@dataclass(frozen=True)
class InstanceSpec:
    """Everything needed to create one printer container."""

    name: str
    image: str
    host_port: int
    container_port: int
    storage_path: str
    storage_target: str
    device_path: str
    restart_policy: str = RESTART_UNLESS_STOPPED


@dataclass(frozen=True)
class InstanceState:
    """Observed state of an existing runtime instance."""

    name: str
    status: str

    @property
    def running(self) -> bool:
        return self.status == "running"


class RuntimeGateway(ABC):
    """Capabilities the lifecycle manager needs from a container engine.

    Every operation is scoped to one named instance or one image. Operations
    on a missing instance raise :class:`InstanceNotFoundError`; ``inspect``
    returns None instead so callers can branch on existence.
    """

    @abstractmethod
    async def ensure_image(self, image: str) -> None:
        """Make sure ``image`` is present locally, pulling it if absent."""

    @abstractmethod
    async def create_instance(self, spec: InstanceSpec) -> None:
        """Create and start a new instance."""

    @abstractmethod
    async def inspect(self, name: str) -> InstanceState | None:
        """Return the instance state, or None if it does not exist."""

    @abstractmethod
    async def start(self, name: str) -> None:
        """Start an existing instance."""

    @abstractmethod
    async def stop(self, name: str, timeout: int) -> None:
        """Stop an instance, killing it after ``timeout`` seconds."""

    @abstractmethod
    async def restart(self, name: str) -> None:
        """Restart an existing instance."""

    @abstractmethod
    async def remove(self, name: str, force: bool = True) -> None:
        """Remove an instance, stopping it first when ``force`` is set."""


class DockerRuntimeGateway(RuntimeGateway):
    """Runtime gateway backed by the Docker Engine API.

    The Docker SDK is blocking, so every call runs in a worker thread.
    """

    def __init__(self, docker_client: DockerClient | None = None) -> None:
        """
        Initialize Docker runtime gateway.

        Args:
            docker_client: Docker client; defaults to the process-wide client
        """
        self.docker_client: DockerClient = docker_client or get_docker_client()

    async def ensure_image(self, image: str) -> None:
        """
        Ensure image is present locally, pull if needed.

        Args:
            image: Image reference to check/pull

        Raises:
            ImagePullError: If the image cannot be pulled
        """
        try:
            await asyncio.to_thread(self.docker_client.images.get, image)
            logger.debug("Image already present locally", extra={"image": image})
            return
        except ImageNotFound:
            logger.info("Pulling image", extra={"image": image})
        except DockerException as e:
            raise ImagePullError(image, e)

        try:
            await asyncio.to_thread(self.docker_client.images.pull, image)
        except DockerException as e:
            logger.error("Failed to pull image", extra={"image": image, "error": str(e)})
            raise ImagePullError(image, e)

        logger.info("Image pulled successfully", extra={"image": image})

    async def create_instance(self, spec: InstanceSpec) -> None:
        """
        Create and start a container for ``spec``.

        The device node is passed through at the same path with read, write
        and mknod permission; the storage directory is bind-mounted.

        Raises:
            RuntimeCreateFailedError: If the container cannot be created
            RuntimeStartFailedError: If it was created but cannot be started
        """
        try:
            container = await asyncio.to_thread(
                self.docker_client.containers.create,
                image=spec.image,
                name=spec.name,
                ports={f"{spec.container_port}/tcp": spec.host_port},
                mounts=[Mount(target=spec.storage_target, source=spec.storage_path, type="bind")],
                devices=[f"{spec.device_path}:{spec.device_path}:rwm"],
                restart_policy={"Name": spec.restart_policy},
            )
        except DockerException as e:
            logger.error(
                "Docker API error creating container",
                extra={"instance": spec.name, "error": str(e)},
            )
            raise RuntimeCreateFailedError(spec.name, e)

        logger.info(
            "Docker container created",
            extra={
                "instance": spec.name,
                "docker_id": container.id,
                "host_port": spec.host_port,
                "device_path": spec.device_path,
            },
        )

        try:
            await asyncio.to_thread(container.start)
        except DockerException as e:
            logger.error(
                "Docker API error starting container",
                extra={"instance": spec.name, "error": str(e)},
            )
            raise RuntimeStartFailedError(spec.name, e)

        logger.info("Docker container started", extra={"instance": spec.name})

    async def inspect(self, name: str) -> InstanceState | None:
        """
        Look up a container by name.

        Returns:
            Its state, or None when no container has that name

        Raises:
            RuntimeGatewayError: For any failure other than "not found"
        """
        try:
            container = await asyncio.to_thread(self.docker_client.containers.get, name)
        except NotFound:
            return None
        except DockerException as e:
            raise RuntimeGatewayError(f"Failed to inspect container {name}: {e}", e)
        return InstanceState(name=name, status=container.status)

    async def _get(self, name: str):
        try:
            return await asyncio.to_thread(self.docker_client.containers.get, name)
        except NotFound as e:
            raise InstanceNotFoundError(name, e)
        except DockerException as e:
            raise RuntimeGatewayError(f"Failed to inspect container {name}: {e}", e)

    async def start(self, name: str) -> None:
        container = await self._get(name)
        try:
            await asyncio.to_thread(container.start)
        except NotFound as e:
            raise InstanceNotFoundError(name, e)
        except DockerException as e:
            raise RuntimeStartFailedError(name, e)
        logger.info("Docker container started", extra={"instance": name})

    async def stop(self, name: str, timeout: int) -> None:
        container = await self._get(name)
        try:
            await asyncio.to_thread(container.stop, timeout=timeout)
        except NotFound as e:
            raise InstanceNotFoundError(name, e)
        except DockerException as e:
            raise RuntimeStopFailedError(name, e)
        logger.info("Docker container stopped", extra={"instance": name, "timeout": timeout})

    async def restart(self, name: str) -> None:
        container = await self._get(name)
        try:
            await asyncio.to_thread(container.restart)
        except NotFound as e:
            raise InstanceNotFoundError(name, e)
        except DockerException as e:
            raise RuntimeRestartFailedError(name, e)
        logger.info("Docker container restarted", extra={"instance": name})

    async def remove(self, name: str, force: bool = True) -> None:
        container = await self._get(name)
        try:
            await asyncio.to_thread(container.remove, force=force)
        except NotFound as e:
            raise InstanceNotFoundError(name, e)
        except DockerException as e:
            raise RuntimeRemoveFailedError(name, e)
        logger.info("Docker container removed", extra={"instance": name, "force": force})
