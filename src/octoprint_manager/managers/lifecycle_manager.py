"""Container lifecycle manager: converges container records with the runtime."""

import asyncio
import os
import shutil
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple
from uuid import uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from octoprint_manager.config import get_settings
from octoprint_manager.managers.device_resolver import DeviceInfo, DeviceResolver
from octoprint_manager.managers.port_allocator import PortAllocator
from octoprint_manager.managers.runtime_gateway import (
    DockerRuntimeGateway,
    InstanceSpec,
    RuntimeGateway,
)
from octoprint_manager.managers.status_cache import StatusCache
from octoprint_manager.models.containers import Container
from octoprint_manager.models.database import DatabaseManager, get_db_manager
from octoprint_manager.repositories.containers import ContainerRepository
from octoprint_manager.utils import get_logger
from octoprint_manager.utils.exceptions import (
    InstanceNotFoundError,
    OctoPrintManagerError,
    PartialReconciliationFailure,
    PortAllocationConflictError,
    RecordStoreError,
    RuntimeGatewayError,
    StorageIOError,
    UnknownIdentityError,
)
from octoprint_manager.utils.metrics_collector import MetricsCollector, get_metrics_collector
from octoprint_manager.utils.naming import derive_instance_name, derive_storage_path

logger = get_logger(__name__)


class CreatedContainer(NamedTuple):
    """Identity and runtime instance name of a newly created container."""

    identity: str
    instance_name: str


class _Record(NamedTuple):
    identity: str
    device: str
    port: int
    display_name: str | None


@dataclass(frozen=True)
class ContainerStatus:
    """One row of the container listing."""

    identity: str
    port: int
    display_name: str | None
    device: str
    status: bool


@dataclass
class ReconcileResult:
    """Per-container outcome of a reconciliation pass.

    ``outcomes`` maps every identity to whether it ended the pass running.
    ``actions`` records what was done: untouched, started, recreated or
    failed. ``errors`` holds the exception for each identity that failed.
    """

    outcomes: Dict[str, bool] = field(default_factory=dict)
    actions: Dict[str, str] = field(default_factory=dict)
    errors: Dict[str, Exception] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_failures(self) -> None:
        """Raise PartialReconciliationFailure if any container failed."""
        if self.errors:
            raise PartialReconciliationFailure(self.errors)


class LifecycleManager:
    """Creates, restarts, renames and deletes printer containers.

    The record store holds the desired state and the runtime gateway reports
    the observed state. Creation is serialized so that port allocation and
    record insertion see a consistent snapshot. Delete, restart and
    reconciliation of the same identity hold a per-identity lock.
    """

    def __init__(
        self,
        gateway: RuntimeGateway | None = None,
        db_manager: DatabaseManager | None = None,
        status_cache: StatusCache | None = None,
        device_resolver: DeviceResolver | None = None,
        port_allocator: PortAllocator | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """
        Initialize lifecycle manager.

        Args:
            gateway: Runtime gateway; defaults to Docker
            db_manager: Database manager for the record store
            status_cache: Status cache owned by this manager
            device_resolver: Serial device resolver
            port_allocator: Host port allocator
            metrics: Metrics collector
        """
        self.settings = get_settings()
        self.db_manager = db_manager or get_db_manager()
        self.gateway = gateway or DockerRuntimeGateway()
        self.status_cache = status_cache if status_cache is not None else StatusCache()
        self.device_resolver = device_resolver or DeviceResolver()
        self.port_allocator = port_allocator or PortAllocator(self.db_manager)
        self.metrics = metrics or get_metrics_collector()
        self._create_lock = asyncio.Lock()
        self._identity_locks: Dict[str, asyncio.Lock] = {}

    def _get_lock(self, identity: str) -> asyncio.Lock:
        """Get or create the lock serializing runtime changes for one identity."""
        if identity not in self._identity_locks:
            self._identity_locks[identity] = asyncio.Lock()
        return self._identity_locks[identity]

    # ---- record store access ----

    async def _load_records(self) -> List[_Record]:
        try:
            async with self.db_manager.get_session() as session:
                containers = await ContainerRepository(session).list_all()
        except SQLAlchemyError as e:
            raise RecordStoreError("list", original_error=e) from e

        self.metrics.set_managed_containers(len(containers))
        return [_Record(c.id, c.device, c.port, c.name) for c in containers]

    async def _find_record(self, identity: str) -> _Record | None:
        try:
            async with self.db_manager.get_session() as session:
                container = await ContainerRepository(session).get(identity)
        except SQLAlchemyError as e:
            raise RecordStoreError("lookup", identity, e) from e

        if container is None:
            return None
        return _Record(container.id, container.device, container.port, container.name)

    async def _get_record(self, identity: str) -> _Record:
        record = await self._find_record(identity)
        if record is None:
            raise UnknownIdentityError(identity)
        return record

    async def _insert_record(self, identity: str, device: str, port: int) -> None:
        async with self.db_manager.get_session() as session:
            await ContainerRepository(session).create(
                Container(id=identity, device=device, port=port, name=None)
            )

    # ---- storage and runtime helpers ----

    def _storage_path(self, identity: str) -> str:
        return derive_storage_path(self.settings.storage_root, identity)

    async def _provision_storage(self, identity: str) -> str:
        path = self._storage_path(identity)
        try:
            await asyncio.to_thread(os.makedirs, path, 0o755, True)
        except OSError as e:
            raise StorageIOError("create", path, e) from e
        return path

    async def _remove_storage(self, identity: str) -> None:
        path = self._storage_path(identity)
        try:
            await asyncio.to_thread(shutil.rmtree, path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageIOError("remove", path, e) from e

    async def _launch(self, identity: str, device_path: str, port: int) -> None:
        """Provision storage, then create and start the runtime instance."""
        storage_path = await self._provision_storage(identity)
        spec = InstanceSpec(
            name=derive_instance_name(identity),
            image=self.settings.image,
            host_port=port,
            container_port=self.settings.container_port,
            storage_path=storage_path,
            storage_target=self.settings.storage_mount_target,
            device_path=device_path,
        )
        await self.gateway.create_instance(spec)

    async def _discard_instance(self, instance_name: str) -> None:
        """Remove an instance that has no record behind it."""
        try:
            await self.gateway.remove(instance_name, force=True)
        except InstanceNotFoundError:
            pass
        except RuntimeGatewayError as e:
            logger.warning(
                "Failed to remove unrecorded container",
                extra={"instance": instance_name, "error": str(e)},
            )

    # ---- public operations ----

    async def ensure_image(self) -> None:
        """Make sure the OctoPrint image is available locally."""
        await self.gateway.ensure_image(self.settings.image)

    async def create(self, device: str) -> CreatedContainer:
        """
        Create and start a container for a serial device.

        The device is resolved before anything is changed. The storage
        directory is provisioned before the instance starts, and the record
        is written only once the instance is running. If the runtime fails
        the directory stays in place and no record is written.

        Args:
            device: Symlink name of the serial device

        Returns:
            CreatedContainer with the new identity and instance name

        Raises:
            DeviceNotFoundError: If the device cannot be resolved
            PortAllocationConflictError: If every allocation attempt collided
            RuntimeCreateFailedError: If the instance cannot be created
            RuntimeStartFailedError: If the instance cannot be started
            StorageIOError: If the storage directory cannot be created
        """
        identity = str(uuid4())
        instance_name = derive_instance_name(identity)
        attempts = max(1, self.settings.port_allocation_retries)

        try:
            device_path = self.device_resolver.resolve(device)
            logger.info(
                "Creating container",
                extra={"identity": identity, "device": device, "device_path": device_path},
            )

            async with self._create_lock:
                for attempt in range(1, attempts + 1):
                    port = await self.port_allocator.next_port()

                    try:
                        await self._launch(identity, device_path, port)
                    except RuntimeGatewayError:
                        await self._discard_instance(instance_name)
                        raise

                    try:
                        await self._insert_record(identity, device, port)
                    except IntegrityError:
                        logger.warning(
                            "Port taken by a concurrent writer, retrying",
                            extra={"identity": identity, "port": port, "attempt": attempt},
                        )
                        await self._discard_instance(instance_name)
                        continue
                    except SQLAlchemyError as e:
                        await self._discard_instance(instance_name)
                        raise RecordStoreError("insert", identity, e) from e
                    break
                else:
                    raise PortAllocationConflictError(port, attempts)
        except OctoPrintManagerError:
            self.metrics.record_operation("create", False)
            raise

        self.status_cache.mark(identity, True)
        self.metrics.record_operation("create", True)
        logger.info(
            "Container created",
            extra={"identity": identity, "instance": instance_name, "port": port},
        )
        return CreatedContainer(identity=identity, instance_name=instance_name)

    async def _reconcile_one(self, identity: str) -> str | None:
        """Converge one identity; returns None if its record was deleted meanwhile.

        The caller holds the identity lock.
        """
        # The snapshot may predate a delete that finished while we waited
        record = await self._find_record(identity)
        if record is None:
            return None

        instance_name = derive_instance_name(identity)
        state = await self.gateway.inspect(instance_name)

        if state is None:
            device_path = self.device_resolver.resolve(record.device)
            await self._launch(identity, device_path, record.port)
            return "recreated"

        if state.running:
            return "untouched"

        await self.gateway.start(instance_name)
        return "started"

    async def reconcile_all(self) -> ReconcileResult:
        """
        Bring every recorded container to the running state.

        Running instances are left alone, stopped ones are started and
        missing ones are recreated from the recorded device and port. A
        failure on one container never stops the others. A record deleted
        while the pass runs is left out of the result.

        Returns:
            ReconcileResult with one outcome per recorded identity

        Raises:
            RecordStoreError: If the records cannot be read at all
        """
        logger.info("Starting container reconciliation")
        records = await self._load_records()

        result = ReconcileResult()
        semaphore = asyncio.Semaphore(max(1, self.settings.reconcile_concurrency))

        async def reconcile_record(record: _Record) -> None:
            async with semaphore, self._get_lock(record.identity):
                try:
                    action = await self._reconcile_one(record.identity)
                except Exception as e:
                    logger.error(
                        "Failed to reconcile container",
                        extra={
                            "identity": record.identity,
                            "device": record.device,
                            "error": str(e),
                        },
                    )
                    result.errors[record.identity] = e
                    action = "failed"

                if action is None:
                    logger.info(
                        "Container deleted during reconciliation",
                        extra={"identity": record.identity},
                    )
                    return

                running = action != "failed"
                result.outcomes[record.identity] = running
                result.actions[record.identity] = action
                self.status_cache.mark(record.identity, running)

            self.metrics.record_reconcile_action(action)

        await asyncio.gather(*(reconcile_record(record) for record in records))

        logger.info(
            "Container reconciliation completed",
            extra={
                "total": len(records),
                "running": sum(result.outcomes.values()),
                "failed": len(result.errors),
            },
        )
        return result

    async def delete(self, identity: str) -> None:
        """
        Delete a container, its record and its storage directory.

        Stop failures are logged and ignored. A removal failure aborts the
        delete with record and directory intact. If the directory cannot be
        removed after the record is gone, the error is raised but the record
        stays deleted.

        Args:
            identity: Container identity

        Raises:
            UnknownIdentityError: If no record exists
            RuntimeGatewayError: If the runtime instance cannot be removed
            StorageIOError: If the storage directory cannot be removed
        """
        async with self._get_lock(identity):
            await self._get_record(identity)
            instance_name = derive_instance_name(identity)

            try:
                await self.gateway.stop(instance_name, timeout=self.settings.stop_timeout_s)
            except RuntimeGatewayError as e:
                logger.warning(
                    "Failed to stop container (may not exist)",
                    extra={"identity": identity, "error": str(e)},
                )

            try:
                await self.gateway.remove(instance_name, force=True)
            except InstanceNotFoundError:
                logger.info("Container already removed", extra={"identity": identity})
            except RuntimeGatewayError as e:
                logger.error(
                    "Failed to remove container",
                    extra={"identity": identity, "error": str(e)},
                )
                self.status_cache.mark(identity, False)
                self.metrics.record_operation("delete", False)
                raise

            try:
                async with self.db_manager.get_session() as session:
                    await ContainerRepository(session).delete_by_id(identity)
            except SQLAlchemyError as e:
                self.metrics.record_operation("delete", False)
                raise RecordStoreError("delete", identity, e) from e
            self.status_cache.discard(identity)

            try:
                await self._remove_storage(identity)
            except StorageIOError as e:
                logger.error(
                    "Record deleted but storage directory was left behind",
                    extra={"identity": identity, "path": e.path, "error": str(e)},
                )
                self.metrics.record_operation("delete", False)
                raise

            self.metrics.record_operation("delete", True)
            logger.info("Container deleted", extra={"identity": identity})

    async def restart(self, identity: str) -> None:
        """
        Restart a container, recreating it if its instance has disappeared.

        A recreated instance reuses the recorded device and port.

        Args:
            identity: Container identity

        Raises:
            UnknownIdentityError: If no record exists; nothing is touched
            DeviceNotFoundError: If recreation needs a device that is gone
            RuntimeGatewayError: If the runtime operation fails
        """
        async with self._get_lock(identity):
            record = await self._get_record(identity)
            instance_name = derive_instance_name(identity)

            try:
                state = await self.gateway.inspect(instance_name)
                if state is not None:
                    await self.gateway.restart(instance_name)
                    action = "restarted"
                else:
                    device_path = self.device_resolver.resolve(record.device)
                    await self._launch(identity, device_path, record.port)
                    action = "recreated"
            except OctoPrintManagerError as e:
                logger.error(
                    "Failed to restart container",
                    extra={"identity": identity, "error": str(e)},
                )
                self.status_cache.mark(identity, False)
                self.metrics.record_operation("restart", False)
                raise

            self.status_cache.mark(identity, True)

        self.metrics.record_operation("restart", True)
        logger.info("Container restarted", extra={"identity": identity, "action": action})

    async def rename(self, identity: str, display_name: str | None) -> None:
        """
        Change the display name of a container. The runtime is not touched.

        Args:
            identity: Container identity
            display_name: New name; None clears it

        Raises:
            UnknownIdentityError: If no record exists
        """
        try:
            async with self.db_manager.get_session() as session:
                container = await ContainerRepository(session).rename(identity, display_name)
        except SQLAlchemyError as e:
            raise RecordStoreError("rename", identity, e) from e

        if container is None:
            self.metrics.record_operation("rename", False)
            raise UnknownIdentityError(identity)

        self.metrics.record_operation("rename", True)
        logger.info("Container renamed", extra={"identity": identity, "display_name": display_name})

    async def list_containers(self) -> List[ContainerStatus]:
        """List every recorded container with its last known status, in identity order."""
        records = await self._load_records()
        return [
            ContainerStatus(
                identity=record.identity,
                port=record.port,
                display_name=record.display_name,
                device=record.device,
                status=self.status_cache.get(record.identity),
            )
            for record in records
        ]

    async def list_devices(self) -> List[DeviceInfo]:
        """List plugged-in serial devices, flagging those bound to a container."""
        try:
            async with self.db_manager.get_session() as session:
                in_use = await ContainerRepository(session).devices_in_use()
        except SQLAlchemyError as e:
            raise RecordStoreError("list devices", original_error=e) from e
        return self.device_resolver.list_devices(in_use)


_lifecycle_manager: LifecycleManager | None = None


def get_lifecycle_manager() -> LifecycleManager:
    """Get or create the process-wide lifecycle manager."""
    global _lifecycle_manager
    if _lifecycle_manager is None:
        _lifecycle_manager = LifecycleManager()
    return _lifecycle_manager


def reset_lifecycle_manager() -> None:
    """Drop the process-wide lifecycle manager so the next call builds a fresh one."""
    global _lifecycle_manager
    _lifecycle_manager = None
