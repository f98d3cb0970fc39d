"""Test configuration and fixtures."""

import os
from typing import AsyncGenerator, Dict, List, Tuple

import pytest
from prometheus_client import CollectorRegistry

from octoprint_manager.config import get_settings
from octoprint_manager.managers.device_resolver import DeviceResolver
from octoprint_manager.managers.lifecycle_manager import LifecycleManager
from octoprint_manager.managers.runtime_gateway import InstanceSpec, InstanceState, RuntimeGateway
from octoprint_manager.managers.status_cache import StatusCache
from octoprint_manager.models.containers import Container
from octoprint_manager.models.database import DatabaseManager
from octoprint_manager.repositories.containers import ContainerRepository
from octoprint_manager.utils.exceptions import (
    InstanceNotFoundError,
    RuntimeCreateFailedError,
)
from octoprint_manager.utils.metrics_collector import MetricsCollector


class FakeRuntimeGateway(RuntimeGateway):
    """In-memory runtime that records every call.

    ``instances`` maps instance name to a status string ("running",
    "exited"); ``specs`` keeps the spec each instance was created from.
    Failures are injected with ``fail(op, name, exc)``.
    """

    def __init__(self) -> None:
        self.instances: Dict[str, str] = {}
        self.specs: Dict[str, InstanceSpec] = {}
        self.images: set = set()
        self.calls: List[Tuple[str, str]] = []
        self._failures: Dict[Tuple[str, str | None], Exception] = {}

    def fail(self, op: str, name: str | None, exc: Exception) -> None:
        self._failures[(op, name)] = exc

    def _check(self, op: str, name: str) -> None:
        self.calls.append((op, name))
        exc = self._failures.get((op, name)) or self._failures.get((op, None))
        if exc is not None:
            raise exc

    def mutating_calls(self, name: str | None = None) -> List[Tuple[str, str]]:
        return [
            call
            for call in self.calls
            if call[0] != "inspect" and (name is None or call[1] == name)
        ]

    async def ensure_image(self, image: str) -> None:
        self._check("ensure_image", image)
        self.images.add(image)

    async def create_instance(self, spec: InstanceSpec) -> None:
        self._check("create", spec.name)
        if spec.name in self.instances:
            raise RuntimeCreateFailedError(spec.name, Exception("name already in use"))
        self.instances[spec.name] = "created"
        self.specs[spec.name] = spec
        self._check("start", spec.name)
        self.instances[spec.name] = "running"

    async def inspect(self, name: str) -> InstanceState | None:
        self._check("inspect", name)
        status = self.instances.get(name)
        return None if status is None else InstanceState(name=name, status=status)

    def _require(self, name: str) -> None:
        if name not in self.instances:
            raise InstanceNotFoundError(name)

    async def start(self, name: str) -> None:
        self._check("start", name)
        self._require(name)
        self.instances[name] = "running"

    async def stop(self, name: str, timeout: int) -> None:
        self._check("stop", name)
        self._require(name)
        self.instances[name] = "exited"

    async def restart(self, name: str) -> None:
        self._check("restart", name)
        self._require(name)
        self.instances[name] = "running"

    async def remove(self, name: str, force: bool = True) -> None:
        self._check("remove", name)
        self._require(name)
        del self.instances[name]
        self.specs.pop(name, None)


@pytest.fixture
def settings(tmp_path, monkeypatch):
    """Point storage and device discovery at temporary directories."""
    storage_root = tmp_path / "storage"
    device_root = tmp_path / "serial" / "by-id"
    storage_root.mkdir()
    device_root.mkdir(parents=True)

    monkeypatch.setenv("OCTO_STORAGE_ROOT", str(storage_root))
    monkeypatch.setenv("OCTO_DEVICE_ROOT", str(device_root))
    monkeypatch.setenv("OCTO_STATE_DB", str(tmp_path / "state.db"))
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def plug_device(tmp_path, settings):
    """Create a /dev/serial/by-id style symlink; returns the resolved node path."""
    nodes = tmp_path / "dev"
    nodes.mkdir(exist_ok=True)

    def _plug(name: str, node: str | None = None) -> str:
        target = nodes / (node or f"tty-{name}")
        target.touch()
        os.symlink(target, os.path.join(settings.device_root, name))
        return os.path.realpath(target)

    return _plug


@pytest.fixture
async def db_manager(tmp_path) -> AsyncGenerator[DatabaseManager, None]:
    """Create a file-backed test database with the schema in place."""
    manager = DatabaseManager(db_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await manager.create_tables()
    yield manager
    await manager.close()


@pytest.fixture
async def db_session(db_manager):
    """Create test database session."""
    async with db_manager.get_session_maker()() as session:
        yield session
        await session.rollback()


@pytest.fixture
def gateway() -> FakeRuntimeGateway:
    return FakeRuntimeGateway()


@pytest.fixture
def metrics() -> MetricsCollector:
    """Metrics collector on a private registry."""
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def lifecycle(settings, db_manager, gateway, metrics) -> LifecycleManager:
    """Lifecycle manager wired to the fake runtime and a fresh database."""
    return LifecycleManager(
        gateway=gateway,
        db_manager=db_manager,
        status_cache=StatusCache(),
        device_resolver=DeviceResolver(settings.device_root),
        metrics=metrics,
    )


@pytest.fixture
def add_record(db_manager):
    """Insert a container record directly into the store."""

    async def _add(identity: str, device: str, port: int, name: str | None = None) -> None:
        async with db_manager.get_session() as session:
            await ContainerRepository(session).create(
                Container(id=identity, device=device, port=port, name=name)
            )

    return _add


@pytest.fixture
def fetch_records(db_manager):
    """Read every container record from the store."""

    async def _fetch() -> List[Container]:
        async with db_manager.get_session() as session:
            return await ContainerRepository(session).list_all()

    return _fetch
