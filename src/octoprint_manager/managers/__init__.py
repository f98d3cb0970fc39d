"""Manager modules for container lifecycle logic."""

from .device_resolver import DeviceInfo, DeviceResolver
from .lifecycle_manager import (
    ContainerStatus,
    CreatedContainer,
    LifecycleManager,
    ReconcileResult,
    get_lifecycle_manager,
)
from .port_allocator import PortAllocator
from .runtime_gateway import DockerRuntimeGateway, InstanceSpec, InstanceState, RuntimeGateway
from .status_cache import StatusCache

__all__ = [
    "ContainerStatus",
    "CreatedContainer",
    "DeviceInfo",
    "DeviceResolver",
    "DockerRuntimeGateway",
    "InstanceSpec",
    "InstanceState",
    "LifecycleManager",
    "PortAllocator",
    "ReconcileResult",
    "RuntimeGateway",
    "StatusCache",
    "get_lifecycle_manager",
]
