"""Tool input/output models for the OctoPrint Manager server."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class CreateContainerInput(BaseModel):
    """Input model for create_container tool."""

    device: str = Field(..., description="Serial device name under /dev/serial/by-id")


class CreateContainerOutput(BaseModel):
    """Output model for create_container tool."""

    error: bool = Field(..., description="Whether the operation failed")
    identity: Optional[str] = Field(None, description="Identity of the new container")
    container_name: Optional[str] = Field(None, description="Runtime instance name")
    message: Optional[str] = Field(None, description="Failure message")
    error_type: Optional[str] = Field(None, description="Failure category")


class ContainerIdInput(BaseModel):
    """Input model for tools addressing one container."""

    id: str = Field(..., description="Container identity")


class RenameContainerInput(BaseModel):
    """Input model for rename_container tool."""

    id: str = Field(..., description="Container identity")
    name: Optional[str] = Field(None, description="New display name; null clears it")


class OperationOutput(BaseModel):
    """Output model for delete, restart and rename tools."""

    error: bool = Field(..., description="Whether the operation failed")
    id: str = Field(..., description="Container identity")
    message: Optional[str] = Field(None, description="Failure message")
    error_type: Optional[str] = Field(
        None,
        description=(
            "Failure category: unknown_identity, device_not_found, runtime, "
            "storage, store or port_allocation"
        ),
    )


class ContainerInfo(BaseModel):
    """One container in a listing."""

    id: str = Field(..., description="Container identity")
    port: int = Field(..., description="Host port of the OctoPrint web UI")
    name: Optional[str] = Field(None, description="Display name")
    device: str = Field(..., description="Bound serial device")
    status: bool = Field(..., description="Whether the last lifecycle operation succeeded")


class ContainerListOutput(BaseModel):
    """Output model for list_containers tool."""

    error: bool = Field(default=False, description="Whether the listing failed")
    message: Optional[str] = Field(None, description="Failure message")
    containers: List[ContainerInfo] = Field(default_factory=list)


class ReconcileOutput(BaseModel):
    """Output model for reconcile tool."""

    error: bool = Field(default=False, description="Whether the pass could not run at all")
    message: Optional[str] = Field(None, description="Failure message")
    outcomes: Dict[str, bool] = Field(
        default_factory=dict, description="Identity -> running after the pass"
    )
    actions: Dict[str, str] = Field(
        default_factory=dict, description="Identity -> untouched, started, recreated or failed"
    )
    errors: Dict[str, str] = Field(default_factory=dict, description="Identity -> error message")


class DeviceEntry(BaseModel):
    """One discoverable serial device."""

    name: str = Field(..., description="Device symlink name")
    in_use: bool = Field(..., description="Whether a container is bound to the device")


class DeviceListOutput(BaseModel):
    """Output model for list_devices tool."""

    error: bool = Field(default=False, description="Whether discovery failed")
    message: Optional[str] = Field(None, description="Explanation when no devices are listed")
    devices: List[DeviceEntry] = Field(default_factory=list)


class MetricsOutput(BaseModel):
    """Output model for metrics tool."""

    metrics: str = Field(..., description="Prometheus-formatted metrics")


class HealthCheckResponse(BaseModel):
    """Health check response model."""

    status: str
    docker_connected: bool
    managed_containers: int = 0
    version: str
