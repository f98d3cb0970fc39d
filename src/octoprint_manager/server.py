"""OctoPrint Manager server implementation using FastMCP 2."""

import sys
from contextlib import asynccontextmanager

from fastmcp import FastMCP

from octoprint_manager import __version__
from octoprint_manager.config import get_settings
from octoprint_manager.managers.lifecycle_manager import (
    get_lifecycle_manager,
    reset_lifecycle_manager,
)
from octoprint_manager.mcp_tools import (
    ContainerIdInput,
    ContainerInfo,
    ContainerListOutput,
    CreateContainerInput,
    CreateContainerOutput,
    DeviceEntry,
    DeviceListOutput,
    HealthCheckResponse,
    MetricsOutput,
    OperationOutput,
    ReconcileOutput,
    RenameContainerInput,
)
from octoprint_manager.models.database import close_db, init_db
from octoprint_manager.utils import get_logger, setup_logging
from octoprint_manager.utils.docker_client import close_docker_client, get_docker_client
from octoprint_manager.utils.exceptions import (
    DeviceNotFoundError,
    OctoPrintManagerError,
    PortAllocationError,
    RecordStoreError,
    RuntimeGatewayError,
    StorageIOError,
    UnknownIdentityError,
)
from octoprint_manager.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)


def error_type_for(exc: OctoPrintManagerError) -> str:
    """Map a lifecycle exception to the failure category reported to clients."""
    if isinstance(exc, UnknownIdentityError):
        return "unknown_identity"
    if isinstance(exc, DeviceNotFoundError):
        return "device_not_found"
    if isinstance(exc, PortAllocationError):
        return "port_allocation"
    if isinstance(exc, StorageIOError):
        return "storage"
    if isinstance(exc, RecordStoreError):
        return "store"
    if isinstance(exc, RuntimeGatewayError):
        return "runtime"
    return "internal"


@asynccontextmanager
async def lifespan(server: FastMCP):
    """Prepare the database, Docker and the image, then converge all containers."""
    settings = get_settings()

    setup_logging(log_level=settings.log_level, log_format=settings.log_format)
    logger.info("Starting OctoPrint Manager", extra={"version": __version__})

    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error("Failed to initialize database", extra={"error": str(e)})
        raise

    try:
        get_docker_client()
    except Exception as e:
        logger.error("Failed to initialize Docker client", extra={"error": str(e)})
        raise

    manager = get_lifecycle_manager()

    try:
        await manager.ensure_image()
    except OctoPrintManagerError as e:
        logger.error("Failed to ensure OctoPrint image", extra={"error": str(e)})
        raise

    # A store failure here is fatal; individual container failures are not.
    result = await manager.reconcile_all()
    if result.ok:
        logger.info("Initial reconciliation completed", extra={"containers": len(result.outcomes)})
    else:
        logger.warning(
            "Some containers failed to start",
            extra={"errors": {identity: str(e) for identity, e in result.errors.items()}},
        )

    yield

    logger.info("Shutting down OctoPrint Manager")
    reset_lifecycle_manager()
    await close_db()
    close_docker_client()
    logger.info("OctoPrint Manager stopped")


mcp = FastMCP("OctoPrint Manager", lifespan=lifespan)


@mcp.tool()
async def health() -> HealthCheckResponse:
    """
    Health check endpoint to verify server status, Docker connectivity and
    record store access.

    Returns:
        HealthCheckResponse with status and Docker connection info
    """
    try:
        get_docker_client().ping()
        docker_connected = True
    except Exception as e:
        logger.warning("Docker health check failed", extra={"error": str(e)})
        docker_connected = False

    try:
        managed = len(await get_lifecycle_manager().list_containers())
        store_ok = True
    except OctoPrintManagerError as e:
        logger.warning("Record store health check failed", extra={"error": str(e)})
        managed = 0
        store_ok = False

    return HealthCheckResponse(
        status="healthy" if docker_connected and store_ok else "degraded",
        docker_connected=docker_connected,
        managed_containers=managed,
        version=__version__,
    )


@mcp.tool()
async def create_container(input_data: CreateContainerInput) -> CreateContainerOutput:
    """
    Create and start an OctoPrint container for a serial device.

    Args:
        input_data: Device to bind the new container to

    Returns:
        CreateContainerOutput with the identity and instance name
    """
    try:
        created = await get_lifecycle_manager().create(input_data.device)
    except OctoPrintManagerError as e:
        logger.error(
            "Failed to create container",
            extra={"device": input_data.device, "error": str(e)},
        )
        return CreateContainerOutput(
            error=True,
            message=f"Failed to create container: {e}",
            error_type=error_type_for(e),
        )

    return CreateContainerOutput(
        error=False,
        identity=created.identity,
        container_name=created.instance_name,
    )


@mcp.tool()
async def list_containers() -> ContainerListOutput:
    """
    List all containers with their last known status.

    Returns:
        ContainerListOutput in identity order
    """
    try:
        containers = await get_lifecycle_manager().list_containers()
    except OctoPrintManagerError as e:
        logger.error("Failed to list containers", extra={"error": str(e)})
        return ContainerListOutput(error=True, message=f"Failed to list containers: {e}")

    return ContainerListOutput(
        containers=[
            ContainerInfo(
                id=c.identity,
                port=c.port,
                name=c.display_name,
                device=c.device,
                status=c.status,
            )
            for c in containers
        ]
    )


@mcp.tool()
async def delete_container(input_data: ContainerIdInput) -> OperationOutput:
    """
    Stop and remove a container, its record and its storage directory.

    Args:
        input_data: Container identity

    Returns:
        OperationOutput describing the result
    """
    try:
        await get_lifecycle_manager().delete(input_data.id)
    except OctoPrintManagerError as e:
        return OperationOutput(
            error=True,
            id=input_data.id,
            message=f"Failed to delete container: {e}",
            error_type=error_type_for(e),
        )
    return OperationOutput(error=False, id=input_data.id)


@mcp.tool()
async def restart_container(input_data: ContainerIdInput) -> OperationOutput:
    """
    Restart a container, recreating it if its instance is gone.

    Args:
        input_data: Container identity

    Returns:
        OperationOutput; error_type is "unknown_identity" for a bad id
    """
    try:
        await get_lifecycle_manager().restart(input_data.id)
    except OctoPrintManagerError as e:
        return OperationOutput(
            error=True,
            id=input_data.id,
            message=f"Failed to restart container: {e}",
            error_type=error_type_for(e),
        )
    return OperationOutput(error=False, id=input_data.id)


@mcp.tool()
async def rename_container(input_data: RenameContainerInput) -> OperationOutput:
    """
    Set the display name of a container.

    Args:
        input_data: Container identity and new name

    Returns:
        OperationOutput describing the result
    """
    try:
        await get_lifecycle_manager().rename(input_data.id, input_data.name)
    except OctoPrintManagerError as e:
        return OperationOutput(
            error=True,
            id=input_data.id,
            message=f"Failed to rename container: {e}",
            error_type=error_type_for(e),
        )
    return OperationOutput(error=False, id=input_data.id)


@mcp.tool()
async def reconcile() -> ReconcileOutput:
    """
    Converge every recorded container with the runtime.

    Running containers are left alone, stopped ones are started and
    missing ones are recreated.

    Returns:
        ReconcileOutput with per-container outcomes
    """
    logger.info("Manual reconciliation requested")
    try:
        result = await get_lifecycle_manager().reconcile_all()
    except OctoPrintManagerError as e:
        logger.error("Reconciliation could not run", extra={"error": str(e)})
        return ReconcileOutput(error=True, message=f"Failed to reconcile containers: {e}")

    return ReconcileOutput(
        outcomes=result.outcomes,
        actions=result.actions,
        errors={identity: str(e) for identity, e in result.errors.items()},
    )


@mcp.tool()
async def list_devices() -> DeviceListOutput:
    """
    List plugged-in serial devices and whether each is bound to a container.

    Returns:
        DeviceListOutput
    """
    try:
        devices = await get_lifecycle_manager().list_devices()
    except OctoPrintManagerError as e:
        logger.error("Failed to list devices", extra={"error": str(e)})
        return DeviceListOutput(error=True, message=f"Failed to list devices: {e}")

    if not devices:
        return DeviceListOutput(message="No USB devices plugged in")

    return DeviceListOutput(
        devices=[DeviceEntry(name=d.name, in_use=d.in_use) for d in devices]
    )


@mcp.tool()
async def metrics() -> MetricsOutput:
    """
    Get Prometheus metrics for lifecycle operations and reconciliation.

    Returns:
        MetricsOutput with Prometheus-formatted metrics
    """
    return MetricsOutput(metrics=get_metrics_collector().get_metrics().decode("utf-8"))


def main() -> None:
    """Main entry point for the OctoPrint Manager server."""
    settings = get_settings()
    setup_logging(log_level=settings.log_level, log_format=settings.log_format)

    logger.info(
        "Starting server",
        extra={
            "transport": settings.transport_mode,
            "host": settings.host if settings.transport_mode != "stdio" else "N/A",
            "port": settings.port if settings.transport_mode != "stdio" else "N/A",
            "image": settings.image,
        },
    )

    run_kwargs = {"transport": settings.transport_mode}
    if settings.transport_mode in ("sse", "streamable-http"):
        run_kwargs["host"] = settings.host
        run_kwargs["port"] = settings.port
        run_kwargs["path"] = settings.path

    try:
        mcp.run(**run_kwargs)
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down")
        sys.exit(0)
    except Exception as e:
        logger.error("Server error", extra={"error": str(e)})
        sys.exit(1)


if __name__ == "__main__":
    main()
