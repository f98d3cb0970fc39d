"""Custom exceptions for OctoPrint Manager."""

from typing import Dict


class OctoPrintManagerError(Exception):
    """Base exception for OctoPrint Manager errors."""

    pass


class DeviceNotFoundError(OctoPrintManagerError):
    """Exception raised when a device symlink is missing or cannot be resolved."""

    def __init__(self, device: str, reason: str = "no such device") -> None:
        """
        Initialize DeviceNotFoundError.

        Args:
            device: Device identifier that could not be resolved
            reason: Why resolution failed
        """
        self.device = device
        self.reason = reason
        super().__init__(f"Device not found: {device} ({reason})")


class DeviceDiscoveryError(OctoPrintManagerError):
    """Exception raised when the device root exists but cannot be listed."""

    def __init__(self, device_root: str, original_error: Exception | None = None) -> None:
        self.device_root = device_root
        self.original_error = original_error
        super().__init__(f"Failed to list devices under {device_root}: {original_error}")


class PortAllocationError(OctoPrintManagerError):
    """Base exception for port allocation failures."""

    pass


class PortAllocationConflictError(PortAllocationError):
    """Exception raised when concurrent allocation keeps colliding on a port."""

    def __init__(self, port: int, attempts: int) -> None:
        """
        Initialize PortAllocationConflictError.

        Args:
            port: Last port that collided
            attempts: Number of allocation attempts made
        """
        self.port = port
        self.attempts = attempts
        super().__init__(f"Port {port} already allocated after {attempts} attempts")


class PortExhaustedError(PortAllocationError):
    """Exception raised when the next port would exceed the configured ceiling."""

    def __init__(self, ceiling: int) -> None:
        self.ceiling = ceiling
        super().__init__(f"No free port at or below {ceiling}")


class RuntimeGatewayError(OctoPrintManagerError):
    """Exception raised when container runtime calls fail."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        """
        Initialize RuntimeGatewayError.

        Args:
            message: Error message
            original_error: Original exception from the runtime
        """
        self.original_error = original_error
        super().__init__(message)


class InstanceNotFoundError(RuntimeGatewayError):
    """Exception raised when a named runtime instance does not exist."""

    def __init__(self, name: str, original_error: Exception | None = None) -> None:
        self.name = name
        super().__init__(f"Container instance not found: {name}", original_error)


class ImagePullError(RuntimeGatewayError):
    """Exception raised when the base image cannot be made available."""

    def __init__(self, image: str, original_error: Exception | None = None) -> None:
        self.image = image
        super().__init__(f"Failed to pull image {image}: {original_error}", original_error)


class _InstanceOperationError(RuntimeGatewayError):
    operation = "operate on"

    def __init__(self, name: str, original_error: Exception | None = None) -> None:
        self.name = name
        super().__init__(
            f"Failed to {self.operation} container {name}: {original_error}", original_error
        )


class RuntimeCreateFailedError(_InstanceOperationError):
    """Exception raised when a runtime instance cannot be created."""

    operation = "create"


class RuntimeStartFailedError(_InstanceOperationError):
    """Exception raised when a runtime instance cannot be started."""

    operation = "start"


class RuntimeStopFailedError(_InstanceOperationError):
    """Exception raised when a runtime instance cannot be stopped."""

    operation = "stop"


class RuntimeRestartFailedError(_InstanceOperationError):
    """Exception raised when a runtime instance cannot be restarted."""

    operation = "restart"


class RuntimeRemoveFailedError(_InstanceOperationError):
    """Exception raised when a runtime instance cannot be removed."""

    operation = "remove"


class UnknownIdentityError(OctoPrintManagerError):
    """Exception raised when no container record exists for an identity."""

    def __init__(self, identity: str) -> None:
        """
        Initialize UnknownIdentityError.

        Args:
            identity: Container identity that was not found
        """
        self.identity = identity
        super().__init__(f"Unknown container identity: {identity}")


RecordNotFoundError = UnknownIdentityError


class RecordStoreError(OctoPrintManagerError):
    """Exception raised when the container record store cannot be read or written."""

    def __init__(
        self, operation: str, identity: str | None = None, original_error: Exception | None = None
    ) -> None:
        """
        Initialize RecordStoreError.

        Args:
            operation: Store operation that failed
            identity: Container identity involved, if any
            original_error: Original database exception
        """
        self.operation = operation
        self.identity = identity
        self.original_error = original_error
        target = f" for {identity}" if identity else ""
        super().__init__(f"Record store {operation} failed{target}: {original_error}")


class StorageIOError(OctoPrintManagerError):
    """Exception raised when a storage directory cannot be created or removed."""

    def __init__(self, operation: str, path: str, original_error: Exception | None = None) -> None:
        """
        Initialize StorageIOError.

        Args:
            operation: "create" or "remove"
            path: Storage directory path
            original_error: Original OS error
        """
        self.operation = operation
        self.path = path
        self.original_error = original_error
        super().__init__(f"Failed to {operation} storage directory {path}: {original_error}")


class PartialReconciliationFailure(OctoPrintManagerError):
    """Exception raised when some containers failed to converge during reconciliation."""

    def __init__(self, errors: Dict[str, Exception]) -> None:
        """
        Initialize PartialReconciliationFailure.

        Args:
            errors: Mapping of container identity to the error it hit
        """
        self.errors = dict(errors)
        super().__init__(
            f"{len(self.errors)} container(s) failed to reconcile: "
            + ", ".join(sorted(self.errors))
        )
