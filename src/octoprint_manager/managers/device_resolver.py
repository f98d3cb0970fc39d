"""Serial device discovery and resolution."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Collection, List

from octoprint_manager.config import get_settings
from octoprint_manager.utils import get_logger
from octoprint_manager.utils.exceptions import DeviceDiscoveryError, DeviceNotFoundError

logger = get_logger(__name__)


@dataclass(frozen=True)
class DeviceInfo:
    """A discoverable serial device."""

    name: str
    in_use: bool


class DeviceResolver:
    """Resolves serial device identifiers to canonical host paths.

    Devices are identified by the name of their symlink under the device
    root (``/dev/serial/by-id`` by default). These names are stable across
    reboots and re-plugging, while the ``/dev/ttyUSB*`` node they point at
    is not.
    """

    def __init__(self, device_root: str | None = None) -> None:
        """
        Initialize device resolver.

        Args:
            device_root: Directory holding device symlinks; defaults to settings
        """
        self.device_root = device_root or get_settings().device_root

    def resolve(self, device: str) -> str:
        """
        Resolve a device identifier to the canonical path of its device node.

        Args:
            device: Symlink name under the device root

        Returns:
            Absolute path with every symlink followed

        Raises:
            DeviceNotFoundError: If the identifier is malformed, the link is
                missing or dangling, or it cannot be followed
        """
        if not device or device in (".", "..") or "/" in device or "\0" in device:
            raise DeviceNotFoundError(device, "invalid device identifier")

        link = Path(self.device_root) / device
        try:
            resolved = link.resolve(strict=True)
        except FileNotFoundError:
            raise DeviceNotFoundError(device, f"{link} does not exist or is dangling")
        except (OSError, RuntimeError) as e:
            raise DeviceNotFoundError(device, f"cannot resolve {link}: {e}")

        logger.debug("Resolved device", extra={"device": device, "path": str(resolved)})
        return str(resolved)

    def list_devices(self, in_use: Collection[str] = ()) -> List[DeviceInfo]:
        """
        List the devices currently plugged in.

        Args:
            in_use: Device identifiers already bound to a container

        Returns:
            Devices sorted by name; empty when the device root does not exist

        Raises:
            DeviceDiscoveryError: If the device root exists but cannot be read
        """
        if not os.path.exists(self.device_root):
            logger.info("No serial devices plugged in", extra={"device_root": self.device_root})
            return []

        try:
            with os.scandir(self.device_root) as entries:
                names = sorted(
                    entry.name for entry in entries if not entry.is_dir(follow_symlinks=False)
                )
        except OSError as e:
            logger.error(
                "Failed to read device root",
                extra={"device_root": self.device_root, "error": str(e)},
            )
            raise DeviceDiscoveryError(self.device_root, e)

        used = set(in_use)
        return [DeviceInfo(name=name, in_use=name in used) for name in names]
