"""Names derived from a container identity.

Every record identity maps to exactly one runtime instance name and one
storage directory. Both mappings are total and injective: distinct
identities never share an instance name or a directory.
"""

import os

INSTANCE_NAME_PREFIX = "octoprint-"


def derive_instance_name(identity: str) -> str:
    """Return the runtime instance name for a container identity."""
    return f"{INSTANCE_NAME_PREFIX}{identity}"


def derive_storage_path(storage_root: str, identity: str) -> str:
    """Return the storage directory bound into the container for ``identity``."""
    if not identity or os.sep in identity or identity in (".", ".."):
        raise ValueError(f"Identity is not a valid directory name: {identity!r}")
    return os.path.join(storage_root, identity)
