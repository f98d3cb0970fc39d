"""In-memory view of each container's last lifecycle outcome."""

from typing import Dict


class StatusCache:
    """Last known success of the most recent operation, keyed by identity.

    Empty at startup and filled in only by completed create, restart,
    delete and reconcile operations. Listing reads it; nothing else does.
    """

    def __init__(self) -> None:
        self._status: Dict[str, bool] = {}

    def mark(self, identity: str, ok: bool) -> None:
        self._status[identity] = ok

    def get(self, identity: str) -> bool:
        """Return the last known status, False when nothing is known."""
        return self._status.get(identity, False)

    def discard(self, identity: str) -> None:
        self._status.pop(identity, None)

    def snapshot(self) -> Dict[str, bool]:
        return dict(self._status)

    def __len__(self) -> int:
        return len(self._status)
