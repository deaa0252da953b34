"""Exclusive device acquisition across capture bridges."""

import logging
import threading
from typing import Dict, Optional, Tuple

from ..errors import DeviceError
from ..models.media import MediaKind

logger = logging.getLogger(__name__)


class DeviceLeases:
    """Registry of which owner currently holds each capture device."""

    def __init__(self):
        self._holders: Dict[Tuple[MediaKind, str], object] = {}
        self._lock = threading.Lock()

    def acquire(self, kind: MediaKind, device_id: str, owner: object) -> None:
        """Take the lease for a device.

        Raises:
            DeviceError: With code DEVICE_BUSY if another owner holds it
        """
        key = (kind, device_id)
        with self._lock:
            holder = self._holders.get(key)
            if holder is not None and holder is not owner:
                raise DeviceError(f"{kind.value} device '{device_id}' is held by another session",
                                  device_id=device_id, kind=kind.value, code="DEVICE_BUSY")
            self._holders[key] = owner
        logger.debug(f"Lease acquired: {kind.value}/{device_id}")

    def release(self, kind: MediaKind, device_id: str, owner: object) -> None:
        key = (kind, device_id)
        with self._lock:
            if self._holders.get(key) is owner:
                del self._holders[key]
                logger.debug(f"Lease released: {kind.value}/{device_id}")

    def holder_of(self, kind: MediaKind, device_id: str) -> Optional[object]:
        with self._lock:
            return self._holders.get((kind, device_id))


# Process-wide registry shared by bridges that are not given their own
default_leases = DeviceLeases()
