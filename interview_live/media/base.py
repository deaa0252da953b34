"""Base class for capture devices."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

from ..models.media import DeviceConfig, MediaKind


class AbstractCaptureDevice(ABC):
    """A single microphone or camera.

    Subclasses implement blocking ``open``, ``read_chunk`` and ``close``;
    the bridge drives them through the awaitable wrappers, which run the
    blocking calls in a worker thread.
    """

    kind: MediaKind

    def __init__(self, device_id: Optional[str], config: DeviceConfig):
        self.device_id = device_id
        self.config = config

    @property
    def lease_key(self) -> str:
        return self.device_id if self.device_id is not None else "default"

    @abstractmethod
    def open(self) -> None:
        """Acquire the platform device.

        Raises:
            DeviceError: If the device is missing, busy or denied
        """

    @abstractmethod
    def read_chunk(self) -> Tuple[bytes, Dict[str, Any]]:
        """Block for one capture interval and return payload and metadata."""

    @abstractmethod
    def close(self) -> None:
        """Release the platform device."""

    async def acquire(self) -> None:
        await asyncio.to_thread(self.open)

    async def capture(self) -> Tuple[bytes, Dict[str, Any]]:
        return await asyncio.to_thread(self.read_chunk)

    async def release(self) -> None:
        await asyncio.to_thread(self.close)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(device_id={self.device_id!r})"
