"""Media capture bridge: turns device reads into sequenced chunks for a sink."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional

from ..errors import DeviceError, InterviewLiveError, TransmissionError
from ..models.media import DeviceConfig, MediaChunk, MediaKind, AudioQualityMetrics
from .base import AbstractCaptureDevice
from .leases import DeviceLeases, default_leases
from .processing import AudioQualityMonitor

logger = logging.getLogger(__name__)

ChunkSink = Callable[[MediaChunk], Awaitable[None]]
ErrorHook = Callable[[InterviewLiveError], None]
DeviceFactory = Callable[[MediaKind, Optional[str], DeviceConfig], AbstractCaptureDevice]


def default_device_factory(kind: MediaKind, device_id: Optional[str], config: DeviceConfig) -> AbstractCaptureDevice:
    if kind is MediaKind.AUDIO:
        from .devices import PyAudioMicrophone
        return PyAudioMicrophone(device_id, config)
    from .camera import OpenCVCamera
    return OpenCVCamera(device_id, config)


class MediaCaptureBridge:
    """Captures audio (and optionally video) and hands each chunk to a sink.

    Sequence numbers are per kind and keep increasing across stop/start and
    device switches for the lifetime of the bridge.
    """

    def __init__(self,
                 sink: ChunkSink,
                 device_factory: DeviceFactory = default_device_factory,
                 leases: Optional[DeviceLeases] = None,
                 on_error: Optional[ErrorHook] = None,
                 stop_timeout: float = 2.0,
                 clock: Callable[[], float] = time.time):
        """Initialize capture bridge.

        Args:
            sink: Coroutine receiving every captured chunk
            device_factory: Builds a device for a kind and device id
            leases: Exclusive-acquisition registry (process-wide by default)
            on_error: Called with DeviceError or TransmissionError when capture stops on its own
            stop_timeout: Seconds to wait for in-flight reads when stopping
            clock: Wall clock used for chunk capture timestamps
        """
        self.sink = sink
        self.device_factory = device_factory
        self.leases = leases if leases is not None else default_leases
        self.on_error = on_error
        self.stop_timeout = stop_timeout
        self._clock = clock

        self.config: Optional[DeviceConfig] = None
        self.quality = AudioQualityMonitor()
        self._sequences: Dict[MediaKind, int] = {kind: 0 for kind in MediaKind}
        self._devices: Dict[MediaKind, AbstractCaptureDevice] = {}
        self._pending: Dict[MediaKind, AbstractCaptureDevice] = {}
        self._tasks: Dict[MediaKind, asyncio.Task] = {}
        self._running = False
        # Serializes device lifecycle changes; capture loops never take it
        self._lifecycle_lock = asyncio.Lock()

    @property
    def is_capturing(self) -> bool:
        return self._running

    def last_sequence(self, kind: MediaKind) -> int:
        return self._sequences[kind]

    def quality_metrics(self) -> Optional[AudioQualityMetrics]:
        return self.quality.metrics()

    async def start(self, config: DeviceConfig) -> None:
        """Acquire devices and begin emitting chunks.

        Raises:
            DeviceError: If a device cannot be acquired. Nothing stays acquired.
        """
        async with self._lifecycle_lock:
            if self._running:
                logger.warning("Capture already in progress")
                return
            if self._devices or self._tasks:
                # Capture ended on its own; release what it left behind
                await self._shutdown()
            await self._startup(config)

    async def _startup(self, config: DeviceConfig) -> None:
        kinds = [MediaKind.AUDIO]
        if config.video_enabled:
            kinds.append(MediaKind.VIDEO)

        opened: List[AbstractCaptureDevice] = []
        try:
            for kind in kinds:
                opened.append(await self._open_device(kind, config.device_id_for(kind), config))
        except DeviceError:
            for device in opened:
                await self._close_device(device)
            raise

        self.config = config
        self.quality.channels = config.channels
        self._running = True
        for device in opened:
            self._devices[device.kind] = device
            self._tasks[device.kind] = asyncio.create_task(self._capture_loop(device.kind))
        logger.info(f"Capture started: {', '.join(kind.value for kind in kinds)}")

    async def stop(self) -> None:
        """Stop capture and release all devices. Idempotent."""
        async with self._lifecycle_lock:
            await self._shutdown()

    async def _shutdown(self) -> None:
        self._running = False
        current = asyncio.current_task()
        tasks = [task for task in self._tasks.values() if task is not current]
        self._tasks.clear()

        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self.stop_timeout)
            for task in pending:
                logger.warning("Capture loop did not stop cleanly, cancelling")
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        for kind in list(self._devices):
            await self._close_device(self._devices.pop(kind))
        for kind in list(self._pending):
            await self._close_device(self._pending.pop(kind))

    async def switch_device(self, device_id: Optional[str], kind: MediaKind) -> None:
        """Replace the device for one kind without dropping chunks.

        The new device is opened first; the capture loop swaps it in after
        delivering the chunk already being read from the old one.

        Raises:
            DeviceError: If the new device cannot be opened. The current
                device keeps capturing.
        """
        async with self._lifecycle_lock:
            await self._switch(device_id, kind)

    async def _switch(self, device_id: Optional[str], kind: MediaKind) -> None:
        current = self._devices.get(kind)
        if not self._running or current is None:
            if self.config is not None:
                self.config = self.config.with_device(kind, device_id)
            logger.info(f"Not capturing {kind.value}; device {device_id} will be used on next start")
            return

        pending = self._pending.get(kind)
        if pending is not None and pending.device_id == device_id:
            return
        # A stale pending device is released before its replacement takes a lease
        if pending is not None:
            await self._close_device(self._pending.pop(kind))
        if current.device_id == device_id:
            self.config = self.config.with_device(kind, device_id)
            return

        device = await self._open_device(kind, device_id, self.config)
        self._pending[kind] = device
        self.config = self.config.with_device(kind, device_id)
        logger.info(f"Switching {kind.value} device to {device.lease_key}")

    async def _open_device(self, kind: MediaKind, device_id: Optional[str], config: DeviceConfig) -> AbstractCaptureDevice:
        device = self.device_factory(kind, device_id, config)
        self.leases.acquire(kind, device.lease_key, self)
        try:
            await device.acquire()
        except DeviceError:
            self.leases.release(kind, device.lease_key, self)
            raise
        return device

    async def _close_device(self, device: AbstractCaptureDevice) -> None:
        try:
            await device.release()
        except (DeviceError, OSError) as e:
            logger.warning(f"Error releasing {device!r}: {e}")
        finally:
            self.leases.release(device.kind, device.lease_key, self)

    async def _capture_loop(self, kind: MediaKind) -> None:
        while self._running:
            device = self._devices[kind]
            try:
                payload, metadata = await device.capture()
            except DeviceError as e:
                if self._running:
                    logger.error(f"{kind.value} capture failed: {e.message}")
                    self._notify(e)
                return
            if not self._running:
                return

            self._sequences[kind] += 1
            chunk = MediaChunk(
                kind=kind,
                payload=payload,
                captured_at=self._clock(),
                sequence_number=self._sequences[kind],
                metadata=metadata,
            )
            if kind is MediaKind.AUDIO:
                self.quality.update(payload)

            try:
                await self.sink(chunk)
            except TransmissionError as e:
                logger.warning(f"Dropping {kind.value} chunk {chunk.sequence_number}: {e.message}")
                self._running = False
                self._notify(e)
                return

            replacement = self._pending.pop(kind, None)
            if replacement is not None:
                self._devices[kind] = replacement
                await self._close_device(device)

    def _notify(self, error: InterviewLiveError) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception:
            logger.exception("Error in capture error hook")
