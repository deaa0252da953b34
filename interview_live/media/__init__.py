"""Media capture for live sessions."""

from .base import AbstractCaptureDevice
from .bridge import MediaCaptureBridge, default_device_factory
from .leases import DeviceLeases, default_leases
from .processing import AudioQualityMonitor, resample_pcm

__all__ = [
    "AbstractCaptureDevice",
    "MediaCaptureBridge",
    "default_device_factory",
    "DeviceLeases",
    "default_leases",
    "AudioQualityMonitor",
    "resample_pcm",
]
