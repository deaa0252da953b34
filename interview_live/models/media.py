"""Media-related data models."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Dict, Any, List


class MediaKind(Enum):
    """Kind of captured media."""
    AUDIO = "audio"
    VIDEO = "video"


@dataclass
class MediaChunk:
    """A fixed-duration slice of captured audio or video data."""
    kind: MediaKind
    payload: bytes
    captured_at: float  # Unix timestamp when the chunk was captured
    sequence_number: int
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DeviceConfig:
    """Capture device selection and format for one session."""
    audio_device_id: Optional[str] = None
    sample_rate: int = 16000
    channels: int = 1
    chunk_interval_ms: int = 100
    video_enabled: bool = False
    video_device_id: Optional[str] = None
    width: int = 640
    height: int = 480
    frame_interval_ms: int = 1000
    jpeg_quality: int = 80

    @property
    def frames_per_chunk(self) -> int:
        """Number of PCM frames in one audio chunk."""
        return int(self.sample_rate * self.chunk_interval_ms / 1000)

    def device_id_for(self, kind: MediaKind) -> Optional[str]:
        return self.audio_device_id if kind is MediaKind.AUDIO else self.video_device_id

    def with_device(self, kind: MediaKind, device_id: Optional[str]) -> "DeviceConfig":
        """Copy of this config with the device for ``kind`` replaced."""
        name = "audio_device_id" if kind is MediaKind.AUDIO else "video_device_id"
        return replace(self, **{name: device_id})


@dataclass
class DeviceInfo:
    """An input device reported by the platform."""
    device_id: str
    label: str
    kind: MediaKind
    default_sample_rate: Optional[int] = None
    max_input_channels: int = 0


@dataclass
class AudioQualityMetrics:
    """Audio quality derived from recently captured chunks."""
    input_level: float  # 0.0 to 1.0, RMS of the signal
    peak_level: float   # 0.0 to 1.0
    noise_level: float  # 0.0 to 1.0, estimated floor
    quality_score: float  # 0.0 to 1.0
    recommendations: List[str] = field(default_factory=list)
