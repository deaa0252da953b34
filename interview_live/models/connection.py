"""Connection-related data models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ConnectionQuality(Enum):
    """Connection quality bucket derived from latency."""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"

    @classmethod
    def from_latency(cls, latency_ms: float) -> "ConnectionQuality":
        if latency_ms < 100:
            return cls.EXCELLENT
        if latency_ms < 200:
            return cls.GOOD
        if latency_ms < 500:
            return cls.FAIR
        return cls.POOR


class ConnectionState(Enum):
    """Lifecycle transitions reported alongside status updates."""
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    STATUS = "status"  # Status message from the endpoint, no transition


@dataclass(frozen=True)
class ConnectionStatus:
    """Transient view of the connection. Recomputed, never persisted."""
    connected: bool
    latency_ms: Optional[float] = None
    quality: Optional[ConnectionQuality] = None

    @classmethod
    def measured(cls, latency_ms: float) -> "ConnectionStatus":
        return cls(connected=True, latency_ms=latency_ms,
                   quality=ConnectionQuality.from_latency(latency_ms))

    def to_dict(self) -> dict:
        return {
            "connected": self.connected,
            "latency": self.latency_ms,
            "quality": self.quality.value if self.quality else None,
        }


DISCONNECTED = ConnectionStatus(connected=False)


@dataclass
class ReconnectState:
    """Reconnection bookkeeping, reset on every successful connection."""
    max_attempts: int
    attempt: int = 0
    next_delay: float = 0.0

    def reset(self) -> None:
        self.attempt = 0
        self.next_delay = 0.0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts


@dataclass
class ConnectOptions:
    """Session-scoped options sent to the endpoint in the setup message."""
    enable_audio: bool = True
    enable_video: bool = False
    enable_transcription: bool = True
    language: str = "en-US"
    sample_rate: int = 16000
    channels: int = 1
    encoding: str = "linear16"
    width: int = 640
    height: int = 480
    frame_rate: int = 1
    extra: dict = field(default_factory=dict)
