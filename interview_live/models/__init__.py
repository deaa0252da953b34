"""Data models for the interview-live session core."""

from .media import MediaKind, MediaChunk, DeviceConfig, DeviceInfo, AudioQualityMetrics
from .connection import (
    ConnectionQuality,
    ConnectionState,
    ConnectionStatus,
    ConnectOptions,
    ReconnectState,
    DISCONNECTED,
)
from .transcript import Speaker, TranscriptFragment, TranscriptEntry
from .events import (
    LiveEventType,
    LiveEvent,
    MediaResponseEvent,
    TranscriptEvent,
    StatusEvent,
    ErrorEvent,
    SessionEvent,
)
from .session import SessionStatus, CompletionReason, SessionErrorInfo, Session, SessionResult

__all__ = [
    "MediaKind",
    "MediaChunk",
    "DeviceConfig",
    "DeviceInfo",
    "AudioQualityMetrics",
    "ConnectionQuality",
    "ConnectionState",
    "ConnectionStatus",
    "ConnectOptions",
    "ReconnectState",
    "DISCONNECTED",
    "Speaker",
    "TranscriptFragment",
    "TranscriptEntry",
    # Events
    "LiveEventType",
    "LiveEvent",
    "MediaResponseEvent",
    "TranscriptEvent",
    "StatusEvent",
    "ErrorEvent",
    "SessionEvent",
    # Session
    "SessionStatus",
    "CompletionReason",
    "SessionErrorInfo",
    "Session",
    "SessionResult",
]
