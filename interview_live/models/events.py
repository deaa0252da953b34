"""Event models delivered to connection subscribers and session listeners."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Any, Dict

from .connection import ConnectionStatus, ConnectionState
from .media import MediaKind
from .transcript import TranscriptFragment


class LiveEventType(Enum):
    """Kinds of events a ConnectionManager emits."""
    MEDIA_RESPONSE = "media_response"
    TRANSCRIPT = "transcript"
    STATUS = "status"
    ERROR = "error"


@dataclass
class LiveEvent:
    """Base class for events emitted by the ConnectionManager."""
    event_type: LiveEventType = field(init=False)
    received_at: datetime = field(default_factory=datetime.now, init=False)


@dataclass
class MediaResponseEvent(LiveEvent):
    """Generated media (usually synthesized speech) from the endpoint."""
    kind: MediaKind
    payload: bytes
    timestamp: Optional[float] = None

    def __post_init__(self):
        self.event_type = LiveEventType.MEDIA_RESPONSE


@dataclass
class TranscriptEvent(LiveEvent):
    """A transcript fragment from the endpoint."""
    fragment: TranscriptFragment

    def __post_init__(self):
        self.event_type = LiveEventType.TRANSCRIPT


@dataclass
class StatusEvent(LiveEvent):
    """Connection status update, on a remote status message or a transition."""
    status: ConnectionStatus
    state: ConnectionState
    attempt: Optional[int] = None
    delay: Optional[float] = None

    def __post_init__(self):
        self.event_type = LiveEventType.STATUS


@dataclass
class ErrorEvent(LiveEvent):
    """An escalated error. `error` is an InterviewLiveError."""
    error: Any
    terminal: bool = False

    def __post_init__(self):
        self.event_type = LiveEventType.ERROR


@dataclass
class SessionEvent:
    """Session lifecycle event."""
    session_id: str
    event_type: str  # "started", "paused", "resumed", "completed", "error"
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)
