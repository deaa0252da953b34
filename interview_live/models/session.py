"""Session-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, TYPE_CHECKING

from ..errors import InterviewLiveError, RecoveryStrategy, guidance_for, recovery_for
from .connection import ConnectionStatus, DISCONNECTED
from .transcript import TranscriptEntry

if TYPE_CHECKING:
    from ..transcription.assembler import TranscriptAssembler


class SessionStatus(Enum):
    """Interview session state machine."""
    INITIALIZING = "initializing"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.ERROR)


class CompletionReason(Enum):
    MANUAL = "manual"
    TIME_LIMIT = "time_limit"


@dataclass
class SessionErrorInfo:
    """User-facing description of an escalated error."""
    code: str
    message: str
    user_message: str
    recoverable: bool
    recovery: RecoveryStrategy = RecoveryStrategy.ABORT
    retry_delay: Optional[float] = None
    guidance: List[str] = field(default_factory=list)
    timestamp: Optional[datetime] = None

    @classmethod
    def from_error(cls, error: InterviewLiveError, timestamp: Optional[datetime] = None) -> "SessionErrorInfo":
        recovery, retry_delay = recovery_for(error.code)
        return cls(
            code=error.code,
            message=error.message,
            user_message=error.user_message,
            recoverable=error.recoverable,
            recovery=recovery,
            retry_delay=retry_delay,
            guidance=guidance_for(error.code),
            timestamp=timestamp,
        )

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "recoverable": self.recoverable,
            "recovery": self.recovery.value,
            "retry_delay": self.retry_delay,
            "guidance": list(self.guidance),
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class Session:
    """One interview attempt. Owned by the SessionController that created it."""
    session_id: str
    subject_id: str
    time_limit_minutes: float
    transcript: "TranscriptAssembler"
    status: SessionStatus = SessionStatus.INITIALIZING
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    connection_status: ConnectionStatus = DISCONNECTED
    last_error: Optional[SessionErrorInfo] = None

    @property
    def time_limit_seconds(self) -> float:
        return self.time_limit_minutes * 60.0

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "subject_id": self.subject_id,
            "status": self.status.value,
            "time_limit_minutes": self.time_limit_minutes,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "connection_status": self.connection_status.to_dict(),
            "last_error": self.last_error.to_dict() if self.last_error else None,
            "transcript": [entry.to_dict() for entry in self.transcript.final_entries],
        }


@dataclass
class SessionResult:
    """Accumulated session data handed to the completion callback."""
    session_id: str
    subject_id: str
    transcript: List[TranscriptEntry]
    transcript_text: List[str]
    duration_ms: float
    started_at: datetime
    ended_at: datetime
    completion_reason: CompletionReason
    metadata: dict = field(default_factory=dict)
