"""Transcript-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List


class Speaker(Enum):
    """Who produced an utterance."""
    AI = "ai"
    SUBJECT = "subject"


@dataclass
class TranscriptFragment:
    """A partial or final piece of transcribed speech tied to one utterance."""
    speaker: Speaker
    text: str
    is_final: bool
    timestamp: datetime
    utterance_id: Optional[str] = None
    confidence: float = 1.0
    key_phrases: List[str] = field(default_factory=list)


@dataclass
class TranscriptEntry:
    """One assembled transcript line.

    Non-final entries are replaced in place when a newer fragment for the same
    utterance arrives. Final entries are never modified.
    """
    entry_id: str
    session_id: str
    speaker: Speaker
    text: str
    confidence: float
    is_final: bool
    timestamp: datetime
    utterance_id: Optional[str] = None
    key_phrases: List[str] = field(default_factory=list)

    def to_line(self) -> str:
        """Render as "[HH:MM:SS] SPEAKER: text"."""
        return f"[{self.timestamp.strftime('%H:%M:%S')}] {self.speaker.value.upper()}: {self.text}"

    def to_dict(self) -> dict:
        return {
            "id": self.entry_id,
            "session_id": self.session_id,
            "speaker": self.speaker.value,
            "text": self.text,
            "confidence": self.confidence,
            "is_final": self.is_final,
            "timestamp": self.timestamp.isoformat(),
            "utterance_id": self.utterance_id,
            "key_phrases": list(self.key_phrases),
        }
