"""Wire codec for the live-generation endpoint.

Frames are JSON text messages with a ``type`` field. Outgoing types are
``setup``, ``media`` and ``ping``; incoming types are ``media_response``,
``transcript``, ``status``, ``error`` and ``pong``. Binary payloads travel as
base64 strings.
"""

import base64
import binascii
import json
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import ProtocolError, ServerError
from ..models.connection import ConnectOptions, ConnectionStatus, ConnectionQuality, ConnectionState
from ..models.events import LiveEvent, MediaResponseEvent, TranscriptEvent, StatusEvent, ErrorEvent
from ..models.media import MediaChunk, MediaKind
from ..models.transcript import Speaker, TranscriptFragment

logger = logging.getLogger(__name__)

ACK_STATUS = "connected"

_SPEAKER_ALIASES = {
    "ai": Speaker.AI,
    "assistant": Speaker.AI,
    "model": Speaker.AI,
    "subject": Speaker.SUBJECT,
    "founder": Speaker.SUBJECT,
    "user": Speaker.SUBJECT,
}


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class TranscriptMessage(_WireModel):
    text: str
    confidence: float = Field(1.0, ge=0.0, le=1.0)
    is_final: bool = Field(False, alias="isFinal")
    speaker: Speaker = Speaker.AI
    timestamp: Optional[datetime] = None
    utterance_id: Optional[str] = Field(None, alias="utteranceId")
    key_phrases: List[str] = Field(default_factory=list, alias="keyPhrases")

    @field_validator("speaker", mode="before")
    @classmethod
    def _map_speaker(cls, value):
        if isinstance(value, str):
            try:
                return _SPEAKER_ALIASES[value.lower()]
            except KeyError:
                raise ValueError(f"unknown speaker: {value}")
        return value

    @field_validator("key_phrases", mode="before")
    @classmethod
    def _none_to_list(cls, value):
        return value or []

    def to_fragment(self) -> TranscriptFragment:
        return TranscriptFragment(
            speaker=self.speaker,
            text=self.text,
            is_final=self.is_final,
            timestamp=self.timestamp or datetime.now().astimezone(),
            utterance_id=self.utterance_id,
            confidence=self.confidence,
            key_phrases=list(self.key_phrases),
        )


class StatusMessage(_WireModel):
    status: str
    latency: Optional[float] = None
    quality: Optional[ConnectionQuality] = None

    def to_status(self, current: ConnectionStatus) -> ConnectionStatus:
        # Only "connected" carries measurements; other states leave the view as is
        if self.status != ACK_STATUS:
            return current
        latency = self.latency if self.latency is not None else current.latency_ms
        quality = self.quality
        if quality is None and latency is not None:
            quality = ConnectionQuality.from_latency(latency)
        return ConnectionStatus(connected=True, latency_ms=latency, quality=quality or ConnectionQuality.GOOD)


class ErrorMessage(_WireModel):
    code: Optional[str] = None
    message: str = "Server error occurred"
    details: Optional[Dict[str, Any]] = None

    def to_error(self) -> ServerError:
        return ServerError(self.message, code=self.code, details=self.details)


class MediaResponseMessage(_WireModel):
    media_type: MediaKind = Field(MediaKind.AUDIO, alias="mediaType")
    data: bytes
    timestamp: Optional[float] = None

    @field_validator("data", mode="before")
    @classmethod
    def _decode_payload(cls, value):
        # Payloads arrive as base64 text or as a list of byte values
        if isinstance(value, str):
            try:
                return base64.b64decode(value, validate=True)
            except binascii.Error as e:
                raise ValueError(f"invalid base64 payload: {e}")
        if isinstance(value, list):
            try:
                return bytes(value)
            except (TypeError, ValueError) as e:
                raise ValueError(f"invalid byte list payload: {e}")
        raise ValueError(f"unsupported payload type: {type(value).__name__}")

    def payload(self) -> bytes:
        return self.data


class PongMessage(_WireModel):
    timestamp: float


MESSAGE_MODELS = {
    "transcript": TranscriptMessage,
    "status": StatusMessage,
    "error": ErrorMessage,
    "media_response": MediaResponseMessage,
    "pong": PongMessage,
}


def now_ms() -> float:
    return time.time() * 1000.0


def encode_setup(options: ConnectOptions, model: str) -> str:
    """Build the initial setup frame."""
    message = {
        "type": "setup",
        "config": {
            "model": model,
            "audio": {
                "sampleRate": options.sample_rate,
                "channels": options.channels,
                "encoding": options.encoding,
            } if options.enable_audio else None,
            "video": {
                "width": options.width,
                "height": options.height,
                "frameRate": options.frame_rate,
            } if options.enable_video else None,
            "transcription": options.enable_transcription,
            "language": options.language,
            **options.extra,
        },
    }
    return json.dumps(message)


def encode_media(chunk: MediaChunk) -> str:
    """Build a media frame. The payload is base64 encoded."""
    message = {
        "type": "media",
        "mediaType": chunk.kind.value,
        "sequence": chunk.sequence_number,
        "timestamp": int(chunk.captured_at * 1000),
        "data": base64.b64encode(chunk.payload).decode("ascii"),
        "metadata": chunk.metadata,
    }
    return json.dumps(message)


def encode_ping(timestamp_ms: Optional[float] = None) -> str:
    return json.dumps({"type": "ping", "timestamp": timestamp_ms if timestamp_ms is not None else now_ms()})


def parse_frame(raw: Union[str, bytes]) -> Dict[str, Any]:
    """Parse a raw frame into a message dict.

    Raises:
        ProtocolError: If the frame is not a JSON object with a type field
    """
    try:
        message = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Invalid JSON frame: {e}") from e
    if not isinstance(message, dict) or "type" not in message:
        raise ProtocolError("Frame is not an object with a 'type' field")
    return message


def decode_message(message: Dict[str, Any]) -> Optional[_WireModel]:
    """Validate a parsed message against its wire model.

    Returns:
        The validated model, or None for unknown message types

    Raises:
        ProtocolError: If a known message type fails validation
    """
    message_type = message.get("type")
    model = MESSAGE_MODELS.get(message_type)
    if model is None:
        logger.debug(f"Ignoring unknown message type: {message_type}")
        return None
    try:
        return model.model_validate(message)
    except ValidationError as e:
        raise ProtocolError(f"Invalid '{message_type}' message: {e}", details={"type": message_type}) from e


def to_event(decoded: _WireModel, current_status: ConnectionStatus) -> Optional[LiveEvent]:
    """Map a validated wire message to the event subscribers receive."""
    if isinstance(decoded, TranscriptMessage):
        return TranscriptEvent(fragment=decoded.to_fragment())
    if isinstance(decoded, MediaResponseMessage):
        return MediaResponseEvent(kind=decoded.media_type, payload=decoded.payload(), timestamp=decoded.timestamp)
    if isinstance(decoded, StatusMessage):
        return StatusEvent(status=decoded.to_status(current_status), state=ConnectionState.STATUS)
    if isinstance(decoded, ErrorMessage):
        return ErrorEvent(error=decoded.to_error())
    return None
