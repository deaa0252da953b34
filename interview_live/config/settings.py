"""Typed, validated configuration sections."""

import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ..models.connection import ConnectOptions
from ..models.media import DeviceConfig

DEFAULT_ENDPOINT = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1alpha.GenerativeService.BidiGenerateContent"
)


class SessionSettings(BaseModel):
    """Interview session limits."""
    time_limit_minutes: float = Field(10, gt=0)
    audio_quality_threshold: float = Field(0.7, ge=0.0, le=1.0)
    auto_save_interval_seconds: float = Field(30, ge=0)
    time_check_interval_seconds: float = Field(1.0, gt=0, le=1.0)


class ConnectionSettings(BaseModel):
    """Remote endpoint and reconnection policy."""
    endpoint: str = DEFAULT_ENDPOINT
    model: str = "gemini-2.0-flash-exp"
    api_key: Optional[str] = None
    api_key_env: str = "GEMINI_API_KEY"
    credentials_path: Optional[str] = None
    language: str = "en-US"
    max_reconnect_attempts: int = Field(5, ge=0)
    base_reconnect_delay: float = Field(1.0, gt=0)
    max_reconnect_delay: float = Field(30.0, gt=0)
    connection_timeout: float = Field(10.0, gt=0)
    heartbeat_interval: float = Field(30.0, gt=0)
    enable_heartbeat: bool = True

    @field_validator("max_reconnect_delay")
    @classmethod
    def _max_not_below_base(cls, value, info):
        base = info.data.get("base_reconnect_delay")
        if base is not None and value < base:
            raise ValueError("max_reconnect_delay must be >= base_reconnect_delay")
        return value

    def resolve_api_key(self) -> Optional[str]:
        """Explicit key wins over the environment variable."""
        return self.api_key or os.environ.get(self.api_key_env) or None


class AudioSettings(BaseModel):
    sample_rate: int = Field(16000, gt=0)
    channels: int = Field(1, ge=1, le=2)
    chunk_interval_ms: int = Field(100, gt=0)
    device_id: Optional[str] = None


class VideoSettings(BaseModel):
    enabled: bool = False
    device_id: Optional[str] = None
    width: int = Field(640, gt=0)
    height: int = Field(480, gt=0)
    frame_interval_ms: int = Field(1000, gt=0)
    jpeg_quality: int = Field(80, ge=1, le=100)


def build_device_config(audio: AudioSettings, video: VideoSettings) -> DeviceConfig:
    return DeviceConfig(
        audio_device_id=audio.device_id,
        sample_rate=audio.sample_rate,
        channels=audio.channels,
        chunk_interval_ms=audio.chunk_interval_ms,
        video_enabled=video.enabled,
        video_device_id=video.device_id,
        width=video.width,
        height=video.height,
        frame_interval_ms=video.frame_interval_ms,
        jpeg_quality=video.jpeg_quality,
    )


def build_connect_options(connection: ConnectionSettings, audio: AudioSettings,
                          video: VideoSettings) -> ConnectOptions:
    return ConnectOptions(
        enable_audio=True,
        enable_video=video.enabled,
        enable_transcription=True,
        language=connection.language,
        sample_rate=audio.sample_rate,
        channels=audio.channels,
        width=video.width,
        height=video.height,
        frame_rate=max(1, round(1000 / video.frame_interval_ms)),
    )
