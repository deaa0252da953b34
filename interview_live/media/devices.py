"""Microphone capture via PyAudio and platform device enumeration."""

import errno
import logging
from typing import Any, Dict, List, Optional, Tuple

import pyaudio

from ..errors import DeviceError
from ..models.media import DeviceConfig, DeviceInfo, MediaKind
from .base import AbstractCaptureDevice
from .processing import resample_pcm

logger = logging.getLogger(__name__)

# PortAudio reports failures as OSError with its error code in errno
PORTAUDIO_ERROR_CODES = {
    pyaudio.paInvalidDevice: "DEVICE_NOT_FOUND",
    pyaudio.paDeviceUnavailable: "DEVICE_BUSY",
    errno.EACCES: "DEVICE_PERMISSION_DENIED",
    errno.EPERM: "DEVICE_PERMISSION_DENIED",
}


class PyAudioMicrophone(AbstractCaptureDevice):
    """16-bit PCM microphone capture.

    Opens the stream at the session sample rate when the device supports it,
    otherwise at the device's native rate and resamples each chunk.
    """

    kind = MediaKind.AUDIO

    def __init__(self, device_id: Optional[str], config: DeviceConfig, format: int = pyaudio.paInt16):
        super().__init__(device_id, config)
        self.format = format
        self.capture_rate = config.sample_rate
        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self.stream = None
        self.total_chunks = 0

    def _device_info(self) -> Dict[str, Any]:
        try:
            if self.device_id is None:
                info = self.pyaudio_instance.get_default_input_device_info()
            else:
                info = self.pyaudio_instance.get_device_info_by_index(int(self.device_id))
        except (OSError, ValueError) as e:
            raise DeviceError(f"Microphone '{self.lease_key}' not found: {e}",
                              device_id=self.device_id, kind=self.kind.value, code="DEVICE_NOT_FOUND") from e
        if info.get("maxInputChannels", 0) < 1:
            raise DeviceError(f"Device '{self.lease_key}' has no input channels",
                              device_id=self.device_id, kind=self.kind.value, code="DEVICE_NOT_FOUND")
        return info

    def __open_audio_stream(self, rate: int, device_index: Optional[int]):
        stream = self.pyaudio_instance.open(
            format=self.format,
            channels=self.config.channels,
            rate=rate,
            input=True,
            input_device_index=device_index,
            frames_per_buffer=int(rate * self.config.chunk_interval_ms / 1000),
            stream_callback=None
        )
        logger.info(f"Audio stream opened: {rate}Hz, {self.config.channels} channel(s), "
                    f"{self.config.chunk_interval_ms}ms chunks")
        return stream

    def _supports_rate(self, rate: int, device_index: Optional[int]) -> bool:
        try:
            return bool(self.pyaudio_instance.is_format_supported(
                rate,
                input_device=device_index,
                input_channels=self.config.channels,
                input_format=self.format,
            ))
        except ValueError:
            return False

    def _device_error(self, action: str, error: OSError) -> DeviceError:
        code = PORTAUDIO_ERROR_CODES.get(error.errno, "DEVICE_UNAVAILABLE")
        return DeviceError(f"Microphone {action} failed: {error}", device_id=self.device_id,
                           kind=self.kind.value, code=code)

    def open(self) -> None:
        self.pyaudio_instance = pyaudio.PyAudio()
        try:
            info = self._device_info()
            device_index = int(info["index"]) if "index" in info else None
            rate = self.config.sample_rate
            if not self._supports_rate(rate, device_index):
                rate = int(info.get("defaultSampleRate", rate))
                logger.info(f"Device does not support {self.config.sample_rate}Hz, "
                            f"capturing at {rate}Hz and resampling")
            self.stream = self.__open_audio_stream(rate, device_index)
            self.capture_rate = rate
        except OSError as e:
            self._terminate()
            raise self._device_error("open", e) from e
        except DeviceError:
            self._terminate()
            raise

    def read_chunk(self) -> Tuple[bytes, Dict[str, Any]]:
        if self.stream is None:
            raise DeviceError("Microphone is not open", device_id=self.device_id, kind=self.kind.value)
        frames = int(self.capture_rate * self.config.chunk_interval_ms / 1000)
        try:
            audio_chunk = self.stream.read(frames, exception_on_overflow=False)
        except OSError as e:
            raise self._device_error("read", e) from e

        if self.capture_rate != self.config.sample_rate:
            audio_chunk = resample_pcm(audio_chunk, self.capture_rate, self.config.sample_rate, self.config.channels)

        self.total_chunks += 1
        return audio_chunk, {
            "sampleRate": self.config.sample_rate,
            "channels": self.config.channels,
            "encoding": "linear16",
        }

    def close(self) -> None:
        if self.stream is not None:
            try:
                self.stream.stop_stream()
                self.stream.close()
            except OSError as e:
                logger.warning(f"Error closing audio stream: {e}")
            self.stream = None
        self._terminate()
        logger.info(f"Microphone closed. Total chunks: {self.total_chunks}")

    def _terminate(self) -> None:
        if self.pyaudio_instance is not None:
            self.pyaudio_instance.terminate()
            self.pyaudio_instance = None


def list_audio_devices() -> List[DeviceInfo]:
    """Enumerate input-capable audio devices."""
    audio = pyaudio.PyAudio()
    devices = []
    try:
        for index in range(audio.get_device_count()):
            info = audio.get_device_info_by_index(index)
            if info.get("maxInputChannels", 0) < 1:
                continue
            devices.append(DeviceInfo(
                device_id=str(index),
                label=info.get("name", f"Microphone {index}"),
                kind=MediaKind.AUDIO,
                default_sample_rate=int(info.get("defaultSampleRate", 0)) or None,
                max_input_channels=int(info.get("maxInputChannels", 0)),
            ))
    finally:
        audio.terminate()
    return devices


def list_devices(include_video: bool = True) -> List[DeviceInfo]:
    """Enumerate microphones and, optionally, cameras."""
    devices = list_audio_devices()
    if include_video:
        from .camera import list_cameras
        devices.extend(list_cameras())
    return devices
