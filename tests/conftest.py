"""Pytest configuration and fixtures for interview-live tests."""

import asyncio
import json
import logging
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import Mock, patch

import numpy as np
import pytest
from pubsub import pub

from interview_live.config.settings import SessionSettings
from interview_live.connection.manager import ConnectionManager
from interview_live.connection.transport import AbstractTransport
from interview_live.errors import DeviceError, LiveConnectionError, TransmissionError
from interview_live.media.base import AbstractCaptureDevice
from interview_live.media.bridge import MediaCaptureBridge
from interview_live.media.leases import DeviceLeases
from interview_live.models.connection import ConnectOptions
from interview_live.models.media import DeviceConfig, MediaKind
from interview_live.services.session_controller import SessionController


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class FakeTransport(AbstractTransport):
    """In-memory transport. Frames pushed by the test are what the manager receives."""

    def __init__(self, fail_open: bool = False, ack: bool = True, setup_error: Optional[Dict[str, Any]] = None):
        self.fail_open = fail_open
        self.ack = ack
        self.setup_error = setup_error
        self.sent: List[Dict[str, Any]] = []
        self.url: Optional[str] = None
        self.headers: Optional[Dict[str, str]] = None
        self.opened = False
        self.closed = False
        self._incoming: Optional[asyncio.Queue] = None

    @property
    def incoming(self) -> asyncio.Queue:
        if self._incoming is None:
            self._incoming = asyncio.Queue()
        return self._incoming

    async def open(self, url, headers=None):
        if self.fail_open:
            raise LiveConnectionError("connection refused")
        self.url = url
        self.headers = headers
        self.opened = True

    async def send(self, frame):
        if self.closed:
            raise TransmissionError("socket closed")
        message = json.loads(frame)
        self.sent.append(message)
        if message["type"] == "setup":
            if self.setup_error is not None:
                self.push({"type": "error", **self.setup_error})
            elif self.ack:
                self.push({"type": "status", "status": "connected"})

    async def receive(self):
        return await self.incoming.get()

    async def close(self):
        if not self.closed:
            self.closed = True
            self.incoming.put_nowait(None)

    def push(self, message) -> None:
        self.incoming.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self) -> None:
        """Simulate the remote end closing the connection."""
        self.incoming.put_nowait(None)

    def sent_of_type(self, message_type: str) -> List[Dict[str, Any]]:
        return [message for message in self.sent if message["type"] == message_type]


class FakeTransportFactory:
    """Hands out queued transports in order, then healthy ones."""

    def __init__(self):
        self.created: List[FakeTransport] = []
        self._queued: List[FakeTransport] = []

    def queue(self, **kwargs) -> FakeTransport:
        transport = FakeTransport(**kwargs)
        self._queued.append(transport)
        return transport

    def __call__(self) -> FakeTransport:
        transport = self._queued.pop(0) if self._queued else FakeTransport()
        self.created.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.created[-1]


class RecordingSleep:
    """Backoff sleep that records delays and returns at once."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FakeDevice(AbstractCaptureDevice):
    def __init__(self, device_id, config, kind=MediaKind.AUDIO, interval=0.005,
                 open_error: Optional[DeviceError] = None, fail_after: Optional[int] = None):
        super().__init__(device_id, config)
        self.kind = kind
        self.interval = interval
        self.open_error = open_error
        self.fail_after = fail_after
        self.opened = False
        self.closed = False
        self.reads = 0

    def open(self):
        if self.open_error is not None:
            raise self.open_error
        self.opened = True

    def read_chunk(self):
        self.reads += 1
        if self.fail_after is not None and self.reads > self.fail_after:
            raise DeviceError("device unplugged", device_id=self.device_id, kind=self.kind.value)
        samples = (np.sin(np.linspace(0, 2 * np.pi * 10, 160)) * 0.3 * 32767).astype(np.int16)
        return samples.tobytes(), {"device": self.lease_key}

    def close(self):
        self.closed = True

    async def capture(self):
        await asyncio.sleep(self.interval)
        return self.read_chunk()


class FakeDeviceFactory:
    """Builds FakeDevices; open errors and read failures are configured per device id."""

    def __init__(self):
        self.created: List[FakeDevice] = []
        self.open_errors: Dict[str, DeviceError] = {}
        self.fail_after: Dict[str, int] = {}

    def __call__(self, kind, device_id, config):
        key = device_id if device_id is not None else "default"
        device = FakeDevice(device_id, config, kind=kind,
                            open_error=self.open_errors.get(key),
                            fail_after=self.fail_after.get(key))
        self.created.append(device)
        return device

    def of_kind(self, kind: MediaKind) -> List[FakeDevice]:
        return [device for device in self.created if device.kind is kind]


class FakeClock:
    """Wall clock advanced by hand."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def reset_pubsub():
    """Drop pubsub listeners registered by a test."""
    yield
    pub.unsubAll()


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def transports():
    return FakeTransportFactory()


@pytest.fixture
def recorded_sleep():
    return RecordingSleep()


@pytest.fixture
def make_manager(transports, recorded_sleep):
    """Build ConnectionManagers wired to the fake transports."""
    def factory(**kwargs) -> ConnectionManager:
        options = {
            "url": "wss://live.test/ws?model=test-model",
            "model": "test-model",
            "transport_factory": transports,
            "backoff_sleep": recorded_sleep,
            "enable_heartbeat": False,
            "connection_timeout": 1.0,
        }
        options.update(kwargs)
        return ConnectionManager(**options)
    return factory


@pytest.fixture
def devices():
    return FakeDeviceFactory()


@pytest.fixture
def device_config():
    return DeviceConfig(chunk_interval_ms=10)


@pytest.fixture
def leases():
    return DeviceLeases()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def make_controller(make_manager, devices, leases, device_config, fake_clock):
    """Build SessionControllers with fake connection, devices and clock."""
    def factory(manager_options: Optional[Dict[str, Any]] = None, **kwargs) -> SessionController:
        options = {
            "subject_id": "subject-1",
            "connection_factory": lambda: make_manager(**(manager_options or {})),
            "connect_options": ConnectOptions(),
            "device_config": device_config,
            "settings": SessionSettings(time_limit_minutes=1, auto_save_interval_seconds=0),
            "bridge_factory": lambda sink, on_error: MediaCaptureBridge(
                sink, device_factory=devices, leases=leases, on_error=on_error),
            "publish_events": False,
            "clock": fake_clock,
        }
        options.update(kwargs)
        return SessionController(**options)
    return factory


@pytest.fixture
def wait_until():
    """Poll a condition on the running loop until it holds or times out."""
    async def waiter(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(interval)
    return waiter


@pytest.fixture
def mock_pyaudio():
    """Mock PyAudio for testing without actual audio hardware."""
    with patch('pyaudio.PyAudio') as mock_pyaudio_class:
        mock_pyaudio_instance = Mock()
        mock_stream = Mock()

        # Configure mock stream
        mock_stream.read.return_value = b'\x00' * 3200  # 100ms of silence at 16kHz
        mock_stream.stop_stream.return_value = None
        mock_stream.close.return_value = None

        # Configure mock PyAudio instance
        mock_pyaudio_instance.open.return_value = mock_stream
        mock_pyaudio_instance.terminate.return_value = None
        mock_pyaudio_instance.get_default_input_device_info.return_value = {
            "index": 0, "name": "Built-in Microphone", "maxInputChannels": 1, "defaultSampleRate": 16000.0,
        }
        mock_pyaudio_instance.get_device_count.return_value = 2
        mock_pyaudio_instance.get_device_info_by_index.side_effect = lambda index: [
            {"index": 0, "name": "Built-in Microphone", "maxInputChannels": 1, "defaultSampleRate": 16000.0},
            {"index": 1, "name": "Speakers", "maxInputChannels": 0, "defaultSampleRate": 48000.0},
        ][index]

        mock_pyaudio_class.return_value = mock_pyaudio_instance

        yield {
            'class': mock_pyaudio_class,
            'instance': mock_pyaudio_instance,
            'stream': mock_stream
        }


@pytest.fixture
def audio_test_data():
    """Generate various audio test data patterns."""
    def generate_audio(pattern="sine", duration_seconds=0.1, sample_rate=16000, amplitude=0.3):
        """Generate 16-bit PCM audio for testing.

        Args:
            pattern: Type of audio pattern ('sine', 'noise', 'silence')
            duration_seconds: Duration of audio
            sample_rate: Sample rate in Hz
            amplitude: Peak amplitude, 0..1

        Returns:
            bytes: Audio data as bytes
        """
        samples = int(duration_seconds * sample_rate)

        if pattern == "sine":
            t = np.linspace(0, duration_seconds, samples, False)
            wave_data = amplitude * np.sin(2 * np.pi * 440 * t)
        elif pattern == "noise":
            wave_data = np.random.default_rng(0).uniform(-amplitude, amplitude, samples)
        elif pattern == "silence":
            wave_data = np.zeros(samples)
        else:
            raise ValueError(f"Unknown pattern: {pattern}")

        return (wave_data * 32767).astype(np.int16).tobytes()

    return generate_audio
