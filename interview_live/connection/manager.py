"""Connection lifecycle, reconnection and event fan-out for the live endpoint."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from google.auth.exceptions import GoogleAuthError, TransportError

from ..errors import (
    InterviewLiveError,
    LiveConnectionError,
    MaxReconnectAttemptsError,
    ProtocolError,
    ServerError,
    TransmissionError,
)
from ..models.connection import (
    ConnectOptions,
    ConnectionState,
    ConnectionStatus,
    ReconnectState,
    DISCONNECTED,
)
from ..models.events import LiveEvent, LiveEventType, StatusEvent, ErrorEvent
from ..models.media import MediaChunk
from .backoff import backoff_delay
from .protocol import (
    ACK_STATUS,
    ErrorMessage,
    PongMessage,
    StatusMessage,
    decode_message,
    encode_media,
    encode_ping,
    encode_setup,
    now_ms,
    parse_frame,
    to_event,
)
from .transport import AbstractTransport, AiohttpTransport

logger = logging.getLogger(__name__)

EventCallback = Callable[[LiveEvent], None]
HeadersProvider = Callable[[], Awaitable[Dict[str, str]]]


async def cancel_task(task: Optional[asyncio.Task]) -> None:
    """Cancel a task and wait for it to finish. No-op for the running task."""
    if task is None or task.done() or task is asyncio.current_task():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


class ConnectionManager:
    """Owns the socket-like connection to the live-generation endpoint.

    Subscribers receive media-response, transcript, status and error events
    in registration order. A subscriber that raises is logged and skipped.
    """

    def __init__(self,
                 url: str,
                 model: str = "gemini-2.0-flash-exp",
                 transport_factory: Callable[[], AbstractTransport] = AiohttpTransport,
                 headers_provider: Optional[HeadersProvider] = None,
                 max_reconnect_attempts: int = 5,
                 base_reconnect_delay: float = 1.0,
                 max_reconnect_delay: float = 30.0,
                 connection_timeout: float = 10.0,
                 heartbeat_interval: float = 30.0,
                 enable_heartbeat: bool = True,
                 backoff_sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 clock: Callable[[], float] = time.monotonic):
        """Initialize connection manager.

        Args:
            url: Fully built endpoint URL (including query authentication)
            model: Model name sent in the setup message
            transport_factory: Creates a fresh transport per connection attempt
            headers_provider: Coroutine returning extra handshake headers
            max_reconnect_attempts: Attempts before giving up on an unexpected close
            base_reconnect_delay: Delay before the first reconnect attempt, seconds
            max_reconnect_delay: Upper bound on any reconnect delay, seconds
            connection_timeout: Handshake timeout, seconds
            heartbeat_interval: Seconds between pings
            enable_heartbeat: Whether to ping while connected
            backoff_sleep: Awaitable used to wait between reconnect attempts
            clock: Monotonic clock in seconds
        """
        self.url = url
        self.model = model
        self.transport_factory = transport_factory
        self.headers_provider = headers_provider
        self.base_reconnect_delay = base_reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.connection_timeout = connection_timeout
        self.heartbeat_interval = heartbeat_interval
        self.enable_heartbeat = enable_heartbeat
        self._backoff_sleep = backoff_sleep
        self._clock = clock

        self.reconnect_state = ReconnectState(max_attempts=max_reconnect_attempts)
        self._subscribers: List[Tuple[EventCallback, Optional[FrozenSet[LiveEventType]]]] = []
        self._status: ConnectionStatus = DISCONNECTED
        self._transport: Optional[AbstractTransport] = None
        self._options: Optional[ConnectOptions] = None
        self._closing = False
        self._last_activity: Optional[float] = None

        self._reader_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings, credentials, **kwargs) -> "ConnectionManager":
        """Build from ConnectionSettings and LiveCredentials."""
        return cls(
            url=credentials.build_url(settings.endpoint, settings.model),
            model=settings.model,
            headers_provider=credentials.headers,
            max_reconnect_attempts=settings.max_reconnect_attempts,
            base_reconnect_delay=settings.base_reconnect_delay,
            max_reconnect_delay=settings.max_reconnect_delay,
            connection_timeout=settings.connection_timeout,
            heartbeat_interval=settings.heartbeat_interval,
            enable_heartbeat=settings.enable_heartbeat,
            **kwargs,
        )

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._transport is not None and self._status.connected

    @property
    def reconnect_attempts(self) -> int:
        return self.reconnect_state.attempt

    @property
    def is_reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def is_healthy(self) -> bool:
        """Connected, and the endpoint answered within two heartbeat intervals."""
        if not self.is_connected:
            return False
        if self.enable_heartbeat and self._last_activity is not None:
            if self._clock() - self._last_activity > self.heartbeat_interval * 2:
                logger.warning("Heartbeat timeout detected")
                return False
        return True

    # Subscribers

    def subscribe(self, callback: EventCallback, event_types: Optional[Iterable[LiveEventType]] = None) -> None:
        """Register a callback, optionally limited to some event types."""
        types = frozenset(event_types) if event_types is not None else None
        self._subscribers.append((callback, types))

    def unsubscribe(self, callback: EventCallback) -> None:
        self._subscribers = [(cb, types) for cb, types in self._subscribers if cb != callback]

    def _emit(self, event: LiveEvent) -> None:
        for callback, types in list(self._subscribers):
            if types is not None and event.event_type not in types:
                continue
            try:
                callback(event)
            except Exception:
                logger.exception(f"Error in connection subscriber for {event.event_type.value} event")

    def _emit_status(self, state: ConnectionState, attempt: Optional[int] = None,
                     delay: Optional[float] = None) -> None:
        self._emit(StatusEvent(status=self._status, state=state, attempt=attempt, delay=delay))

    # Lifecycle

    async def connect(self, options: ConnectOptions) -> None:
        """Open the transport and complete the setup handshake.

        Raises:
            LiveConnectionError: On timeout, transport failure or rejected setup
        """
        if self.is_connected:
            logger.info("Already connected to live endpoint")
            return
        self._closing = False
        self._options = options
        await cancel_task(self._reconnect_task)
        self._reconnect_task = None
        await self._establish(options)

    async def disconnect(self) -> None:
        """Close the connection cleanly. No reconnection follows. Idempotent."""
        self._closing = True
        await cancel_task(self._reconnect_task)
        await cancel_task(self._heartbeat_task)
        await cancel_task(self._reader_task)
        self._reconnect_task = self._heartbeat_task = self._reader_task = None

        transport, self._transport = self._transport, None
        was_connected = self._status.connected
        self._status = DISCONNECTED
        self.reconnect_state.reset()
        if transport is not None:
            await transport.close()
            logger.info("Disconnected from live endpoint")
        if was_connected:
            self._emit_status(ConnectionState.DISCONNECTED)

    async def reconnect(self) -> None:
        """Force a reconnection with the last connect options."""
        if self._options is None:
            raise LiveConnectionError("Cannot reconnect before the first connect")
        logger.info("Forcing reconnection...")
        options = self._options
        await self.disconnect()
        await self.connect(options)

    async def send(self, chunk: MediaChunk) -> None:
        """Transmit one media chunk.

        Raises:
            TransmissionError: If not connected or the write fails
        """
        transport = self._transport
        if transport is None or not self._status.connected:
            raise TransmissionError("Cannot send media while disconnected",
                                    details={"sequence": chunk.sequence_number, "kind": chunk.kind.value})
        await transport.send(encode_media(chunk))

    # Internals

    async def _establish(self, options: ConnectOptions) -> None:
        self._emit_status(ConnectionState.CONNECTING)
        transport = self.transport_factory()
        started = self._clock()
        try:
            await asyncio.wait_for(self._handshake(transport, options), timeout=self.connection_timeout)
        except asyncio.TimeoutError as e:
            await self._discard(transport)
            raise LiveConnectionError(f"Connection timeout after {self.connection_timeout}s",
                                      details={"url": self.url}) from e
        except ServerError as e:
            await self._discard(transport)
            raise LiveConnectionError(f"Endpoint rejected setup: {e.message}", code=e.code,
                                      recoverable=e.recoverable, details=e.details) from e
        except LiveConnectionError:
            await self._discard(transport)
            raise
        except OSError as e:
            await self._discard(transport)
            raise LiveConnectionError(f"Failed to connect: {e}") from e

        latency_ms = (self._clock() - started) * 1000.0
        self._transport = transport
        self._status = ConnectionStatus.measured(latency_ms)
        self._last_activity = self._clock()
        self.reconnect_state.reset()

        self._reader_task = asyncio.create_task(self._read_loop(transport))
        if self.enable_heartbeat:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(transport))

        logger.info(f"Connected to live endpoint (latency: {latency_ms:.0f}ms)")
        self._emit_status(ConnectionState.CONNECTED)

    async def _handshake_headers(self) -> Optional[Dict[str, str]]:
        if self.headers_provider is None:
            return None
        try:
            return await self.headers_provider()
        except GoogleAuthError as e:
            # TransportError means the token endpoint was unreachable
            raise LiveConnectionError(f"Failed to obtain credentials: {e}", code="AUTHENTICATION_FAILED",
                                      recoverable=isinstance(e, TransportError)) from e

    async def _handshake(self, transport: AbstractTransport, options: ConnectOptions) -> None:
        headers = await self._handshake_headers()
        await transport.open(self.url, headers)
        try:
            await transport.send(encode_setup(options, self.model))
        except TransmissionError as e:
            raise LiveConnectionError(f"Failed to send setup: {e.message}") from e

        while True:
            raw = await transport.receive()
            if raw is None:
                raise LiveConnectionError("Connection closed during setup")
            try:
                decoded = decode_message(parse_frame(raw))
            except ProtocolError as e:
                logger.warning(f"Ignoring malformed frame during setup: {e.message}")
                continue
            if isinstance(decoded, StatusMessage) and decoded.status == ACK_STATUS:
                return
            if isinstance(decoded, ErrorMessage):
                raise decoded.to_error()
            logger.debug(f"Ignoring {type(decoded).__name__} received before setup acknowledgement")

    async def _discard(self, transport: AbstractTransport) -> None:
        try:
            await transport.close()
        except (OSError, InterviewLiveError) as e:
            logger.debug(f"Error closing failed transport: {e}")

    async def _read_loop(self, transport: AbstractTransport) -> None:
        try:
            while True:
                raw = await transport.receive()
                if raw is None:
                    break
                self._handle_frame(raw)
        except LiveConnectionError as e:
            logger.warning(f"Transport failure: {e.message}")
        if transport is self._transport and not self._closing:
            await self._handle_unexpected_close(transport)

    def _handle_frame(self, raw) -> None:
        try:
            decoded = decode_message(parse_frame(raw))
        except ProtocolError as e:
            logger.warning(f"Dropping malformed frame: {e.message}")
            return
        if decoded is None:
            return

        self._last_activity = self._clock()
        if isinstance(decoded, PongMessage):
            self._status = ConnectionStatus.measured(max(0.0, now_ms() - decoded.timestamp))
            self._emit_status(ConnectionState.STATUS)
            return

        event = to_event(decoded, self._status)
        if isinstance(event, StatusEvent):
            self._status = event.status
        if isinstance(event, ErrorEvent):
            logger.error(f"Live endpoint error: {event.error!r}")
        self._emit(event)

    async def _heartbeat_loop(self, transport: AbstractTransport) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await transport.send(encode_ping())
            except TransmissionError as e:
                logger.warning(f"Heartbeat failed: {e.message}")
                return

    async def _handle_unexpected_close(self, transport: AbstractTransport) -> None:
        logger.warning("Connection closed unexpectedly")
        self._transport = None
        self._status = DISCONNECTED
        await cancel_task(self._heartbeat_task)
        self._heartbeat_task = None
        await self._discard(transport)
        self._emit_status(ConnectionState.DISCONNECTED)
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        state = self.reconnect_state
        while not self._closing:
            if state.exhausted:
                error = MaxReconnectAttemptsError("Maximum reconnection attempts reached",
                                                  details={"attempts": state.attempt})
                logger.error(f"Giving up after {state.attempt} reconnection attempts")
                self._emit_status(ConnectionState.FAILED, attempt=state.attempt)
                self._emit(ErrorEvent(error=error, terminal=True))
                return

            state.attempt += 1
            state.next_delay = backoff_delay(state.attempt, self.base_reconnect_delay, self.max_reconnect_delay)
            logger.info(f"Scheduling reconnection attempt {state.attempt}/{state.max_attempts} "
                        f"in {state.next_delay:.2f}s")
            self._emit_status(ConnectionState.RECONNECTING, attempt=state.attempt, delay=state.next_delay)
            await self._backoff_sleep(state.next_delay)
            if self._closing:
                return

            try:
                await self._establish(self._options)
                return
            except LiveConnectionError as e:
                logger.warning(f"Reconnection attempt {state.attempt} failed: {e.message}")
                if not e.recoverable:
                    self._emit_status(ConnectionState.FAILED, attempt=state.attempt)
                    self._emit(ErrorEvent(error=e, terminal=True))
                    return
