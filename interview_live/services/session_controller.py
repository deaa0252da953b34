"""Session controller: lifecycle, time limit and error escalation for one interview."""

import asyncio
import logging
from collections import deque
from datetime import datetime
from typing import Callable, Deque, List, Optional, Set

from ..connection.manager import ConnectionManager, cancel_task
from ..config.settings import SessionSettings
from ..errors import (
    DeviceError,
    InterviewLiveError,
    LiveConnectionError,
    SessionStateError,
    SessionTimeoutError,
    TransmissionError,
)
from ..media.bridge import ChunkSink, ErrorHook, MediaCaptureBridge
from ..models.connection import ConnectOptions, ConnectionState
from ..models.events import (
    ErrorEvent,
    LiveEvent,
    MediaResponseEvent,
    SessionEvent,
    StatusEvent,
    TranscriptEvent,
)
from ..models.media import AudioQualityMetrics, DeviceConfig, MediaChunk, MediaKind
from ..models.session import (
    CompletionReason,
    Session,
    SessionErrorInfo,
    SessionResult,
    SessionStatus,
)
from ..models.transcript import TranscriptEntry
from ..transcription.assembler import TranscriptAssembler
from ..transcription.publisher import TranscriptPublisher
from .lifecycle import SessionEventPublisher
from .session_store import SessionStore, new_session_id

logger = logging.getLogger(__name__)

BridgeFactory = Callable[[ChunkSink, ErrorHook], MediaCaptureBridge]

ERROR_HISTORY_SIZE = 50


def local_now() -> datetime:
    return datetime.now().astimezone()


def default_bridge_factory(sink: ChunkSink, on_error: ErrorHook) -> MediaCaptureBridge:
    return MediaCaptureBridge(sink, on_error=on_error)


class SessionController:
    """Drives one interview session at a time.

    States: initializing -> active <-> paused -> completed, and any state
    -> error. Calling ``start()`` after completion or an error begins a
    fresh session with a new connection and capture bridge.
    """

    def __init__(self,
                 subject_id: str,
                 connection_factory: Callable[[], ConnectionManager],
                 connect_options: ConnectOptions,
                 device_config: DeviceConfig,
                 settings: Optional[SessionSettings] = None,
                 bridge_factory: BridgeFactory = default_bridge_factory,
                 store: Optional[SessionStore] = None,
                 on_complete: Optional[Callable[[SessionResult], None]] = None,
                 on_error: Optional[Callable[[SessionErrorInfo], None]] = None,
                 on_transcript: Optional[Callable[[TranscriptEntry], None]] = None,
                 on_status: Optional[Callable[[SessionStatus], None]] = None,
                 on_media_response: Optional[Callable[[MediaResponseEvent], None]] = None,
                 publish_events: bool = True,
                 clock: Callable[[], datetime] = local_now):
        """Initialize session controller.

        Args:
            subject_id: Interview subject the sessions belong to
            connection_factory: Builds a fresh ConnectionManager per session
            connect_options: Options sent in the setup handshake
            device_config: Capture devices and formats
            settings: Time limit, quality threshold and timer intervals
            bridge_factory: Builds the capture bridge from a chunk sink and error hook
            store: Where snapshots and results are written; None disables persistence
            on_complete: Called once with the session result
            on_error: Called with every surfaced error
            on_transcript: Called with each new or updated transcript entry
            on_status: Called on every session status change
            on_media_response: Called with generated media from the endpoint
            publish_events: Also publish lifecycle and transcript events via pubsub
            clock: Wall clock returning timezone-aware datetimes
        """
        self.subject_id = subject_id
        self.connection_factory = connection_factory
        self.connect_options = connect_options
        self.device_config = device_config
        self.settings = settings or SessionSettings()
        self.bridge_factory = bridge_factory
        self.store = store
        self.on_complete = on_complete
        self.on_error = on_error
        self.on_transcript = on_transcript
        self.on_status = on_status
        self.on_media_response = on_media_response
        self._clock = clock

        self.lifecycle_publisher = SessionEventPublisher() if publish_events else None
        self.transcript_publisher = TranscriptPublisher() if publish_events else None

        self.session: Optional[Session] = None
        self.connection: Optional[ConnectionManager] = None
        self.bridge: Optional[MediaCaptureBridge] = None
        self._result: Optional[SessionResult] = None
        self._completed = False
        self._complete_lock = asyncio.Lock()
        self._audio_enabled = True
        self._capture_suspended = False
        self._error_history: Deque[SessionErrorInfo] = deque(maxlen=ERROR_HISTORY_SIZE)

        self._watch_task: Optional[asyncio.Task] = None
        self._autosave_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    # Read-only UI surface

    @property
    def status(self) -> Optional[SessionStatus]:
        return self.session.status if self.session else None

    @property
    def transcript(self) -> List[TranscriptEntry]:
        return self.session.transcript.entries if self.session else []

    @property
    def result(self) -> Optional[SessionResult]:
        return self._result

    @property
    def audio_quality(self) -> Optional[AudioQualityMetrics]:
        return self.bridge.quality_metrics() if self.bridge else None

    @property
    def error_history(self) -> List[SessionErrorInfo]:
        """Reported errors, newest first. Kept across sessions until cleared."""
        return list(reversed(self._error_history))

    def clear_error_history(self) -> None:
        self._error_history.clear()

    def elapsed_seconds(self) -> float:
        if self.session is None or self.session.start_time is None:
            return 0.0
        end = self.session.end_time or self._clock()
        return max(0.0, (end - self.session.start_time).total_seconds())

    def time_remaining_ms(self) -> float:
        if self.session is None:
            return self.settings.time_limit_minutes * 60_000
        return max(0.0, (self.session.time_limit_seconds - self.elapsed_seconds()) * 1000)

    def progress_percentage(self) -> float:
        if self.session is None:
            return 0.0
        return min(100.0, self.elapsed_seconds() / self.session.time_limit_seconds * 100)

    def export_transcript(self) -> List[str]:
        """Plain-text lines of the final transcript entries."""
        if self.session is None:
            return []
        return list(self.session.transcript.export_plain_text())

    # Lifecycle

    async def start(self) -> Session:
        """Create a session, connect and begin capture.

        A failed connect leaves the session in the error state.

        Raises:
            SessionStateError: If a session is already in progress
        """
        if self.session is not None and not self.session.status.is_terminal:
            raise SessionStateError(f"Session {self.session.session_id} is already {self.session.status.value}")
        if self.session is not None:
            await self._release_resources()

        self._completed = False
        self._result = None
        self._capture_suspended = False

        session_id = new_session_id()
        self.session = Session(
            session_id=session_id,
            subject_id=self.subject_id,
            time_limit_minutes=self.settings.time_limit_minutes,
            transcript=TranscriptAssembler(session_id, on_entry=self._on_entry),
        )
        logger.info(f"Starting session {session_id} for subject {self.subject_id} "
                    f"({self.settings.time_limit_minutes} minute limit)")

        self.connection = self.connection_factory()
        self.connection.subscribe(self._on_live_event)
        self.bridge = self.bridge_factory(self._send_chunk, self._on_capture_error)

        try:
            await self.connection.connect(self.connect_options)
        except LiveConnectionError as e:
            logger.error(f"Failed to connect: {e.message}")
            await self._fail(e)
            return self.session

        self.session.connection_status = self.connection.status
        self.session.start_time = self._clock()
        self._set_status(SessionStatus.ACTIVE)
        self._watch_task = asyncio.create_task(self._watch_time_limit())
        if self.store is not None and self.settings.auto_save_interval_seconds > 0:
            self._autosave_task = asyncio.create_task(self._auto_save())
        self._publish("started", time_limit_minutes=self.settings.time_limit_minutes)

        await self._start_capture()
        return self.session

    async def pause(self) -> None:
        """Stop capture and keep the connection open."""
        self._require(SessionStatus.ACTIVE, "pause")
        self._set_status(SessionStatus.PAUSED)
        self._capture_suspended = False
        await self._stop_capture()
        self._publish("paused")
        logger.info(f"Session {self.session.session_id} paused")

    async def resume(self) -> None:
        """Restart capture. Completes instead if the time limit has passed."""
        self._require(SessionStatus.PAUSED, "resume")
        self._set_status(SessionStatus.ACTIVE)
        self._publish("resumed")
        logger.info(f"Session {self.session.session_id} resumed")
        if await self.check_time_limit():
            return
        if self.connection.is_connected:
            await self._start_capture()
        else:
            self._capture_suspended = True

    async def complete(self, reason: CompletionReason = CompletionReason.MANUAL) -> SessionResult:
        """Finish the session and fire the completion callback once.

        Repeated or concurrent calls return the same result without firing
        the callback again.

        Raises:
            SessionStateError: If no session is active or paused
        """
        async with self._complete_lock:
            if self._completed and self._result is not None:
                return self._result
            if self.session is None or self.session.status not in (SessionStatus.ACTIVE, SessionStatus.PAUSED):
                raise SessionStateError("Only an active or paused session can be completed")

            self._completed = True
            session = self.session
            session.end_time = self._clock()
            await self._release_resources()
            session.connection_status = self.connection.status
            self._set_status(SessionStatus.COMPLETED)

            result = SessionResult(
                session_id=session.session_id,
                subject_id=session.subject_id,
                transcript=session.transcript.final_entries,
                transcript_text=list(session.transcript.export_plain_text()),
                duration_ms=self.elapsed_seconds() * 1000,
                started_at=session.start_time,
                ended_at=session.end_time,
                completion_reason=reason,
                metadata={
                    "time_limit_minutes": session.time_limit_minutes,
                    "total_entries": len(session.transcript),
                },
            )
            self._result = result
            self._persist(result)
            logger.info(f"Session {session.session_id} completed ({reason.value}, "
                        f"{result.duration_ms / 1000:.1f}s, {len(result.transcript)} final entries)")

            self._publish("completed", reason=reason.value, duration_ms=result.duration_ms)
            self._invoke(self.on_complete, result)
            return result

    async def check_time_limit(self) -> bool:
        """Complete the session if its time limit has been reached.

        Returns:
            True if the session was completed by this call
        """
        try:
            self._enforce_time_limit()
        except SessionTimeoutError as e:
            logger.info(e.message)
            await self.complete(CompletionReason.TIME_LIMIT)
            return True
        return False

    def _enforce_time_limit(self) -> None:
        session = self.session
        if session is None or session.status not in (SessionStatus.ACTIVE, SessionStatus.PAUSED):
            return
        elapsed = self.elapsed_seconds()
        if elapsed >= session.time_limit_seconds:
            raise SessionTimeoutError(f"Time limit of {session.time_limit_minutes} minutes reached",
                                      details={"elapsed_seconds": elapsed})

    # Media controls

    async def start_audio_recording(self) -> None:
        self._audio_enabled = True
        if self.status is SessionStatus.ACTIVE and self.connection.is_connected:
            await self._start_capture()

    async def stop_audio_recording(self) -> None:
        self._audio_enabled = False
        await self._stop_capture()

    async def switch_device(self, device_id: Optional[str], kind: MediaKind = MediaKind.AUDIO) -> bool:
        """Switch a capture device.

        If the new device cannot be opened the current one keeps capturing
        and a DEVICE_SWITCH_FAILED error is reported.

        Returns:
            True if the new device is in use or will be used on next start
        """
        if self.bridge is not None:
            try:
                await self.bridge.switch_device(device_id, kind)
            except DeviceError as e:
                previous = self.device_config.device_id_for(kind)
                logger.warning(f"Switching {kind.value} device to {device_id} failed, "
                               f"keeping {previous or 'default'}: {e.message}")
                error = DeviceError(f"Failed to switch {kind.value} device to {device_id}: {e.message}",
                                    device_id=device_id, kind=kind.value, code="DEVICE_SWITCH_FAILED")
                self._report_error(self._error_info(error))
                return False
        self.device_config = self.device_config.with_device(kind, device_id)
        return True

    async def test_connection(self) -> bool:
        """Check the connection, and audio quality once any audio was measured.

        Without a live connection a short-lived trial connection is made.
        """
        if self.connection is not None and self.connection.is_connected:
            if not self.connection.is_healthy():
                return False
            metrics = self.audio_quality
            if metrics is None:
                return True
            if metrics.quality_score < self.settings.audio_quality_threshold:
                logger.warning(f"Audio quality {metrics.quality_score:.2f} below threshold "
                               f"{self.settings.audio_quality_threshold:.2f}")
                return False
            return True

        trial = self.connection_factory()
        try:
            await trial.connect(self.connect_options)
            return True
        except LiveConnectionError as e:
            logger.warning(f"Connection test failed: {e.message}")
            return False
        finally:
            await trial.disconnect()

    # Internals

    def _require(self, status: SessionStatus, action: str) -> None:
        if self.session is None or self.session.status is not status:
            current = self.session.status.value if self.session else "not started"
            raise SessionStateError(f"Cannot {action} a session that is {current}")

    def _set_status(self, status: SessionStatus) -> None:
        self.session.status = status
        self._invoke(self.on_status, status)

    def _publish(self, event_type: str, **metadata) -> None:
        if self.lifecycle_publisher is None:
            return
        self.lifecycle_publisher.publish(SessionEvent(
            session_id=self.session.session_id,
            event_type=event_type,
            timestamp=self._clock(),
            metadata=metadata,
        ))

    @staticmethod
    def _invoke(callback, *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Error in session callback")

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _persist(self, result: Optional[SessionResult] = None) -> None:
        if self.store is None:
            return
        try:
            self.store.save_snapshot(self.session)
            if result is not None:
                self.store.save_result(result)
        except OSError as e:
            logger.error(f"Error saving session {self.session.session_id}: {e}")

    async def _send_chunk(self, chunk: MediaChunk) -> None:
        await self.connection.send(chunk)

    async def _start_capture(self) -> None:
        if not self._audio_enabled or self.bridge is None:
            return
        try:
            await self.bridge.start(self.device_config)
        except DeviceError as e:
            await self._handle_device_error(e)

    async def _stop_capture(self) -> None:
        if self.bridge is not None:
            await self.bridge.stop()

    async def _release_resources(self) -> None:
        await cancel_task(self._watch_task)
        await cancel_task(self._autosave_task)
        self._watch_task = self._autosave_task = None
        for task in list(self._tasks):
            await cancel_task(task)
        await self._stop_capture()
        if self.connection is not None:
            self.connection.unsubscribe(self._on_live_event)
            await self.connection.disconnect()

    async def _fail(self, error: InterviewLiveError) -> None:
        session = self.session
        if self._completed or session is None or session.status.is_terminal:
            return
        logger.error(f"Session {session.session_id} failed: {error!r}")
        info = self._error_info(error)
        session.last_error = info
        if session.start_time is not None:
            session.end_time = self._clock()
        self._set_status(SessionStatus.ERROR)
        await self._release_resources()
        session.connection_status = self.connection.status
        self._persist()
        self._publish("error", code=info.code, message=info.message)
        self._report_error(info)

    def _error_info(self, error: InterviewLiveError) -> SessionErrorInfo:
        return SessionErrorInfo.from_error(error, timestamp=self._clock())

    def _report_error(self, info: SessionErrorInfo) -> None:
        self._error_history.append(info)
        self._invoke(self.on_error, info)

    async def _handle_device_error(self, error: DeviceError) -> None:
        if not error.recoverable:
            await self._fail(error)
            return
        session = self.session
        if session is None or session.status.is_terminal:
            return
        logger.warning(f"Recoverable device error, pausing session: {error.message}")
        session.last_error = self._error_info(error)
        await self._stop_capture()
        if session.status is SessionStatus.ACTIVE:
            self._set_status(SessionStatus.PAUSED)
            self._publish("paused", code=error.code)
        self._report_error(session.last_error)

    def _on_capture_error(self, error: InterviewLiveError) -> None:
        if isinstance(error, TransmissionError):
            # Capture resumes when the connection reports connected again
            self._capture_suspended = True
        elif isinstance(error, DeviceError):
            self._spawn(self._handle_device_error(error))
        else:
            self._spawn(self._fail(error))

    def _on_entry(self, entry: TranscriptEntry) -> None:
        if self.transcript_publisher is not None:
            self.transcript_publisher.publish_entry(entry)
        self._invoke(self.on_transcript, entry)

    def _on_live_event(self, event: LiveEvent) -> None:
        session = self.session
        if session is None or session.status.is_terminal:
            return

        if isinstance(event, TranscriptEvent):
            session.transcript.ingest(event.fragment)
        elif isinstance(event, StatusEvent):
            session.connection_status = event.status
            self._on_connection_state(event)
        elif isinstance(event, ErrorEvent):
            error = event.error
            if event.terminal or not error.recoverable:
                self._spawn(self._fail(error))
            else:
                logger.warning(f"Recoverable error from endpoint: {error!r}")
                session.last_error = self._error_info(error)
                self._report_error(session.last_error)
        elif isinstance(event, MediaResponseEvent):
            self._invoke(self.on_media_response, event)

    def _on_connection_state(self, event: StatusEvent) -> None:
        if self.session.status is not SessionStatus.ACTIVE:
            return
        if event.state in (ConnectionState.RECONNECTING, ConnectionState.DISCONNECTED):
            if self.bridge is not None and self.bridge.is_capturing:
                logger.info("Connection lost, suspending capture")
                self._capture_suspended = True
                self._spawn(self._stop_capture())
        elif event.state is ConnectionState.CONNECTED and self._capture_suspended:
            logger.info("Connection restored, resuming capture")
            self._capture_suspended = False
            self._spawn(self._start_capture())

    async def _watch_time_limit(self) -> None:
        while True:
            await asyncio.sleep(self.settings.time_check_interval_seconds)
            if await self.check_time_limit():
                return

    async def _auto_save(self) -> None:
        while True:
            await asyncio.sleep(self.settings.auto_save_interval_seconds)
            session = self.session
            try:
                # Serialized on the loop; only the file write runs in a worker thread
                data = session.to_dict()
                await asyncio.to_thread(self.store.write_snapshot, session.session_id, data)
            except Exception as e:
                logger.error(f"Auto-save failed for session {session.session_id}: {e}")
