"""Unit tests for ConnectionManager."""

import asyncio

import pytest
from google.auth.exceptions import RefreshError
from google.auth.exceptions import TransportError as GoogleTransportError

from interview_live.connection.protocol import now_ms
from interview_live.errors import LiveConnectionError, MaxReconnectAttemptsError, TransmissionError
from interview_live.models.connection import ConnectOptions, ConnectionQuality, ConnectionState
from interview_live.models.events import ErrorEvent, LiveEventType, MediaResponseEvent, StatusEvent, TranscriptEvent
from interview_live.models.media import MediaChunk, MediaKind
from interview_live.models.transcript import Speaker


def audio_chunk(sequence: int = 1) -> MediaChunk:
    return MediaChunk(kind=MediaKind.AUDIO, payload=b"\x00\x01", captured_at=1.0, sequence_number=sequence)


class Collector:
    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    def of_type(self, cls):
        return [event for event in self.events if isinstance(event, cls)]

    def states(self):
        return [event.state for event in self.of_type(StatusEvent)]


@pytest.mark.unit
class TestConnect:
    """Test cases for connect and disconnect."""

    @pytest.mark.asyncio
    async def test_connect_sends_setup_and_reports_connected(self, make_manager, transports):
        manager = make_manager()
        events = Collector()
        manager.subscribe(events)

        await manager.connect(ConnectOptions(language="fr-FR"))

        transport = transports.latest
        assert transport.url == "wss://live.test/ws?model=test-model"
        setup = transport.sent_of_type("setup")
        assert len(setup) == 1
        assert setup[0]["config"]["model"] == "test-model"
        assert setup[0]["config"]["language"] == "fr-FR"
        assert manager.is_connected
        assert manager.status.connected is True
        assert manager.status.latency_ms is not None
        assert manager.status.quality is ConnectionQuality.EXCELLENT
        assert events.states() == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]

        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_headers_provider_used_for_handshake(self, make_manager, transports):
        async def headers():
            return {"Authorization": "Bearer token"}

        manager = make_manager(headers_provider=headers)
        await manager.connect(ConnectOptions())

        assert transports.latest.headers == {"Authorization": "Bearer token"}
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_handshake_timeout(self, make_manager, transports):
        manager = make_manager(connection_timeout=0.05)
        transport = transports.queue(ack=False)

        with pytest.raises(LiveConnectionError, match="timeout"):
            await manager.connect(ConnectOptions())

        assert transport.closed
        assert not manager.is_connected

    @pytest.mark.asyncio
    async def test_transport_failure(self, make_manager, transports):
        manager = make_manager()
        transports.queue(fail_open=True)

        with pytest.raises(LiveConnectionError) as exc_info:
            await manager.connect(ConnectOptions())

        assert exc_info.value.recoverable is True
        assert not manager.is_connected

    @pytest.mark.asyncio
    async def test_rejected_setup(self, make_manager, transports):
        manager = make_manager()
        transports.queue(setup_error={"code": "AUTHENTICATION_FAILED", "message": "bad key"})

        with pytest.raises(LiveConnectionError) as exc_info:
            await manager.connect(ConnectOptions())

        assert exc_info.value.code == "AUTHENTICATION_FAILED"
        assert exc_info.value.recoverable is False

    @pytest.mark.asyncio
    async def test_rejected_credentials(self, make_manager, transports):
        async def headers():
            raise RefreshError("invalid_grant: account disabled")

        manager = make_manager(headers_provider=headers)

        with pytest.raises(LiveConnectionError) as exc_info:
            await manager.connect(ConnectOptions())

        assert exc_info.value.code == "AUTHENTICATION_FAILED"
        assert exc_info.value.recoverable is False
        assert transports.latest.closed
        assert not manager.is_connected

    @pytest.mark.asyncio
    async def test_malformed_frame_before_ack_is_skipped(self, make_manager, transports):
        manager = make_manager()
        transport = transports.queue(ack=False)
        transport.push("garbage")
        transport.push({"type": "status", "status": "connected"})

        await manager.connect(ConnectOptions())

        assert manager.is_connected
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent_and_does_not_reconnect(self, make_manager, transports, recorded_sleep):
        manager = make_manager()
        events = Collector()
        manager.subscribe(events)
        await manager.connect(ConnectOptions())

        await manager.disconnect()
        await manager.disconnect()
        await asyncio.sleep(0.02)

        assert transports.latest.closed
        assert len(transports.created) == 1
        assert recorded_sleep.delays == []
        assert events.states().count(ConnectionState.DISCONNECTED) == 1
        assert ConnectionState.RECONNECTING not in events.states()

    @pytest.mark.asyncio
    async def test_disconnect_before_connect(self, make_manager):
        manager = make_manager()
        await manager.disconnect()
        assert not manager.is_connected

    @pytest.mark.asyncio
    async def test_forced_reconnect(self, make_manager, transports):
        manager = make_manager()
        await manager.connect(ConnectOptions())

        await manager.reconnect()

        assert len(transports.created) == 2
        assert transports.created[0].closed
        assert manager.is_connected
        await manager.disconnect()


@pytest.mark.unit
class TestSend:
    """Test cases for media transmission."""

    @pytest.mark.asyncio
    async def test_send_while_disconnected_raises(self, make_manager):
        manager = make_manager()
        with pytest.raises(TransmissionError):
            await manager.send(audio_chunk())

    @pytest.mark.asyncio
    async def test_send_writes_media_frame(self, make_manager, transports):
        manager = make_manager()
        await manager.connect(ConnectOptions())

        await manager.send(audio_chunk(3))

        media = transports.latest.sent_of_type("media")
        assert len(media) == 1
        assert media[0]["sequence"] == 3
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_send_after_disconnect_raises(self, make_manager):
        manager = make_manager()
        await manager.connect(ConnectOptions())
        await manager.disconnect()

        with pytest.raises(TransmissionError):
            await manager.send(audio_chunk())


@pytest.mark.unit
class TestEvents:
    """Test cases for incoming message dispatch."""

    @pytest.mark.asyncio
    async def test_transcript_dispatch(self, make_manager, transports, wait_until):
        manager = make_manager()
        events = Collector()
        manager.subscribe(events)
        await manager.connect(ConnectOptions())

        transports.latest.push({"type": "transcript", "text": "Tell me about your company",
                                "speaker": "ai", "isFinal": True})
        await wait_until(lambda: events.of_type(TranscriptEvent))

        fragment = events.of_type(TranscriptEvent)[0].fragment
        assert fragment.text == "Tell me about your company"
        assert fragment.speaker is Speaker.AI
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_block_others(self, make_manager, transports, wait_until):
        manager = make_manager()
        received = Collector()

        def broken(event):
            raise RuntimeError("subscriber bug")

        manager.subscribe(broken)
        manager.subscribe(received)
        await manager.connect(ConnectOptions())
        transports.latest.push({"type": "transcript", "text": "hello"})

        await wait_until(lambda: received.of_type(TranscriptEvent))
        assert manager.is_connected
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_subscribers_called_in_registration_order(self, make_manager, transports, wait_until):
        manager = make_manager()
        order = []
        manager.subscribe(lambda event: order.append("first"), [LiveEventType.TRANSCRIPT])
        manager.subscribe(lambda event: order.append("second"), [LiveEventType.TRANSCRIPT])
        await manager.connect(ConnectOptions())

        transports.latest.push({"type": "transcript", "text": "hello"})
        await wait_until(lambda: len(order) == 2)

        assert order == ["first", "second"]
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_event_type_filter_and_unsubscribe(self, make_manager, transports, wait_until):
        manager = make_manager()
        errors = Collector()
        everything = Collector()
        manager.subscribe(errors, [LiveEventType.ERROR])
        manager.subscribe(everything)
        await manager.connect(ConnectOptions())

        transport = transports.latest
        transport.push({"type": "transcript", "text": "hello"})
        transport.push({"type": "error", "code": "RATE_LIMITED", "message": "slow down"})
        await wait_until(lambda: everything.of_type(ErrorEvent))

        assert len(errors.events) == 1
        assert errors.events[0].error.code == "RATE_LIMITED"
        assert errors.events[0].terminal is False

        manager.unsubscribe(everything)
        transport.push({"type": "transcript", "text": "again"})
        await asyncio.sleep(0.02)
        assert len(everything.of_type(TranscriptEvent)) == 1
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_malformed_frames_are_dropped(self, make_manager, transports, wait_until):
        manager = make_manager()
        events = Collector()
        manager.subscribe(events)
        await manager.connect(ConnectOptions())

        transport = transports.latest
        transport.push("{broken")
        transport.push({"type": "transcript"})
        transport.push({"type": "transcript", "text": "still here"})
        await wait_until(lambda: events.of_type(TranscriptEvent))

        assert [e.fragment.text for e in events.of_type(TranscriptEvent)] == ["still here"]
        assert manager.is_connected
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_undecodable_media_payload_is_dropped(self, make_manager, transports, wait_until):
        manager = make_manager()
        events = Collector()
        manager.subscribe(events)
        await manager.connect(ConnectOptions())

        transport = transports.latest
        transport.push({"type": "media_response", "data": "!!!notbase64"})
        transport.push({"type": "media_response", "data": [1, 300]})
        transport.push({"type": "transcript", "text": "still listening"})
        await wait_until(lambda: events.of_type(TranscriptEvent))

        assert not events.of_type(MediaResponseEvent)
        assert not manager._reader_task.done()
        assert manager.is_connected
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_pong_updates_latency(self, make_manager, transports, wait_until):
        manager = make_manager()
        await manager.connect(ConnectOptions())

        transports.latest.push({"type": "pong", "timestamp": now_ms() - 600})
        await wait_until(lambda: manager.status.latency_ms is not None and manager.status.latency_ms >= 600)

        assert manager.status.quality is ConnectionQuality.POOR
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_heartbeat_sends_ping(self, make_manager, transports, wait_until):
        manager = make_manager(enable_heartbeat=True, heartbeat_interval=0.01)
        await manager.connect(ConnectOptions())

        await wait_until(lambda: transports.latest.sent_of_type("ping"))
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_is_healthy_tracks_heartbeat_age(self, make_manager):
        now = [100.0]
        manager = make_manager(enable_heartbeat=True, heartbeat_interval=30.0, clock=lambda: now[0])
        assert manager.is_healthy() is False

        await manager.connect(ConnectOptions())
        assert manager.is_healthy() is True

        now[0] += 61.0
        assert manager.is_healthy() is False
        await manager.disconnect()


@pytest.mark.unit
class TestReconnect:
    """Test cases for automatic reconnection."""

    @pytest.mark.asyncio
    async def test_reconnects_after_three_failed_attempts(self, make_manager, transports, recorded_sleep, wait_until):
        manager = make_manager(max_reconnect_attempts=5)
        events = Collector()
        manager.subscribe(events)
        first = transports.queue()
        for _ in range(3):
            transports.queue(fail_open=True)
        fourth = transports.queue()

        await manager.connect(ConnectOptions())
        first.drop()
        await wait_until(lambda: fourth.opened and manager.is_connected)

        assert manager.status.connected is True
        assert manager.reconnect_attempts == 0
        assert recorded_sleep.delays == [1.0, 2.0, 4.0, 8.0]
        reconnecting = [e for e in events.of_type(StatusEvent) if e.state is ConnectionState.RECONNECTING]
        assert [e.attempt for e in reconnecting] == [1, 2, 3, 4]
        assert [e.delay for e in reconnecting] == [1.0, 2.0, 4.0, 8.0]
        assert not events.of_type(ErrorEvent)
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, make_manager, transports, recorded_sleep, wait_until):
        manager = make_manager(max_reconnect_attempts=2, base_reconnect_delay=0.5, max_reconnect_delay=0.75)
        events = Collector()
        manager.subscribe(events)
        first = transports.queue()
        transports.queue(fail_open=True)
        transports.queue(fail_open=True)

        await manager.connect(ConnectOptions())
        first.drop()
        await wait_until(lambda: events.of_type(ErrorEvent))
        await asyncio.sleep(0.02)

        error_event = events.of_type(ErrorEvent)[0]
        assert error_event.terminal is True
        assert isinstance(error_event.error, MaxReconnectAttemptsError)
        assert error_event.error.recoverable is False
        assert len(transports.created) == 3
        assert recorded_sleep.delays == [0.5, 0.75]
        assert ConnectionState.FAILED in events.states()
        assert not manager.is_connected
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_non_recoverable_failure_stops_retrying(self, make_manager, transports, wait_until):
        manager = make_manager(max_reconnect_attempts=5)
        events = Collector()
        manager.subscribe(events)
        first = transports.queue()
        transports.queue(setup_error={"code": "PERMISSION_DENIED", "message": "revoked"})

        await manager.connect(ConnectOptions())
        first.drop()
        await wait_until(lambda: events.of_type(ErrorEvent))
        await asyncio.sleep(0.02)

        assert events.of_type(ErrorEvent)[0].terminal is True
        assert len(transports.created) == 2
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_unreachable_token_endpoint_is_retried(self, make_manager, transports, recorded_sleep,
                                                         wait_until):
        calls = []

        async def headers():
            calls.append(1)
            if len(calls) == 2:
                raise GoogleTransportError("token endpoint unreachable")
            return {"Authorization": "Bearer token"}

        manager = make_manager(headers_provider=headers)
        events = Collector()
        manager.subscribe(events)
        first = transports.queue()
        await manager.connect(ConnectOptions())

        first.drop()
        await wait_until(lambda: len(calls) == 3 and manager.is_connected)

        assert recorded_sleep.delays == [1.0, 2.0]
        assert not events.of_type(ErrorEvent)
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_disconnect_cancels_pending_reconnect(self, make_manager, transports, wait_until):
        gate = asyncio.Event()
        delays = []

        async def slow_sleep(delay):
            delays.append(delay)
            await gate.wait()

        manager = make_manager(backoff_sleep=slow_sleep)
        first = transports.queue()
        await manager.connect(ConnectOptions())
        first.drop()
        await wait_until(lambda: manager.is_reconnecting and delays)

        await manager.disconnect()
        gate.set()
        await asyncio.sleep(0.02)

        assert not manager.is_reconnecting
        assert len(transports.created) == 1
        assert manager.reconnect_attempts == 0
