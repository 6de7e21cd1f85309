"""Unit tests for the CaptureSession state machine."""

import asyncio

import pytest
from pubsub import pub

from voicestream.audio.audio_pub import AudioPublisher
from voicestream.audio.codec import decode, to_pcm_bytes
from voicestream.audio.silence import SilenceMonitor
from voicestream.errors import (
    DeviceAccessError,
    EncodeError,
    RemoteSessionError,
    SessionOpenError,
    TranscriptionUnavailable,
)
from voicestream.models.audio import AudioFormat
from voicestream.models.session import SessionStatus
from voicestream.services.capture_session import CaptureSession

from tests.conftest import run_async


@pytest.fixture
def session(fake_device, fake_client, fake_clock):
    return CaptureSession(
        fake_device,
        fake_client,
        silence_monitor=SilenceMonitor(poll_interval_millis=5, clock=fake_clock),
        duration_poll_millis=5,
        clock=fake_clock,
    )


async def settle():
    """Let fragments scheduled from the device callback reach the session."""
    for _ in range(3):
        await asyncio.sleep(0)


@pytest.mark.unit
class TestCaptureSessionLifecycle:
    """Start and stop transitions."""

    def test_initial_state(self, session):
        assert session.status is SessionStatus.IDLE
        assert session.remote_session_id is None
        assert session.elapsed_millis == 0

    def test_stop_when_idle_is_a_noop(self, session, fake_client, fake_device):
        assert run_async(session.stop()) is None
        assert fake_client.calls == 0
        assert fake_device.stopped == 0
        assert session.status is SessionStatus.IDLE

    def test_double_start_opens_one_remote_session(self, session, fake_client, fake_device):
        async def scenario():
            await session.start()
            await session.start()
            status = session.status
            await session.abort()
            return status

        assert run_async(scenario()) is SessionStatus.RECORDING
        assert len(fake_client.opened) == 1
        assert fake_device.started == 1

    def test_start_then_stop_returns_container_and_transcript(self, session, fake_device, fake_client,
                                                             make_fragment):
        fragments = [make_fragment("noise", seed=i) for i in range(3)]

        async def scenario():
            await session.start()
            assert session.remote_session_id == "session-1"
            for fragment in fragments:
                fake_device.emit(fragment)
            await settle()
            return await session.stop()

        result = run_async(scenario())

        assert session.status is SessionStatus.IDLE
        assert session.remote_session_id is None
        assert result.total_fragments == 3
        assert result.failed_chunks == 0
        assert result.transcript.transcribed_text == "hello world"
        assert result.has_transcription
        assert result.remote_session_id == "session-1"
        assert not result.stopped_by_silence
        assert fake_client.closed == ["session-1"]
        assert fake_device.stopped == 1

        buffer, fmt = decode(result.container)
        assert fmt == AudioFormat(16000, 16, 1)
        assert buffer.frame_count == 3 * 1600
        assert result.duration_seconds == pytest.approx(0.3)
        assert session.last_result is result

    def test_chunks_are_sent_in_capture_order(self, session, fake_device, fake_client, make_fragment):
        fragments = [make_fragment("noise", seed=i) for i in range(4)]

        async def scenario():
            await session.start()
            for fragment in fragments:
                fake_device.emit(fragment)
            await settle()
            await session.stop()

        run_async(scenario())

        fmt = AudioFormat(16000, 16, 1)
        assert fake_client.chunks == [to_pcm_bytes(f, fmt) for f in fragments]
        assert session.sent_chunks == 4

    def test_start_with_unsupported_bit_depth(self, session, fake_client):
        with pytest.raises(EncodeError):
            run_async(session.start(AudioFormat(16000, 12, 1)))
        assert session.status is SessionStatus.IDLE
        assert fake_client.calls == 0

    def test_wait_for_result_resolves_on_stop(self, session, fake_device, make_fragment):
        async def scenario():
            await session.start()
            waiter = asyncio.ensure_future(session.wait_for_result())
            fake_device.emit(make_fragment())
            await settle()
            stopped = await session.stop()
            return stopped, await waiter

        stopped, waited = run_async(scenario())
        assert waited is stopped

    def test_concurrent_stops_produce_one_result(self, session, fake_client):
        async def scenario():
            await session.start()
            return await asyncio.gather(session.stop(), session.stop())

        first, second = run_async(scenario())
        assert (first is None) != (second is None)
        assert fake_client.closed == ["session-1"]


@pytest.mark.unit
class TestCaptureSessionFailures:
    """Device and remote failures."""

    def test_chunk_failure_does_not_stop_capture(self, session, fake_device, fake_client, make_fragment):
        fake_client.failing_chunks = {3}
        fragments = [make_fragment("noise", seed=i) for i in range(5)]

        async def scenario():
            await session.start()
            for fragment in fragments:
                fake_device.emit(fragment)
                await settle()
                assert session.status is SessionStatus.RECORDING
            return await session.stop()

        result = run_async(scenario())

        assert result.total_fragments == 5
        assert result.failed_chunks == 1
        assert len(fake_client.chunks) == 4
        buffer, _ = decode(result.container)
        assert buffer.frame_count == 5 * 1600

    def test_unexpected_chunk_error_does_not_stop_the_sender(self, session, fake_device, fake_client,
                                                             make_fragment):
        fake_client.broken_chunks = {2}
        fragments = [make_fragment("noise", seed=i) for i in range(4)]

        async def scenario():
            await session.start()
            for fragment in fragments:
                fake_device.emit(fragment)
                await settle()
            assert session.status is SessionStatus.RECORDING
            return await session.stop()

        result = run_async(scenario())

        assert result.failed_chunks == 1
        assert len(fake_client.chunks) == 3
        assert fake_client.chunk_calls == 4
        buffer, _ = decode(result.container)
        assert buffer.frame_count == 4 * 1600

    def test_microphone_failure_while_recording_ends_the_pass(self, session, fake_device, fake_client,
                                                             make_fragment):
        error = DeviceAccessError("Microphone stopped delivering audio: unplugged")

        async def scenario():
            await session.start()
            fake_device.emit(make_fragment())
            await settle()
            fake_device.fail(error)
            return await asyncio.wait_for(session.wait_for_result(), timeout=2.0)

        result = run_async(scenario())

        assert session.status is SessionStatus.IDLE
        assert result.device_error is error
        assert result.total_fragments == 1
        assert result.transcript is not None
        assert fake_device.stopped == 1
        assert fake_client.closed == ["session-1"]
        assert session._timers == []

    def test_microphone_failure_while_acquiring_aborts(self, session, fake_device, fake_client):
        async def scenario():
            fake_client.open_gate = asyncio.Event()
            start = asyncio.ensure_future(session.start())
            await settle()
            assert session.status is SessionStatus.ACQUIRING

            fake_device.fail(DeviceAccessError("Microphone stopped delivering audio: unplugged"))
            result = await asyncio.wait_for(session.wait_for_result(), timeout=2.0)
            fake_client.open_gate.set()
            await start
            return result

        assert run_async(scenario()) is None
        assert session.status is SessionStatus.IDLE
        assert fake_device.stopped == 1
        assert fake_client.closed == ["session-1"]

    def test_device_error_after_stop_is_ignored(self, session, fake_device, fake_client):
        async def scenario():
            await session.start()
            result = await session.stop()
            fake_device.fail(DeviceAccessError("late failure"))
            await settle()
            return result

        result = run_async(scenario())
        assert result.device_error is None
        assert session.status is SessionStatus.IDLE
        assert fake_client.closed == ["session-1"]

    def test_device_access_error_returns_to_idle(self, session, fake_device, fake_client):
        fake_device.error = DeviceAccessError("Permission denied")

        with pytest.raises(DeviceAccessError):
            run_async(session.start())

        assert session.status is SessionStatus.IDLE
        assert fake_client.calls == 0

    def test_remote_open_failure_aborts_the_attempt(self, session, fake_device, fake_client):
        fake_client.open_error = SessionOpenError("Service down", category="connection")

        with pytest.raises(RemoteSessionError) as exc_info:
            run_async(session.start())

        assert isinstance(exc_info.value.__cause__, SessionOpenError)
        assert exc_info.value.category == "connection"
        assert session.status is SessionStatus.IDLE
        assert fake_device.stopped == 1
        assert fake_client.closed == []

    def test_transcription_unavailable_is_recorded_on_the_result(self, session, fake_device, fake_client,
                                                                 make_fragment):
        fake_client.close_error = TranscriptionUnavailable("timed out", category="timeout")

        async def scenario():
            await session.start()
            fake_device.emit(make_fragment())
            await settle()
            return await session.stop()

        result = run_async(scenario())

        assert session.status is SessionStatus.IDLE
        assert result.transcript is None
        assert result.error is fake_client.close_error
        assert not result.has_transcription
        assert len(result.container) == 44 + 1600 * 2

    def test_session_can_restart_after_failure(self, session, fake_device, fake_client):
        fake_client.close_error = TranscriptionUnavailable("timed out", category="timeout")

        async def scenario():
            await session.start()
            await session.stop()
            fake_client.close_error = None
            await session.start()
            return await session.stop()

        result = run_async(scenario())
        assert result.transcript is not None
        assert len(fake_client.opened) == 2
        assert result.remote_session_id == "session-2"


@pytest.mark.unit
class TestCaptureSessionAutoStop:
    """Silence and duration driven stops."""

    def test_stops_after_silence(self, session, fake_clock, fake_client):
        async def scenario():
            await session.start()
            fake_clock.advance(1000)
            return await asyncio.wait_for(session.wait_for_result(), timeout=2)

        result = run_async(scenario())

        assert result is not None
        assert result.stopped_by_silence
        assert session.status is SessionStatus.IDLE
        assert session.elapsed_millis == 1000
        assert fake_client.closed == ["session-1"]

    def test_keeps_recording_while_sound_is_detected(self, session, fake_clock, fake_device, make_fragment):
        async def scenario():
            await session.start()
            fake_device.emit(make_fragment("noise"))
            await settle()
            for _ in range(15):
                fake_clock.advance(100)
                await asyncio.sleep(0.02)
            status = session.status
            await session.abort()
            return status

        assert run_async(scenario()) is SessionStatus.RECORDING

    def test_stops_at_max_duration(self, fake_device, fake_client, fake_clock):
        session = CaptureSession(
            fake_device,
            fake_client,
            silence_monitor=SilenceMonitor(silence_threshold_millis=60000, poll_interval_millis=5,
                                           clock=fake_clock),
            duration_poll_millis=5,
            max_duration_millis=500,
            clock=fake_clock,
        )

        async def scenario():
            await session.start()
            fake_clock.advance(500)
            return await asyncio.wait_for(session.wait_for_result(), timeout=2)

        result = run_async(scenario())
        assert result is not None
        assert not result.stopped_by_silence


@pytest.mark.unit
class TestCaptureSessionAbort:
    """abort() from every state."""

    def test_abort_when_idle_is_safe(self, session, fake_client):
        run_async(session.abort())
        assert session.status is SessionStatus.IDLE
        assert fake_client.calls == 0

    def test_abort_while_recording(self, session, fake_device, fake_client, make_fragment):
        async def scenario():
            await session.start()
            fake_device.emit(make_fragment())
            await settle()
            await session.abort()
            return await session.wait_for_result()

        assert run_async(scenario()) is None
        assert session.status is SessionStatus.IDLE
        assert session._timers == []
        assert session.fragments == []
        assert fake_device.stopped == 1
        assert fake_client.closed == ["session-1"]

    def test_abort_while_acquiring_releases_the_late_session(self, session, fake_client):
        async def scenario():
            fake_client.open_gate = asyncio.Event()
            start = asyncio.ensure_future(session.start())
            await settle()
            assert session.status is SessionStatus.ACQUIRING

            await session.abort()
            fake_client.open_gate.set()
            await start

        run_async(scenario())

        assert session.status is SessionStatus.IDLE
        assert session._timers == []
        assert fake_client.closed == ["session-1"]

    def test_abort_while_stopping_releases_the_session_once(self, session, fake_device, fake_client,
                                                            make_fragment):
        async def scenario():
            fake_client.close_gate = asyncio.Event()
            await session.start()
            fake_device.emit(make_fragment())
            await settle()

            stop = asyncio.ensure_future(session.stop())
            for _ in range(200):
                if fake_client.closed:
                    break
                await asyncio.sleep(0.01)
            assert session.status is SessionStatus.STOPPING

            await session.abort()
            fake_client.close_gate.set()
            return await stop

        assert run_async(scenario()) is None
        assert session.status is SessionStatus.IDLE
        assert session.remote_session_id is None
        assert fake_client.closed == ["session-1"]

    def test_fragments_after_abort_are_dropped(self, session, fake_device, fake_client, make_fragment):
        async def scenario():
            await session.start()
            await session.abort()
            fake_device.emit(make_fragment())
            await settle()

        run_async(scenario())
        assert session.fragments == []
        assert fake_client.chunks == []


@pytest.mark.unit
class TestCaptureSessionEvents:
    """Pub/sub notifications."""

    def test_publishes_fragments_and_lifecycle(self, fake_device, fake_client, fake_clock, make_fragment):
        fragments, lifecycle = [], []

        def on_fragment(event):
            fragments.append(event)

        def on_session(event):
            lifecycle.append(event)

        pub.subscribe(on_fragment, "test_capture.fragment")
        pub.subscribe(on_session, "test_capture.session")
        try:
            session = CaptureSession(
                fake_device,
                fake_client,
                silence_monitor=SilenceMonitor(poll_interval_millis=5, clock=fake_clock),
                publisher=AudioPublisher("test_capture.fragment", "test_capture.session"),
                duration_poll_millis=5,
                clock=fake_clock,
            )

            async def scenario():
                await session.start()
                fake_device.emit(make_fragment(frames=800))
                fake_device.emit(make_fragment(frames=800))
                await settle()
                await session.stop()

            run_async(scenario())
        finally:
            pub.unsubscribe(on_fragment, "test_capture.fragment")
            pub.unsubscribe(on_session, "test_capture.session")

        assert [e.sequence_number for e in fragments] == [1, 2]
        assert fragments[0].duration_ms == 50
        assert [e.event_type for e in lifecycle] == ["started", "stopped"]
        assert lifecycle[1].metadata["fragments"] == 2
        assert lifecycle[1].metadata["has_transcription"] is True
