"""Capture session state machine: device capture, chunk streaming and auto-stop."""

import asyncio
import logging
import time
from datetime import datetime
from typing import Callable, List, Optional

from ..audio.audio_pub import AudioPublisher
from ..audio.codec import SUPPORTED_BIT_DEPTHS, encode, to_pcm_bytes
from ..audio.level_meter import LevelMeter
from ..audio.silence import SilenceMonitor, monotonic_millis
from ..client.streaming import StreamingClient
from ..errors import (
    ChunkSendError,
    DeviceAccessError,
    EncodeError,
    RemoteSessionError,
    SessionOpenError,
    TranscriptionUnavailable,
)
from ..models.audio import AudioFormat, SampleBuffer
from ..models.events import FragmentEvent, SessionEvent
from ..models.session import RecordingResult, SessionStatus

logger = logging.getLogger(__name__)

DEFAULT_FORMAT = AudioFormat(sample_rate=16000, bit_depth=16, channel_count=1)
DEFAULT_DURATION_POLL_MS = 100
DEFAULT_DRAIN_TIMEOUT_SECONDS = 5.0


class CaptureSession:
    """One recording pass: IDLE -> ACQUIRING -> RECORDING -> STOPPING -> IDLE.

    All state changes happen on the asyncio loop that called ``start()``. The
    capture device delivers fragments from its own thread; they are handed to
    the loop with ``call_soon_threadsafe`` before touching any state.

    Chunks go through a queue drained by a single sender task, so capture
    never waits on the network and chunks reach the service in order. A
    failed chunk is logged and counted; the local fragments remain the source
    of truth for the final container.
    """

    def __init__(self,
                 device,
                 client: StreamingClient,
                 audio_format: AudioFormat = DEFAULT_FORMAT,
                 silence_monitor: Optional[SilenceMonitor] = None,
                 level_meter: Optional[LevelMeter] = None,
                 publisher: Optional[AudioPublisher] = None,
                 duration_poll_millis: float = DEFAULT_DURATION_POLL_MS,
                 max_duration_millis: float = 0,
                 drain_timeout_seconds: float = DEFAULT_DRAIN_TIMEOUT_SECONDS,
                 clock: Callable[[], float] = monotonic_millis):
        """Initialize capture session.

        Args:
            device: Capture device with ``start_recording(format, callback, on_error)``
                and ``stop_recording()`` (normally an AudioCapture)
            client: Streaming client used for the remote session
            audio_format: Default format for ``start()``
            silence_monitor: Monitor deciding when the speaker went quiet
            level_meter: Source of the amplitude snapshots fed to the monitor
            publisher: Publisher for fragment and lifecycle events
            duration_poll_millis: Cadence of the elapsed-time and auto-stop check
            max_duration_millis: Stop after this long regardless of sound; 0 disables
            drain_timeout_seconds: How long ``stop()`` waits for queued chunks
            clock: Millisecond clock, monotonic
        """
        self.device = device
        self.client = client
        self.audio_format = audio_format
        self.clock = clock
        self.silence_monitor = silence_monitor or SilenceMonitor(clock=clock)
        self.level_meter = level_meter or LevelMeter()
        self.publisher = publisher or AudioPublisher()
        self.duration_poll_millis = duration_poll_millis
        self.max_duration_millis = max_duration_millis
        self.drain_timeout_seconds = drain_timeout_seconds

        self.status = SessionStatus.IDLE
        self.elapsed_millis = 0.0
        self.remote_session_id: Optional[str] = None
        self.last_result: Optional[RecordingResult] = None

        self.fragments: List[SampleBuffer] = []
        self.sent_chunks = 0
        self.failed_chunks = 0
        self.remote_reports_silence = False

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._generation = 0
        self._chunk_queue: Optional[asyncio.Queue] = None
        self._sender: Optional[asyncio.Task] = None
        self._timers: List[asyncio.Task] = []
        self._result_future: Optional[asyncio.Future] = None
        self._started_at: Optional[datetime] = None
        self._start_millis = 0.0

    @property
    def is_recording(self) -> bool:
        return self.status is SessionStatus.RECORDING

    async def start(self, audio_format: Optional[AudioFormat] = None) -> None:
        """Acquire the device, open the remote session and start recording.

        Ignored unless the session is IDLE.

        Args:
            audio_format: Format for this pass; defaults to the session format

        Raises:
            EncodeError: If the format's bit depth cannot be encoded
            DeviceAccessError: If the microphone cannot be opened
            RemoteSessionError: If the remote session could not be opened
        """
        if self.status is not SessionStatus.IDLE:
            logger.warning(f"Start ignored: session is {self.status.value}")
            return

        audio_format = audio_format or self.audio_format
        if audio_format.bit_depth not in SUPPORTED_BIT_DEPTHS:
            raise EncodeError(f"Unsupported bit depth: {audio_format.bit_depth}")

        self._loop = asyncio.get_running_loop()
        self._generation += 1
        generation = self._generation

        self.audio_format = audio_format
        self.status = SessionStatus.ACQUIRING
        self._reset_pass()
        self._result_future = self._loop.create_future()
        self._chunk_queue = asyncio.Queue()

        logger.info(f"Starting capture: {audio_format.sample_rate}Hz, {audio_format.bit_depth}-bit, "
                    f"{audio_format.channel_count}ch")

        try:
            self.device.start_recording(audio_format, self._on_device_fragment, self._on_device_error)
        except DeviceAccessError as e:
            logger.error(f"Microphone unavailable: {e.detail}")
            self._finish_pass(None)
            self.status = SessionStatus.IDLE
            raise

        try:
            session_id = await self.client.open_session(audio_format)
        except SessionOpenError as e:
            logger.error(f"Could not open remote session: {e.detail}")
            await self.abort()
            raise RemoteSessionError(f"Capture aborted, remote session unavailable: {e.detail}",
                                     category=e.category, status=e.status) from e

        if generation != self._generation:
            # Aborted while the session was being opened
            await self._release_remote_session(session_id)
            return

        self.remote_session_id = session_id
        self._sender = asyncio.create_task(self._send_chunks(session_id))

        self._started_at = datetime.now()
        self._start_millis = self.clock()
        self.silence_monitor.start(self._start_millis)
        self._timers = [
            asyncio.create_task(self.silence_monitor.run(self.level_meter.snapshot)),
            asyncio.create_task(self._poll_duration()),
        ]
        self.status = SessionStatus.RECORDING
        self.publisher.publish_session_event(SessionEvent("started", remote_session_id=session_id))
        logger.info(f"Recording started (remote session {session_id})")

    async def stop(self) -> Optional[RecordingResult]:
        """Stop recording, build the container and fetch the transcript.

        Ignored (returns None) unless the session is RECORDING, which also
        covers an explicit stop racing the silence auto-stop. Always returns
        the session to IDLE, whether or not a transcript was obtained.

        Returns:
            RecordingResult with the container and the transcript or the
            TranscriptionUnavailable error that replaced it
        """
        return await self._stop(stopped_by_silence=False)

    async def abort(self) -> None:
        """Discard the current pass and return to IDLE.

        Safe in any state. All timers are cancelled before this returns and
        an open remote session is released on a best-effort basis.
        """
        self._generation += 1
        await self._cancel_timers()
        await self._cancel_sender()

        if self.status is SessionStatus.IDLE:
            return

        logger.info(f"Aborting capture session ({self.status.value})")
        self.status = SessionStatus.IDLE
        await self._stop_device()

        self.fragments.clear()
        self._chunk_queue = None
        session_id, self.remote_session_id = self.remote_session_id, None
        if session_id:
            await self._release_remote_session(session_id)

        self._finish_pass(None)
        self.publisher.publish_session_event(SessionEvent("aborted", remote_session_id=session_id))

    async def wait_for_result(self) -> Optional[RecordingResult]:
        """Wait for the current pass to end.

        Returns:
            The RecordingResult, or None if the pass was aborted
        """
        if self._result_future is None:
            return self.last_result
        return await asyncio.shield(self._result_future)

    def _reset_pass(self) -> None:
        self.fragments = []
        self.sent_chunks = 0
        self.failed_chunks = 0
        self.remote_reports_silence = False
        self.elapsed_millis = 0.0
        self.remote_session_id = None
        self.level_meter.reset()

    def _finish_pass(self, result: Optional[RecordingResult]) -> None:
        if self._result_future is not None and not self._result_future.done():
            self._result_future.set_result(result)

    def _on_device_fragment(self, buffer: SampleBuffer) -> None:
        """Device-thread entry point; hands the fragment to the loop."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._handle_fragment, buffer)
        except RuntimeError:
            logger.debug("Event loop closed, dropping fragment")

    def _on_device_error(self, error: DeviceAccessError) -> None:
        """Device-thread entry point for a capture failure after start."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._handle_device_error, error)
        except RuntimeError:
            logger.debug(f"Event loop closed, dropping device error: {error.detail}")

    def _handle_device_error(self, error: DeviceAccessError) -> None:
        if self.status is SessionStatus.RECORDING:
            logger.error(f"Microphone failed while recording, stopping: {error.detail}")
            self._timers.append(asyncio.create_task(
                self._stop(stopped_by_silence=False, device_error=error)))
        elif self.status is SessionStatus.ACQUIRING:
            logger.error(f"Microphone failed before recording started, aborting: {error.detail}")
            self._timers.append(asyncio.create_task(self.abort()))
        else:
            logger.debug(f"Ignoring device error in {self.status.value} state: {error.detail}")

    def _handle_fragment(self, buffer: SampleBuffer) -> None:
        if self.status is SessionStatus.IDLE or self._chunk_queue is None:
            logger.debug("Dropping fragment delivered outside a recording")
            return

        self.fragments.append(buffer)
        self.level_meter.add_samples(buffer)
        self._chunk_queue.put_nowait(to_pcm_bytes(buffer, self.audio_format))

        self.publisher.publish_fragment(FragmentEvent(
            fragment_id=f"fragment_{len(self.fragments)}",
            samples=buffer,
            timestamp=time.time(),
            sequence_number=len(self.fragments),
            sample_rate=self.audio_format.sample_rate,
        ))

    async def _send_chunks(self, session_id: str) -> None:
        """Forward queued chunks in order until the None sentinel arrives."""
        queue = self._chunk_queue
        while True:
            raw = await queue.get()
            if raw is None:
                return
            try:
                ack = await self.client.send_chunk(session_id, raw)
                self.sent_chunks += 1
                self.remote_reports_silence = ack.is_silent
                logger.debug(f"Chunk {self.sent_chunks} delivered ({ack.buffered_byte_count} bytes buffered)")
            except ChunkSendError as e:
                self.failed_chunks += 1
                logger.warning(f"Chunk not delivered, continuing capture: {e.detail}")
            except Exception as e:
                self.failed_chunks += 1
                logger.error(f"Unexpected error sending chunk, continuing capture: {e}", exc_info=True)

    async def _poll_duration(self) -> None:
        """Track elapsed time and stop once the monitor reports silence."""
        interval = self.duration_poll_millis / 1000.0
        while self.status is SessionStatus.RECORDING:
            await asyncio.sleep(interval)
            if self.status is not SessionStatus.RECORDING:
                break

            now = self.clock()
            self.elapsed_millis = now - self._start_millis

            if self.silence_monitor.is_silent(now):
                logger.info(f"Silence for {self.silence_monitor.silence_elapsed_millis(now):.0f}ms, stopping")
                await self._stop(stopped_by_silence=True)
                break
            if self.max_duration_millis and self.elapsed_millis >= self.max_duration_millis:
                logger.info(f"Maximum duration of {self.max_duration_millis:.0f}ms reached, stopping")
                await self._stop(stopped_by_silence=False)
                break

    async def _stop(self, stopped_by_silence: bool,
                    device_error: Optional[DeviceAccessError] = None) -> Optional[RecordingResult]:
        if self.status is not SessionStatus.RECORDING:
            logger.debug(f"Stop ignored: session is {self.status.value}")
            return None

        generation = self._generation
        self.status = SessionStatus.STOPPING
        session_id, self.remote_session_id = self.remote_session_id, None
        try:
            await self._cancel_timers()
            await self._stop_device()

            # Let fragments the device thread already scheduled land first
            await asyncio.sleep(0)
            fragments = list(self.fragments)
            await self._drain_chunks()

            buffer = SampleBuffer.concatenate(fragments, self.audio_format.channel_count)
            container = encode(buffer, self.audio_format)
            if generation != self._generation:
                # Aborted while draining; abort no longer owns the remote session
                await self._release_remote_session(session_id)
                return None

            transcript = None
            error = None
            try:
                transcript = await self.client.close_session(session_id)
            except TranscriptionUnavailable as e:
                logger.warning(f"Transcription unavailable for session {session_id}: {e.detail}")
                error = e

            if generation != self._generation:
                return None

            result = RecordingResult(
                container=container,
                audio_format=self.audio_format.with_channels(
                    min(buffer.channel_count, self.audio_format.channel_count)),
                started_at=self._started_at or datetime.now(),
                duration_seconds=buffer.duration_seconds(self.audio_format.sample_rate),
                total_fragments=len(fragments),
                failed_chunks=self.failed_chunks,
                remote_session_id=session_id,
                transcript=transcript,
                error=error,
                stopped_by_silence=stopped_by_silence,
                device_error=device_error,
            )
            self.last_result = result
            self._finish_pass(result)
            self.publisher.publish_session_event(SessionEvent(
                "stopped",
                remote_session_id=session_id,
                metadata={
                    "fragments": len(fragments),
                    "failed_chunks": self.failed_chunks,
                    "has_transcription": result.has_transcription,
                },
            ))
            logger.info(f"Recording stopped: {len(fragments)} fragments, "
                        f"{result.duration_seconds:.1f}s, {self.failed_chunks} failed chunks")
            return result
        finally:
            if generation == self._generation:
                self.remote_session_id = None
                self.status = SessionStatus.IDLE
                self._finish_pass(None)

    async def _drain_chunks(self) -> None:
        queue, sender = self._chunk_queue, self._sender
        if queue is None or sender is None:
            return
        queue.put_nowait(None)
        done, _ = await asyncio.wait({sender}, timeout=self.drain_timeout_seconds)
        if not done:
            logger.warning(f"Gave up waiting for {queue.qsize()} queued chunks "
                           f"after {self.drain_timeout_seconds}s")
            sender.cancel()
        if self._sender is sender:
            self._sender = None

    async def _cancel_timers(self) -> None:
        current = asyncio.current_task()
        timers = [t for t in self._timers if t is not current]
        self._timers = []
        for task in timers:
            task.cancel()
        await asyncio.gather(*timers, return_exceptions=True)

    async def _cancel_sender(self) -> None:
        sender, self._sender = self._sender, None
        if sender is not None and sender is not asyncio.current_task():
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)

    async def _stop_device(self) -> None:
        try:
            await asyncio.get_running_loop().run_in_executor(None, self.device.stop_recording)
        except OSError as e:
            logger.warning(f"Error releasing capture device: {e}")

    async def _release_remote_session(self, session_id: str) -> None:
        try:
            await self.client.close_session(session_id)
            logger.debug(f"Released remote session {session_id}")
        except TranscriptionUnavailable as e:
            logger.debug(f"Could not release remote session {session_id}: {e.detail}")
