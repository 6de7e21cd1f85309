"""Pytest configuration and fixtures for VoiceStream tests."""

import asyncio
import contextlib
import io
import logging
import wave
from typing import Any, Coroutine, Dict, List, Optional, TypeVar
from unittest.mock import Mock, patch

import numpy as np
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from voicestream.errors import ChunkSendError, SessionOpenError, TranscriptionUnavailable
from voicestream.models.audio import AudioFormat, SampleBuffer
from voicestream.models.transcription import ChunkAck, StreamTranscript


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run an async coroutine synchronously for testing."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@pytest.fixture
def make_fragment():
    """Build SampleBuffer fragments with numpy-generated audio."""
    def generate(pattern="noise", frames=1600, channels=1, amplitude=0.5, seed=0):
        """Generate a fragment.

        Args:
            pattern: 'noise', 'sine' or 'silence'
            frames: Number of frames
            channels: Interleaved channel count
            amplitude: Peak amplitude
            seed: Seed for the noise generator
        """
        count = frames * channels
        if pattern == "noise":
            data = np.random.default_rng(seed).uniform(-amplitude, amplitude, count)
        elif pattern == "sine":
            t = np.arange(count) / 16000
            data = amplitude * np.sin(2 * np.pi * 440 * t)
        elif pattern == "silence":
            data = np.zeros(count)
        else:
            raise ValueError(f"Unknown pattern: {pattern}")
        return SampleBuffer(data, channels)

    return generate


@pytest.fixture
def mono_16bit():
    return AudioFormat(sample_rate=16000, bit_depth=16, channel_count=1)


@pytest.fixture
def mock_pyaudio():
    """Mock PyAudio for testing without actual audio hardware."""
    with patch('pyaudio.PyAudio') as mock_pyaudio_class:
        mock_pyaudio_instance = Mock()
        mock_stream = Mock()

        # Silent float32 audio, one 250 ms fragment at 16 kHz
        mock_stream.read.return_value = np.zeros(4000, dtype=np.float32).tobytes()
        mock_stream.stop_stream.return_value = None
        mock_stream.close.return_value = None

        mock_pyaudio_instance.open.return_value = mock_stream
        mock_pyaudio_instance.terminate.return_value = None

        mock_pyaudio_class.return_value = mock_pyaudio_instance

        yield {
            'class': mock_pyaudio_class,
            'instance': mock_pyaudio_instance,
            'stream': mock_stream
        }


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, millis: float) -> None:
        self.now += millis


class FakeDevice:
    """Capture device driven by the test instead of a microphone."""

    def __init__(self):
        self.callback = None
        self.on_error = None
        self.audio_format: Optional[AudioFormat] = None
        self.error: Optional[Exception] = None
        self.started = 0
        self.stopped = 0
        self.is_recording = False

    def start_recording(self, audio_format, callback, on_error=None):
        if self.error is not None:
            raise self.error
        self.started += 1
        self.audio_format = audio_format
        self.callback = callback
        self.on_error = on_error
        self.is_recording = True

    def stop_recording(self):
        self.stopped += 1
        self.is_recording = False

    def emit(self, buffer: SampleBuffer) -> None:
        self.callback(buffer)

    def fail(self, error: Exception) -> None:
        """Report a mid-recording failure the way the capture thread does."""
        self.on_error(error)


class FakeStreamingClient:
    """In-memory stand-in for StreamingClient that records every call."""

    def __init__(self):
        self.opened: List[AudioFormat] = []
        self.chunks: List[bytes] = []
        self.closed: List[str] = []
        self.chunk_calls = 0
        self.failing_chunks = set()
        self.broken_chunks = set()
        self.open_error: Optional[SessionOpenError] = None
        self.close_error: Optional[TranscriptionUnavailable] = None
        self.open_gate: Optional[asyncio.Event] = None
        self.close_gate: Optional[asyncio.Event] = None
        self.transcript_text = "hello world"

    @property
    def calls(self) -> int:
        return len(self.opened) + self.chunk_calls + len(self.closed)

    async def open_session(self, audio_format):
        self.opened.append(audio_format)
        if self.open_gate is not None:
            await self.open_gate.wait()
        if self.open_error is not None:
            raise self.open_error
        return f"session-{len(self.opened)}"

    async def send_chunk(self, session_id, raw_bytes):
        self.chunk_calls += 1
        if self.chunk_calls in self.failing_chunks:
            raise ChunkSendError(f"chunk {self.chunk_calls} rejected", category="http", status=500)
        if self.chunk_calls in self.broken_chunks:
            raise RuntimeError(f"chunk {self.chunk_calls} hit a client bug")
        self.chunks.append(raw_bytes)
        return ChunkAck(buffered_byte_count=sum(len(c) for c in self.chunks), is_silent=not any(raw_bytes))

    async def close_session(self, session_id):
        self.closed.append(session_id)
        if self.close_gate is not None:
            await self.close_gate.wait()
        if self.close_error is not None:
            raise self.close_error
        return StreamTranscript(session_id=session_id, transcribed_text=self.transcript_text,
                                has_transcription=True, detected_language="en")


class FakeTranscriptionService:
    """aiohttp application imitating the transcription service endpoints."""

    def __init__(self):
        self.transcript_text = "hello world"
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.recordings: Dict[str, Dict[str, Any]] = {}
        self.requests: List[str] = []
        self.uploads: List[Dict[str, Any]] = []
        self.start_error: Optional[str] = None
        self.stop_error: Optional[str] = None
        self.stop_plain_text = False
        self.failing_chunks = set()
        self.chunk_delay = 0.0
        self._chunk_count = 0
        self._next_id = 0

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/api/stream/start", self.stream_start)
        app.router.add_post("/api/stream/chunk", self.stream_chunk)
        app.router.add_post("/api/stream/stop", self.stream_stop)
        app.router.add_get("/api/stream/transcription/{session_id}", self.stream_transcription)
        app.router.add_post("/api/recording/start", self.recording_start)
        app.router.add_get("/api/recording/{id}", self.recording_get)
        app.router.add_post("/api/recording/{id}/transcribe", self.recording_transcribe)
        app.router.add_delete("/api/recording/{id}", self.recording_delete)
        app.router.add_post("/api/audio/transcribe", self.audio_transcribe)
        app.router.add_get("/api/audio/health", self.health)
        return app

    @contextlib.asynccontextmanager
    async def running(self):
        """Serve the fake on a free local port and yield its base URL."""
        async with TestServer(self.build_app()) as server:
            yield f"http://{server.host}:{server.port}"

    def _new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}-{self._next_id}"

    @staticmethod
    def _failure(error: str, status: int = 500) -> web.Response:
        return web.json_response({"success": False, "error": error}, status=status)

    def session_bytes(self, session_id: str) -> bytes:
        return b"".join(self.sessions[session_id]["chunks"])

    async def stream_start(self, request):
        body = await request.json()
        self.requests.append("stream.start")
        if self.start_error:
            return self._failure(self.start_error)
        session_id = self._new_id("session")
        self.sessions[session_id] = {"format": body, "chunks": [], "open": True}
        return web.json_response({"success": True, "sessionId": session_id})

    async def stream_chunk(self, request):
        body = await request.json()
        self.requests.append("stream.chunk")
        self._chunk_count += 1
        if self._chunk_count in self.failing_chunks:
            return self._failure("Chunk processing failed")
        if self.chunk_delay:
            await asyncio.sleep(self.chunk_delay)

        session = self.sessions.get(body["sessionId"])
        if session is None or not session["open"]:
            return self._failure("Session not found", status=404)
        data = bytes(body["pcmData"])
        session["chunks"].append(data)
        return web.json_response({
            "success": True,
            "isSilent": not any(data),
            "bufferSize": sum(len(c) for c in session["chunks"]),
        })

    async def stream_stop(self, request):
        body = await request.json()
        self.requests.append("stream.stop")
        if self.stop_plain_text:
            return web.Response(text="Bad gateway", status=502)

        session = self.sessions.get(body["sessionId"])
        if session is None or not session["open"]:
            return self._failure("Session not found", status=404)
        session["open"] = False
        if self.stop_error:
            return web.json_response({"success": False, "error": self.stop_error})
        return web.json_response({
            "success": True,
            "sessionId": body["sessionId"],
            "hasTranscription": True,
            "transcribedText": self.transcript_text,
            "detectedLanguage": "en",
            "audioSize": len(self.session_bytes(body["sessionId"])),
        })

    async def stream_transcription(self, request):
        session_id = request.match_info["session_id"]
        self.requests.append("stream.transcription")
        if session_id not in self.sessions:
            return self._failure("Session not found", status=404)
        return web.json_response({
            "success": True,
            "sessionId": session_id,
            "transcribedText": self.transcript_text,
            "hasTranscription": True,
        })

    async def recording_start(self, request):
        body = await request.json()
        self.requests.append("recording.start")
        data = bytes(body["pcmData"])
        recording_id = self._new_id("rec")
        self.recordings[recording_id] = {"data": data, "format": body}
        return web.json_response({
            "success": True,
            "id": recording_id,
            "isSilent": not any(data),
            "dataSize": len(data),
        })

    async def recording_get(self, request):
        recording_id = request.match_info["id"]
        self.requests.append("recording.get")
        recording = self.recordings.get(recording_id)
        if recording is None:
            return self._failure("Recording not found", status=404)
        return web.json_response({
            "success": True,
            "id": recording_id,
            "samplesPerSecond": recording["format"]["samplesPerSecond"],
            "bitsPerSample": recording["format"]["bitsPerSample"],
            "channels": recording["format"]["channels"],
            "dataSize": len(recording["data"]),
        })

    async def recording_transcribe(self, request):
        recording_id = request.match_info["id"]
        self.requests.append("recording.transcribe")
        if recording_id not in self.recordings:
            return self._failure("Recording not found", status=404)
        return web.json_response({
            "success": True,
            "id": recording_id,
            "hasTranscription": True,
            "transcribedText": self.transcript_text,
            "detectedLanguage": "en",
            "aiResponse": "Noted.",
        })

    async def recording_delete(self, request):
        recording_id = request.match_info["id"]
        self.requests.append("recording.delete")
        if self.recordings.pop(recording_id, None) is None:
            return self._failure("Recording not found", status=404)
        return web.json_response({"success": True, "message": "deleted"})

    async def audio_transcribe(self, request):
        form = await request.post()
        self.requests.append("audio.transcribe")
        field = form["file"]
        data = field.file.read()
        self.uploads.append({"filename": field.filename, "content_type": field.content_type, "data": data})

        with wave.open(io.BytesIO(data), "rb") as wf:
            rate, width, channels = wf.getframerate(), wf.getsampwidth(), wf.getnchannels()
        return web.json_response({
            "id": self._new_id("upload"),
            "audioSize": len(data),
            "transcribedText": self.transcript_text,
            "samplesPerSecond": rate,
            "bitsPerSample": width * 8,
            "channels": channels,
        })

    async def health(self, request):
        self.requests.append("health")
        return web.json_response({"status": "UP", "service": "fake-transcription"})


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_device():
    return FakeDevice()


@pytest.fixture
def fake_client():
    return FakeStreamingClient()


@pytest.fixture
def fake_service():
    return FakeTranscriptionService()


@pytest.fixture(scope="session")
def test_config():
    """Configuration overrides used by config and CLI tests."""
    return {
        "server": {"base_url": "http://127.0.0.1:9999", "timeout_seconds": 2},
        "audio": {"sample_rate": 8000, "bit_depth": 8},
        "storage": {"output_directory": "out"},
    }
