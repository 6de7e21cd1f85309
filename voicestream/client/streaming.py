"""Client for the chunked streaming transcription endpoints."""

import logging
from typing import Optional

import aiohttp

from ..errors import ChunkSendError, SessionOpenError, TranscriptionUnavailable
from ..models.audio import AudioFormat
from ..models.transcription import ChunkAck, StreamTranscript
from .base import DEFAULT_TIMEOUT_SECONDS, ServiceClient, TransportError
from .responses import (
    RemoteFailure,
    StreamChunkResponse,
    StreamStartResponse,
    StreamStopResponse,
    encode_pcm,
)

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_TIMEOUT_SECONDS = 5.0


class StreamingClient(ServiceClient):
    """Open a remote session, forward PCM chunks, and close it for a transcript.

    No call is retried; a failure is terminal for that call.
    """

    def __init__(self, base_url: str = "http://localhost:8080",
                 timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
                 chunk_timeout_seconds: float = DEFAULT_CHUNK_TIMEOUT_SECONDS,
                 session: Optional[aiohttp.ClientSession] = None):
        super().__init__(base_url, timeout_seconds, session)
        self.chunk_timeout_seconds = chunk_timeout_seconds

    async def open_session(self, audio_format: AudioFormat) -> str:
        """Start a streaming session.

        Args:
            audio_format: Format of the chunks that will follow

        Returns:
            Opaque session id

        Raises:
            SessionOpenError: If the session could not be opened
        """
        payload = {
            "samplesPerSecond": audio_format.sample_rate,
            "bitsPerSample": audio_format.bit_depth,
            "channels": audio_format.channel_count,
        }
        try:
            result = await self._request("POST", "/api/stream/start", StreamStartResponse, json=payload)
        except TransportError as e:
            raise SessionOpenError(e.message, category=e.category) from e

        if isinstance(result, RemoteFailure):
            raise SessionOpenError(f"Failed to start session: {result.reason}",
                                   category=result.category, status=result.status)

        logger.info(f"Opened streaming session {result.session_id} ({audio_format.sample_rate}Hz, "
                    f"{audio_format.bit_depth}-bit, {audio_format.channel_count}ch)")
        return result.session_id

    async def send_chunk(self, session_id: str, raw_bytes: bytes) -> ChunkAck:
        """Forward one chunk of PCM bytes.

        Raises:
            ChunkSendError: If the chunk was not accepted in time
        """
        payload = {"sessionId": session_id, "pcmData": encode_pcm(raw_bytes)}
        try:
            result = await self._request("POST", "/api/stream/chunk", StreamChunkResponse,
                                         timeout_seconds=self.chunk_timeout_seconds, json=payload)
        except TransportError as e:
            raise ChunkSendError(e.message, category=e.category) from e

        if isinstance(result, RemoteFailure):
            raise ChunkSendError(f"Chunk rejected: {result.reason}",
                                 category=result.category, status=result.status)

        return ChunkAck(buffered_byte_count=result.buffer_size, is_silent=result.is_silent)

    async def close_session(self, session_id: str) -> StreamTranscript:
        """Stop the session and retrieve its transcript.

        Raises:
            TranscriptionUnavailable: On timeout, transport failure or a
                service-side transcription error
        """
        try:
            result = await self._request("POST", "/api/stream/stop", StreamStopResponse,
                                         json={"sessionId": session_id})
        except TransportError as e:
            raise TranscriptionUnavailable(e.message, category=e.category) from e

        if isinstance(result, RemoteFailure):
            raise TranscriptionUnavailable(result.reason, category=result.category, status=result.status)

        logger.info(f"Closed streaming session {session_id} (transcription: {result.has_transcription})")
        return StreamTranscript(
            session_id=result.session_id or session_id,
            transcribed_text=result.transcribed_text,
            has_transcription=result.has_transcription,
            detected_language=result.detected_language,
            audio_size=result.audio_size,
        )

    async def get_transcription(self, session_id: str) -> StreamTranscript:
        """Fetch the latest transcript the service holds for a session.

        Raises:
            TranscriptionUnavailable: If the transcript cannot be fetched
        """
        try:
            result = await self._request("GET", f"/api/stream/transcription/{session_id}", StreamStopResponse)
        except TransportError as e:
            raise TranscriptionUnavailable(e.message, category=e.category) from e

        if isinstance(result, RemoteFailure):
            raise TranscriptionUnavailable(result.reason, category=result.category, status=result.status)

        return StreamTranscript(
            session_id=result.session_id or session_id,
            transcribed_text=result.transcribed_text,
            has_transcription=result.has_transcription,
        )
