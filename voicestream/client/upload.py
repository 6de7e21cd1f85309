"""Client for whole-file transcription and the service health check."""

import logging
from typing import Any, Dict

import aiohttp

from ..audio.codec import ContainerLike, read_format
from ..errors import RecordingRequestError, TranscriptionUnavailable
from ..models.transcription import FileTranscript
from .base import ServiceClient, TransportError
from .responses import FileTranscribeResponse, HealthResponse, RemoteFailure

logger = logging.getLogger(__name__)


class FileTranscriptionClient(ServiceClient):
    """Upload a complete container as a multipart file for transcription."""

    async def transcribe_file(self, container: ContainerLike, filename: str = "recording.wav") -> FileTranscript:
        """Upload a WAV container and return its transcript.

        The container is validated locally first, so a malformed file raises
        DecodeError without any network traffic.

        Raises:
            DecodeError: If the container is not a readable PCM WAV file
            TranscriptionUnavailable: If the service could not transcribe it
        """
        data = bytes(container)
        audio_format = read_format(data)
        logger.debug(f"Uploading {filename}: {len(data)} bytes, {audio_format}")

        form = aiohttp.FormData()
        form.add_field("file", data, filename=filename, content_type="audio/wav")

        try:
            result = await self._request("POST", "/api/audio/transcribe", FileTranscribeResponse, data=form)
        except TransportError as e:
            raise TranscriptionUnavailable(e.message, category=e.category) from e

        if isinstance(result, RemoteFailure):
            raise TranscriptionUnavailable(result.reason, category=result.category, status=result.status)

        return FileTranscript(
            id=result.id,
            transcribed_text=result.transcribed_text,
            audio_size=result.audio_size,
            sample_rate=result.samples_per_second or audio_format.sample_rate,
            bit_depth=result.bits_per_sample or audio_format.bit_depth,
            channel_count=result.channels or audio_format.channel_count,
            has_transcription=result.has_transcription or bool(result.transcribed_text),
            detected_language=result.detected_language,
        )

    async def health(self) -> Dict[str, Any]:
        """Return the service health report."""
        try:
            result = await self._request("GET", "/api/audio/health", HealthResponse)
        except TransportError as e:
            raise RecordingRequestError(e.message, category=e.category) from e

        if isinstance(result, RemoteFailure):
            raise RecordingRequestError(f"Health check failed: {result.reason}",
                                        category=result.category, status=result.status)

        return {"status": result.status, "service": result.service}
