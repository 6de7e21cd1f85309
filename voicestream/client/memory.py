"""Client for one-shot recordings held in the service's memory."""

import logging

from ..errors import RecordingRequestError, TranscriptionUnavailable
from ..models.audio import AudioFormat
from ..models.transcription import MemoryTranscript, RecordingInfo, SavedRecording
from .base import ServiceClient, TransportError
from .responses import (
    RecordingDeleteResponse,
    RecordingInfoResponse,
    RecordingSaveResponse,
    RecordingTranscribeResponse,
    RemoteFailure,
    encode_pcm,
)

logger = logging.getLogger(__name__)


class MemoryRecordingClient(ServiceClient):
    """Save, inspect, transcribe and delete complete recordings by id.

    The calls are independent; the service keeps the payload until it is
    deleted.
    """

    async def save(self, sample_bytes: bytes, audio_format: AudioFormat) -> SavedRecording:
        """Submit a complete PCM payload.

        Args:
            sample_bytes: Payload bytes, typically from ``extract_payload_bytes``
            audio_format: Format the payload was encoded with

        Returns:
            SavedRecording; ``is_silent`` is informational and never blocks the save

        Raises:
            RecordingRequestError: If the payload is empty or the service did not
                store the recording
        """
        if not sample_bytes:
            raise RecordingRequestError("PCM data cannot be empty")

        payload = {
            "pcmData": encode_pcm(sample_bytes),
            "samplesPerSecond": audio_format.sample_rate,
            "bitsPerSample": audio_format.bit_depth,
            "channels": audio_format.channel_count,
        }
        try:
            result = await self._request("POST", "/api/recording/start", RecordingSaveResponse, json=payload)
        except TransportError as e:
            raise RecordingRequestError(e.message, category=e.category) from e

        if isinstance(result, RemoteFailure):
            raise RecordingRequestError(f"Failed to save recording: {result.reason}",
                                        category=result.category, status=result.status)

        if result.is_silent:
            logger.warning(f"Recording {result.id} was saved but the service reports it as silent")
        logger.info(f"Saved recording {result.id} ({result.data_size} bytes)")
        return SavedRecording(id=result.id, is_silent=result.is_silent, data_size=result.data_size)

    async def get(self, recording_id: str) -> RecordingInfo:
        """Fetch the metadata of a saved recording."""
        try:
            result = await self._request("GET", f"/api/recording/{recording_id}", RecordingInfoResponse)
        except TransportError as e:
            raise RecordingRequestError(e.message, category=e.category) from e

        if isinstance(result, RemoteFailure):
            raise RecordingRequestError(f"Recording {recording_id} unavailable: {result.reason}",
                                        category=result.category, status=result.status)

        return RecordingInfo(
            id=result.id,
            sample_rate=result.samples_per_second,
            bit_depth=result.bits_per_sample,
            channel_count=result.channels,
            data_size=result.data_size,
        )

    async def transcribe(self, recording_id: str) -> MemoryTranscript:
        """Transcribe a saved recording.

        Raises:
            TranscriptionUnavailable: If the service could not transcribe it
        """
        try:
            result = await self._request("POST", f"/api/recording/{recording_id}/transcribe",
                                         RecordingTranscribeResponse)
        except TransportError as e:
            raise TranscriptionUnavailable(e.message, category=e.category) from e

        if isinstance(result, RemoteFailure):
            raise TranscriptionUnavailable(result.reason, category=result.category, status=result.status)

        return MemoryTranscript(
            id=result.id or recording_id,
            transcribed_text=result.transcribed_text,
            has_transcription=result.has_transcription,
            detected_language=result.detected_language,
            ai_response=result.ai_response,
        )

    async def delete(self, recording_id: str) -> None:
        """Delete a saved recording.

        Raises:
            RecordingRequestError: If the service did not delete it
        """
        try:
            result = await self._request("DELETE", f"/api/recording/{recording_id}", RecordingDeleteResponse)
        except TransportError as e:
            raise RecordingRequestError(e.message, category=e.category) from e

        if isinstance(result, RemoteFailure):
            raise RecordingRequestError(f"Failed to delete recording {recording_id}: {result.reason}",
                                        category=result.category, status=result.status)

        logger.info(f"Deleted recording {recording_id}")
