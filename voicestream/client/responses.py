"""Wire models for transcription service responses.

Every JSON body is parsed into one of these pydantic models. A body that
reports ``success: false``, comes with an error status, or does not match the
expected shape becomes a ``RemoteFailure`` instead, so callers branch on the
variant rather than probing optional keys.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ServiceResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    success: bool = True
    error: Optional[str] = None


class StreamStartResponse(ServiceResponse):
    session_id: str = Field(alias="sessionId")


class StreamChunkResponse(ServiceResponse):
    is_silent: bool = Field(default=False, alias="isSilent")
    buffer_size: int = Field(default=0, alias="bufferSize")


class StreamStopResponse(ServiceResponse):
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    transcribed_text: Optional[str] = Field(default=None, alias="transcribedText")
    has_transcription: bool = Field(default=False, alias="hasTranscription")
    detected_language: Optional[str] = Field(default=None, alias="detectedLanguage")
    audio_size: Optional[int] = Field(default=None, alias="audioSize")


class RecordingSaveResponse(ServiceResponse):
    id: str
    is_silent: bool = Field(default=False, alias="isSilent")
    data_size: int = Field(default=0, alias="dataSize")


class RecordingInfoResponse(ServiceResponse):
    id: str
    samples_per_second: int = Field(alias="samplesPerSecond")
    bits_per_sample: int = Field(alias="bitsPerSample")
    channels: int
    data_size: int = Field(default=0, alias="dataSize")


class RecordingTranscribeResponse(ServiceResponse):
    id: Optional[str] = None
    transcribed_text: Optional[str] = Field(default=None, alias="transcribedText")
    has_transcription: bool = Field(default=False, alias="hasTranscription")
    detected_language: Optional[str] = Field(default=None, alias="detectedLanguage")
    ai_response: Optional[str] = Field(default=None, alias="aiResponse")


class RecordingDeleteResponse(ServiceResponse):
    message: Optional[str] = None


class FileTranscribeResponse(ServiceResponse):
    id: Optional[str] = None
    audio_size: int = Field(default=0, alias="audioSize")
    transcribed_text: Optional[str] = Field(default=None, alias="transcribedText")
    has_transcription: bool = Field(default=False, alias="hasTranscription")
    detected_language: Optional[str] = Field(default=None, alias="detectedLanguage")
    samples_per_second: int = Field(default=0, alias="samplesPerSecond")
    bits_per_sample: int = Field(default=0, alias="bitsPerSample")
    channels: int = 0


class HealthResponse(ServiceResponse):
    status: str
    service: Optional[str] = None


class RemoteFailure(BaseModel):
    """A request the service answered, but not with a usable success body."""

    reason: str
    status: Optional[int] = None
    category: str = "rejected"


def encode_pcm(payload: bytes) -> List[int]:
    """PCM bytes as the JSON array of unsigned byte values the service expects."""
    return list(payload)
