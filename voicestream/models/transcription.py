"""Results returned by the remote transcription service."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class ChunkAck:
    """Acknowledgement of one streamed chunk."""
    buffered_byte_count: int
    is_silent: bool


@dataclass
class StreamTranscript:
    """Final transcript of a streaming session."""
    session_id: str
    transcribed_text: Optional[str] = None
    has_transcription: bool = False
    detected_language: Optional[str] = None
    audio_size: Optional[int] = None


@dataclass
class SavedRecording:
    """A one-shot recording held by the service."""
    id: str
    is_silent: bool
    data_size: int


@dataclass
class RecordingInfo:
    """Metadata of a saved recording."""
    id: str
    sample_rate: int
    bit_depth: int
    channel_count: int
    data_size: int


@dataclass
class MemoryTranscript:
    """Transcript of a saved recording."""
    id: Optional[str] = None
    transcribed_text: Optional[str] = None
    has_transcription: bool = False
    detected_language: Optional[str] = None
    ai_response: Optional[str] = None


@dataclass
class FileTranscript:
    """Transcript of an uploaded container."""
    id: Optional[str]
    transcribed_text: Optional[str]
    audio_size: int
    sample_rate: int
    bit_depth: int
    channel_count: int
    has_transcription: bool = False
    detected_language: Optional[str] = None
