"""Session-related data models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .audio import AudioFormat, Container
from .transcription import StreamTranscript
from ..errors import DeviceAccessError, TranscriptionUnavailable


class SessionStatus(Enum):
    """Lifecycle states of a capture session."""
    IDLE = "idle"
    ACQUIRING = "acquiring"
    RECORDING = "recording"
    STOPPING = "stopping"


@dataclass
class RecordingResult:
    """Outcome of one completed recording pass."""
    container: Container
    audio_format: AudioFormat
    started_at: datetime
    duration_seconds: float
    total_fragments: int
    failed_chunks: int
    remote_session_id: Optional[str] = None
    transcript: Optional[StreamTranscript] = None
    error: Optional[TranscriptionUnavailable] = None
    stopped_by_silence: bool = False
    device_error: Optional[DeviceAccessError] = None  # set when the microphone failed mid-recording

    @property
    def has_transcription(self) -> bool:
        return self.transcript is not None and self.transcript.has_transcription
