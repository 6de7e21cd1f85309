"""Data models for the VoiceStream application."""

from .audio import AudioFormat, AudioStats, Container, SampleBuffer
from .events import FragmentEvent, SessionEvent
from .session import RecordingResult, SessionStatus
from .transcription import (
    ChunkAck,
    FileTranscript,
    MemoryTranscript,
    RecordingInfo,
    SavedRecording,
    StreamTranscript,
)

__all__ = [
    "AudioFormat",
    "AudioStats",
    "Container",
    "SampleBuffer",
    "FragmentEvent",
    "SessionEvent",
    "RecordingResult",
    "SessionStatus",
    # Remote results
    "ChunkAck",
    "FileTranscript",
    "MemoryTranscript",
    "RecordingInfo",
    "SavedRecording",
    "StreamTranscript",
]
