"""Transcription service clients."""

from .base import ServiceClient, TransportError
from .streaming import StreamingClient
from .memory import MemoryRecordingClient
from .upload import FileTranscriptionClient

__all__ = [
    "ServiceClient",
    "TransportError",
    "StreamingClient",
    "MemoryRecordingClient",
    "FileTranscriptionClient",
]
