"""VoiceStream exception hierarchy.

Every error raised by the capture pipeline derives from VoiceStreamError so
callers can tell pipeline failures apart from programming errors.
"""

from enum import Enum
from typing import Optional


class VoiceStreamError(Exception):
    """Base exception for all VoiceStream errors."""

    def __init__(self, detail: str = "An unexpected error occurred", code: str = "VOICESTREAM_ERROR"):
        self.detail = detail
        self.code = code
        super().__init__(detail)


class DeviceAccessError(VoiceStreamError):
    """Raised when the capture device cannot be opened (missing device or permission)."""

    def __init__(self, detail: str = "Could not access the microphone"):
        super().__init__(detail=detail, code="DEVICE_ACCESS")


class CodecError(VoiceStreamError):
    """Base class for container encode/decode failures."""


class EncodeError(CodecError):
    """Raised when samples cannot be encoded with the requested format."""

    def __init__(self, detail: str):
        super().__init__(detail=detail, code="ENCODE_ERROR")


class DecodeFailure(Enum):
    """Why a container could not be decoded."""
    MALFORMED_CONTAINER = "MalformedContainer"
    UNSUPPORTED_BIT_DEPTH = "UnsupportedBitDepth"


class DecodeError(CodecError):
    """Raised when a container is malformed or uses an unsupported encoding."""

    def __init__(self, reason: DecodeFailure, detail: str):
        self.reason = reason
        super().__init__(detail=f"{reason.value}: {detail}", code="DECODE_ERROR")


class RemoteError(VoiceStreamError):
    """Base class for failures talking to the transcription service.

    Categories: "connection", "timeout", "http", "protocol", "rejected".
    """

    def __init__(self, detail: str, code: str = "REMOTE_ERROR", category: str = "rejected",
                 status: Optional[int] = None):
        self.category = category
        self.status = status
        super().__init__(detail=detail, code=code)


class SessionOpenError(RemoteError):
    """The remote streaming session could not be opened."""

    def __init__(self, detail: str, category: str = "rejected", status: Optional[int] = None):
        super().__init__(detail, code="SESSION_OPEN", category=category, status=status)


class RemoteSessionError(RemoteError):
    """A capture attempt was aborted because its remote session failed."""

    def __init__(self, detail: str, category: str = "rejected", status: Optional[int] = None):
        super().__init__(detail, code="REMOTE_SESSION", category=category, status=status)


class ChunkSendError(RemoteError):
    """A streamed chunk was not accepted. Never fatal for the capture."""

    def __init__(self, detail: str, category: str = "rejected", status: Optional[int] = None):
        super().__init__(detail, code="CHUNK_SEND", category=category, status=status)


class TranscriptionUnavailable(RemoteError):
    """No transcript could be obtained; the local recording is still usable."""

    def __init__(self, detail: str, category: str = "rejected", status: Optional[int] = None):
        super().__init__(detail, code="TRANSCRIPTION_UNAVAILABLE", category=category, status=status)


class RecordingRequestError(RemoteError):
    """A one-shot recording request (save, info, delete, health) failed."""

    def __init__(self, detail: str, category: str = "rejected", status: Optional[int] = None):
        super().__init__(detail, code="RECORDING_REQUEST", category=category, status=status)
