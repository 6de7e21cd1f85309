"""Services layer for VoiceStream application logic."""

from .capture_session import CaptureSession

__all__ = [
    "CaptureSession",
]
