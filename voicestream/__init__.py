"""VoiceStream - voice capture with streaming transcription."""

__version__ = "0.1.0"
