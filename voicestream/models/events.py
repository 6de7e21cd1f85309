"""Event models published while a capture session runs."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .audio import SampleBuffer


@dataclass
class FragmentEvent:
    """One captured fragment with metadata."""
    fragment_id: str
    samples: SampleBuffer
    timestamp: float  # Unix timestamp when the fragment reached the session
    sequence_number: int
    sample_rate: int = 16000
    duration_ms: Optional[int] = None

    def __post_init__(self):
        """Calculate fragment duration if not provided."""
        if self.duration_ms is None:
            self.duration_ms = int(self.samples.frame_count * 1000 / self.sample_rate)


@dataclass
class SessionEvent:
    """Session lifecycle event."""
    event_type: str  # "started", "stopped", "aborted"
    remote_session_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)
