"""Local storage for completed recording containers."""

import json
import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ..models.audio import Container
from ..models.session import RecordingResult

logger = logging.getLogger(__name__)


@dataclass
class StoredRecordingInfo:
    """Sidecar metadata written next to a saved container."""
    filename: str
    saved_at: datetime
    duration_seconds: float
    file_size_bytes: int
    sample_rate: int
    bit_depth: int
    channels: int
    remote_session_id: Optional[str] = None
    transcribed_text: Optional[str] = None


class RecordingStore:
    """Saves containers as .wav files with a JSON sidecar."""

    def __init__(self, output_dir: str = "./recordings"):
        """Initialize recording store.

        Args:
            output_dir: Directory recordings are written to
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"RecordingStore initialized with output_dir: {self.output_dir}")

    @staticmethod
    def default_filename(now: Optional[datetime] = None) -> str:
        """Download-style filename, e.g. recording_2024-05-01T10-20-30.wav."""
        now = now or datetime.now()
        return f"recording_{now.strftime('%Y-%m-%dT%H-%M-%S')}.wav"

    def save_container(self, container: Container, filename: Optional[str] = None) -> Path:
        """Write a container to disk.

        Args:
            container: Complete RIFF/WAVE bytes
            filename: Optional custom filename; ``.wav`` is appended if missing

        Returns:
            Path of the written file
        """
        filename = filename or self.default_filename()
        if not filename.endswith('.wav'):
            filename += '.wav'

        path = self.output_dir / filename
        path.write_bytes(bytes(container))
        logger.info(f"Recording saved: {path} ({len(container)} bytes)")
        return path

    def save_result(self, result: RecordingResult, filename: Optional[str] = None) -> Path:
        """Write a recording result's container and its metadata sidecar."""
        path = self.save_container(result.container, filename)

        info = StoredRecordingInfo(
            filename=path.name,
            saved_at=datetime.now(),
            duration_seconds=result.duration_seconds,
            file_size_bytes=len(result.container),
            sample_rate=result.audio_format.sample_rate,
            bit_depth=result.audio_format.bit_depth,
            channels=result.audio_format.channel_count,
            remote_session_id=result.remote_session_id,
            transcribed_text=result.transcript.transcribed_text if result.transcript else None,
        )
        info_dict = asdict(info)
        info_dict['saved_at'] = info.saved_at.isoformat()
        path.with_suffix('.json').write_text(json.dumps(info_dict, indent=2, ensure_ascii=False),
                                             encoding='utf-8')
        return path

    def load_container(self, filename: str) -> Container:
        """Read a saved container back."""
        path = self.output_dir / filename
        return Container(path.read_bytes())

    def load_info(self, filename: str) -> Optional[StoredRecordingInfo]:
        """Load the sidecar metadata of a saved recording, if present."""
        info_file = (self.output_dir / filename).with_suffix('.json')
        if not info_file.exists():
            logger.warning(f"Recording info not found: {info_file}")
            return None

        data = json.loads(info_file.read_text(encoding='utf-8'))
        data['saved_at'] = datetime.fromisoformat(data['saved_at'])
        return StoredRecordingInfo(**data)

    def list_recordings(self) -> List[str]:
        """List saved .wav filenames, oldest first."""
        return sorted(path.name for path in self.output_dir.glob('*.wav'))
