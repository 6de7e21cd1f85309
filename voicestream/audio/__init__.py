"""Audio codec, level analysis and silence detection module.

The PyAudio-backed capture device lives in ``voicestream.audio.capture`` and is
imported explicitly so the codec can be used on hosts without PortAudio.
"""

from .level_meter import LevelMeter
from .silence import SilenceMonitor
from .audio_pub import AudioPublisher

__all__ = [
    'LevelMeter',
    'SilenceMonitor',
    'AudioPublisher'
]
