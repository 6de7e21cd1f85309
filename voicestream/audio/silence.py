"""Silence detection over a live amplitude snapshot."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 100
DEFAULT_SILENCE_THRESHOLD_MS = 1000
DEFAULT_AMPLITUDE_THRESHOLD = 10.0


def monotonic_millis() -> float:
    return time.monotonic() * 1000.0


@dataclass
class SilenceWindow:
    """Silence bookkeeping for one capture session."""
    last_sound_timestamp: float
    silence_threshold_millis: float
    amplitude_threshold: float


class SilenceMonitor:
    """Report how long it has been since the last detected sound.

    The monitor only measures. Deciding to stop a recording is up to the
    owner, which reads ``is_silent()`` on its own cadence.
    """

    def __init__(self,
                 silence_threshold_millis: float = DEFAULT_SILENCE_THRESHOLD_MS,
                 amplitude_threshold: float = DEFAULT_AMPLITUDE_THRESHOLD,
                 poll_interval_millis: float = DEFAULT_POLL_INTERVAL_MS,
                 clock: Callable[[], float] = monotonic_millis):
        """Initialize silence monitor.

        Args:
            silence_threshold_millis: Quiet time after which ``is_silent()`` is true
            amplitude_threshold: Mean snapshot level (0-255) that counts as sound
            poll_interval_millis: Tick period used by ``run()``
            clock: Millisecond clock, monotonic
        """
        self.poll_interval_millis = poll_interval_millis
        self.clock = clock
        self.window = SilenceWindow(
            last_sound_timestamp=clock(),
            silence_threshold_millis=silence_threshold_millis,
            amplitude_threshold=amplitude_threshold,
        )
        self.ticks = 0

    def start(self, now: Optional[float] = None) -> None:
        """Reset the window so silence is measured from ``now``."""
        self.window.last_sound_timestamp = self.clock() if now is None else now
        self.ticks = 0
        logger.debug(f"Silence monitor started: threshold={self.window.silence_threshold_millis}ms, "
                     f"amplitude>{self.window.amplitude_threshold}")

    def tick(self, snapshot: Sequence[float], now: Optional[float] = None) -> bool:
        """Process one amplitude snapshot.

        Args:
            snapshot: Magnitudes on a 0-255 scale
            now: Tick time in milliseconds; read from the clock when omitted

        Returns:
            True if the snapshot counted as sound
        """
        now = self.clock() if now is None else now
        self.ticks += 1

        values = np.asarray(snapshot, dtype=np.float64)
        level = float(values.mean()) if values.size else 0.0
        if level > self.window.amplitude_threshold:
            self.window.last_sound_timestamp = now
            return True
        return False

    def silence_elapsed_millis(self, now: Optional[float] = None) -> float:
        now = self.clock() if now is None else now
        return now - self.window.last_sound_timestamp

    def is_silent(self, now: Optional[float] = None) -> bool:
        return self.silence_elapsed_millis(now) >= self.window.silence_threshold_millis

    async def run(self, snapshot_source: Callable[[], Sequence[float]]) -> None:
        """Tick every ``poll_interval_millis`` until cancelled."""
        interval = self.poll_interval_millis / 1000.0
        while True:
            await asyncio.sleep(interval)
            self.tick(snapshot_source())
