"""Frequency-magnitude level metering for live capture."""

from dataclasses import dataclass, field

import numpy as np

from ..models.audio import SampleBuffer

FFT_SIZE = 256
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0


@dataclass
class LevelMeter:
    """Keep a 0-255 magnitude snapshot of the most recent fragment.

    Mirrors a browser analyser node: the last ``fft_size`` mono samples are
    windowed, transformed, converted to dB and mapped linearly from
    [min_decibels, max_decibels] onto [0, 255], one byte per frequency bin.
    """

    fft_size: int = FFT_SIZE
    min_decibels: float = MIN_DECIBELS
    max_decibels: float = MAX_DECIBELS
    _snapshot: np.ndarray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._window = np.blackman(self.fft_size)
        self._snapshot = np.zeros(self.fft_size // 2, dtype=np.uint8)

    def add_samples(self, buffer: SampleBuffer) -> None:
        if buffer.frame_count == 0:
            return

        mono = buffer.frames().mean(axis=1)
        tail = mono[-self.fft_size:]
        if tail.size < self.fft_size:
            tail = np.pad(tail, (self.fft_size - tail.size, 0))

        spectrum = np.abs(np.fft.rfft(tail * self._window))[: self.fft_size // 2] / self.fft_size
        with np.errstate(divide="ignore"):
            decibels = 20.0 * np.log10(spectrum)

        scaled = (decibels - self.min_decibels) * 255.0 / (self.max_decibels - self.min_decibels)
        self._snapshot = np.clip(np.nan_to_num(scaled, neginf=0.0), 0, 255).astype(np.uint8)

    def snapshot(self) -> np.ndarray:
        return self._snapshot

    def mean_level(self) -> float:
        return float(self._snapshot.mean()) if self._snapshot.size else 0.0

    def reset(self) -> None:
        self._snapshot = np.zeros(self.fft_size // 2, dtype=np.uint8)
