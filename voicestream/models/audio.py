"""Audio-related data models."""

from dataclasses import dataclass
from typing import Iterable

import numpy as np


@dataclass(frozen=True)
class AudioFormat:
    """Sample rate, bit depth and channel count of a PCM stream."""
    sample_rate: int
    bit_depth: int
    channel_count: int

    def __post_init__(self):
        if self.sample_rate <= 0:
            raise ValueError(f"Sample rate must be positive, got {self.sample_rate}")
        if self.channel_count <= 0:
            raise ValueError(f"Channel count must be positive, got {self.channel_count}")
        if self.bit_depth <= 0:
            raise ValueError(f"Bit depth must be positive, got {self.bit_depth}")

    @property
    def block_align(self) -> int:
        return self.channel_count * self.bit_depth // 8

    @property
    def byte_rate(self) -> int:
        return self.sample_rate * self.channel_count * self.bit_depth // 8

    def with_channels(self, channel_count: int) -> "AudioFormat":
        return AudioFormat(self.sample_rate, self.bit_depth, channel_count)


@dataclass
class SampleBuffer:
    """Frame-interleaved float samples in [-1.0, 1.0]."""
    samples: np.ndarray
    channel_count: int = 1

    def __post_init__(self):
        self.samples = np.asarray(self.samples, dtype=np.float32).reshape(-1)
        if self.channel_count <= 0:
            raise ValueError(f"Channel count must be positive, got {self.channel_count}")
        if self.samples.size % self.channel_count:
            raise ValueError(
                f"{self.samples.size} samples do not divide into {self.channel_count} channels"
            )

    @property
    def frame_count(self) -> int:
        return self.samples.size // self.channel_count

    def frames(self) -> np.ndarray:
        """Samples as a (frame_count, channel_count) view."""
        return self.samples.reshape(-1, self.channel_count)

    def duration_seconds(self, sample_rate: int) -> float:
        return self.frame_count / sample_rate

    @classmethod
    def empty(cls, channel_count: int = 1) -> "SampleBuffer":
        return cls(np.zeros(0, dtype=np.float32), channel_count)

    @classmethod
    def concatenate(cls, buffers: Iterable["SampleBuffer"], channel_count: int = 1) -> "SampleBuffer":
        """Join consecutive fragments into one buffer.

        Args:
            buffers: Fragments with identical channel counts
            channel_count: Channel count used when ``buffers`` is empty

        Returns:
            A single SampleBuffer holding every frame in order
        """
        buffers = list(buffers)
        if not buffers:
            return cls.empty(channel_count)
        channels = {b.channel_count for b in buffers}
        if len(channels) != 1:
            raise ValueError(f"Cannot concatenate buffers with channel counts {sorted(channels)}")
        return cls(np.concatenate([b.samples for b in buffers]), buffers[0].channel_count)


@dataclass(frozen=True)
class Container:
    """Bytes of one complete RIFF/WAVE file."""
    data: bytes

    def __bytes__(self) -> bytes:
        return self.data

    def __len__(self) -> int:
        return len(self.data)


@dataclass
class AudioStats:
    """Audio capture statistics."""
    is_recording: bool
    duration_seconds: float
    sample_rate: int
    channels: int
    frames_per_fragment: int
    total_fragments: int
