"""RIFF/WAVE container codec for linear PCM audio.

Converts float sample buffers to and from 8, 16 and 24-bit PCM, either as a
complete 44-byte-header container or as the bare payload bytes that are
streamed to the transcription service.
"""

import logging
import struct
from typing import Iterator, Tuple, Union

import numpy as np

from ..errors import DecodeError, DecodeFailure, EncodeError
from ..models.audio import AudioFormat, Container, SampleBuffer

logger = logging.getLogger(__name__)

SUPPORTED_BIT_DEPTHS = (8, 16, 24)
HEADER_SIZE = 44
FMT_CHUNK_SIZE = 16
PCM_FORMAT_CODE = 1

_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")
_CHUNK_HEADER = struct.Struct("<4sI")
_FMT_BODY = struct.Struct("<HHIIHH")

ContainerLike = Union[Container, bytes, bytearray, memoryview]


def quantize(samples: np.ndarray, bit_depth: int) -> bytes:
    """Quantize float samples to little-endian PCM bytes.

    Samples are clamped to [-1, 1] first and rounded half up. 8-bit output is
    unsigned with silence at 127, not 128, to stay byte compatible with
    recordings made by the browser client.

    Args:
        samples: Float samples in any shape; flattened in C order
        bit_depth: 8, 16 or 24

    Returns:
        Raw PCM bytes

    Raises:
        EncodeError: If the bit depth is not supported
    """
    if bit_depth not in SUPPORTED_BIT_DEPTHS:
        raise EncodeError(f"Unsupported bit depth: {bit_depth} (expected one of {SUPPORTED_BIT_DEPTHS})")

    clamped = np.clip(np.asarray(samples, dtype=np.float64).reshape(-1), -1.0, 1.0)

    if bit_depth == 8:
        return np.floor((clamped + 1.0) * 127 + 0.5).astype(np.uint8).tobytes()
    if bit_depth == 16:
        return np.floor(clamped * 32767 + 0.5).astype("<i2").tobytes()

    # 24-bit: keep the low three bytes of each little-endian int32
    ints = np.floor(clamped * 8388607 + 0.5).astype("<i4")
    return ints.view(np.uint8).reshape(-1, 4)[:, :3].tobytes()


def dequantize(payload: bytes, bit_depth: int) -> np.ndarray:
    """Convert little-endian PCM bytes back to float samples in [-1, 1]."""
    if bit_depth == 8:
        values = np.frombuffer(payload, dtype=np.uint8).astype(np.float64) / 127 - 1.0
    elif bit_depth == 16:
        values = np.frombuffer(payload, dtype="<i2").astype(np.float64) / 32767
    elif bit_depth == 24:
        raw = np.frombuffer(payload, dtype=np.uint8).reshape(-1, 3).astype(np.int32)
        ints = raw[:, 0] | (raw[:, 1] << 8) | (raw[:, 2] << 16)
        # Sign-extend from bit 23
        ints = np.where(ints & 0x800000, ints - 0x1000000, ints)
        values = ints.astype(np.float64) / 8388607
    else:
        raise DecodeError(DecodeFailure.UNSUPPORTED_BIT_DEPTH, f"{bit_depth}-bit PCM is not supported")
    return np.clip(values, -1.0, 1.0).astype(np.float32)


def to_pcm_bytes(buffer: SampleBuffer, audio_format: AudioFormat) -> bytes:
    """Encode a buffer to payload bytes only, without a container header.

    Uses ``min(buffer.channel_count, audio_format.channel_count)`` channels;
    extra source channels are dropped.
    """
    channels = min(buffer.channel_count, audio_format.channel_count)
    frames = buffer.frames()[:, :channels]
    return quantize(frames, audio_format.bit_depth)


def encode(buffer: SampleBuffer, audio_format: AudioFormat) -> Container:
    """Encode a sample buffer into a RIFF/WAVE container.

    Args:
        buffer: Interleaved float samples
        audio_format: Target sample rate, bit depth and maximum channel count

    Returns:
        Container with a 44-byte header followed by the PCM payload

    Raises:
        EncodeError: If the bit depth is not 8, 16 or 24
    """
    if audio_format.bit_depth not in SUPPORTED_BIT_DEPTHS:
        raise EncodeError(f"Unsupported bit depth: {audio_format.bit_depth}")

    channels = min(buffer.channel_count, audio_format.channel_count)
    effective = audio_format.with_channels(channels)
    payload = to_pcm_bytes(buffer, effective)

    header = _HEADER.pack(
        b"RIFF",
        HEADER_SIZE - 8 + len(payload),
        b"WAVE",
        b"fmt ",
        FMT_CHUNK_SIZE,
        PCM_FORMAT_CODE,
        channels,
        effective.sample_rate,
        effective.byte_rate,
        effective.block_align,
        effective.bit_depth,
        b"data",
        len(payload),
    )
    logger.debug(f"Encoded {buffer.frame_count} frames as {effective} ({len(payload)} payload bytes)")
    return Container(header + payload)


def _iter_chunks(data: bytes) -> Iterator[Tuple[bytes, int, int]]:
    """Yield (tag, body_offset, body_size) for each chunk after the RIFF preamble.

    Stops when the declared RIFF size or the buffer is exhausted.
    """
    if len(data) < 12 or data[0:4] != b"RIFF" or data[8:12] != b"WAVE":
        raise DecodeError(DecodeFailure.MALFORMED_CONTAINER, "missing RIFF/WAVE preamble")

    riff_size = struct.unpack_from("<I", data, 4)[0]
    end = min(len(data), 8 + riff_size)
    offset = 12

    while offset + _CHUNK_HEADER.size <= end:
        tag, size = _CHUNK_HEADER.unpack_from(data, offset)
        yield tag, offset + _CHUNK_HEADER.size, size
        offset += _CHUNK_HEADER.size + size


def _parse_fmt(data: bytes, body: int, size: int) -> AudioFormat:
    if size < FMT_CHUNK_SIZE or body + FMT_CHUNK_SIZE > len(data):
        raise DecodeError(DecodeFailure.MALFORMED_CONTAINER, f"fmt chunk too short ({size} bytes)")

    format_code, channels, sample_rate, _byte_rate, _block_align, bit_depth = _FMT_BODY.unpack_from(data, body)
    if format_code != PCM_FORMAT_CODE:
        raise DecodeError(DecodeFailure.MALFORMED_CONTAINER, f"format code {format_code} is not linear PCM")
    if bit_depth not in SUPPORTED_BIT_DEPTHS:
        raise DecodeError(DecodeFailure.UNSUPPORTED_BIT_DEPTH, f"{bit_depth}-bit PCM is not supported")

    try:
        return AudioFormat(sample_rate=sample_rate, bit_depth=bit_depth, channel_count=channels)
    except ValueError as e:
        raise DecodeError(DecodeFailure.MALFORMED_CONTAINER, str(e)) from e


def _payload_slice(data: bytes, body: int, size: int) -> bytes:
    if body + size > len(data):
        raise DecodeError(
            DecodeFailure.MALFORMED_CONTAINER,
            f"data chunk declares {size} bytes but only {len(data) - body} remain",
        )
    return data[body:body + size]


def read_format(container: ContainerLike) -> AudioFormat:
    """Read only the fmt chunk of a container."""
    data = bytes(container)
    for tag, body, size in _iter_chunks(data):
        if tag == b"fmt ":
            return _parse_fmt(data, body, size)
    raise DecodeError(DecodeFailure.MALFORMED_CONTAINER, "fmt chunk not found")


def extract_payload_bytes(container: ContainerLike) -> bytes:
    """Return the raw payload of the data chunk without dequantizing it."""
    data = bytes(container)
    for tag, body, size in _iter_chunks(data):
        if tag == b"data":
            return _payload_slice(data, body, size)
    raise DecodeError(DecodeFailure.MALFORMED_CONTAINER, "data chunk not found")


def decode(container: ContainerLike) -> Tuple[SampleBuffer, AudioFormat]:
    """Decode a RIFF/WAVE container into float samples and its format.

    Chunks other than fmt and data (LIST, fact, ...) are skipped by their
    declared length.

    Raises:
        DecodeError: MALFORMED_CONTAINER if the preamble, fmt chunk or data
            chunk is missing or inconsistent; UNSUPPORTED_BIT_DEPTH for
            depths other than 8, 16 and 24
    """
    data = bytes(container)
    audio_format = None

    for tag, body, size in _iter_chunks(data):
        if tag == b"fmt ":
            audio_format = _parse_fmt(data, body, size)
        elif tag == b"data":
            if audio_format is None:
                raise DecodeError(DecodeFailure.MALFORMED_CONTAINER, "data chunk precedes fmt chunk")
            payload = _payload_slice(data, body, size)
            usable = len(payload) - len(payload) % audio_format.block_align
            if usable != len(payload):
                logger.debug(f"Dropping {len(payload) - usable} bytes of trailing partial frame")
            samples = dequantize(payload[:usable], audio_format.bit_depth)
            return SampleBuffer(samples, audio_format.channel_count), audio_format
        else:
            logger.debug(f"Skipping {tag!r} chunk ({size} bytes)")

    raise DecodeError(DecodeFailure.MALFORMED_CONTAINER, "data chunk not found")
