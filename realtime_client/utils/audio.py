"""
PCM16 codec and merge helpers.

The realtime protocol carries mono PCM16 little-endian audio as base64 text.
Locally, audio is held as ``array('h')`` sample sequences so that sample
counts map directly onto timestamps at ``DEFAULT_SAMPLE_RATE``.
"""

import base64
import sys
from array import array
from typing import Iterable, Union

# Must match the PCM rate declared by the protocol for pcm16 audio formats
DEFAULT_SAMPLE_RATE = 24000

SampleInput = Union[bytes, bytearray, memoryview, array, Iterable[int]]


def samples_from_bytes(data: Union[bytes, bytearray, memoryview]) -> array:
    """
    Interpret raw PCM16 little-endian bytes as a sample array.

    Raises:
        ValueError: If the byte length is not a whole number of samples
    """
    samples = array("h")
    samples.frombytes(bytes(data))
    if sys.byteorder == "big":
        samples.byteswap()
    return samples


def samples_to_bytes(samples: array) -> bytes:
    """Serialize a sample array to PCM16 little-endian bytes."""
    if sys.byteorder == "big":
        swapped = array("h", samples)
        swapped.byteswap()
        return swapped.tobytes()
    return samples.tobytes()


def float_to_16bit_pcm(values: Iterable[float]) -> array:
    """Convert float amplitudes in [-1.0, 1.0] to PCM16, clipping out-of-range values."""
    out = array("h")
    for value in values:
        clipped = max(-1.0, min(1.0, float(value)))
        out.append(int(clipped * 0x8000) if clipped < 0 else int(clipped * 0x7FFF))
    return out


def as_samples(data: SampleInput) -> array:
    """
    Coerce supported audio inputs into a new ``array('h')``.

    Accepts raw bytes-like PCM16, an existing ``array('h')``, an ``array('f')``
    of float amplitudes or any iterable of ints/floats.
    """
    if isinstance(data, (bytes, bytearray, memoryview)):
        return samples_from_bytes(data)
    if isinstance(data, array):
        if data.typecode == "h":
            return array("h", data)
        if data.typecode in ("f", "d"):
            return float_to_16bit_pcm(data)
        return array("h", (int(v) for v in data))
    values = list(data)
    if any(isinstance(v, float) for v in values):
        return float_to_16bit_pcm(values)
    return array("h", values)


def array_buffer_to_base64(data: SampleInput) -> str:
    """Encode audio (bytes or samples) as base64 PCM16 text."""
    if isinstance(data, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(data)).decode("utf-8")
    return base64.b64encode(samples_to_bytes(as_samples(data))).decode("utf-8")


def base64_to_array_buffer(encoded: str) -> bytes:
    """Decode base64 text into raw bytes."""
    return base64.b64decode(encoded)


def base64_to_samples(encoded: str) -> array:
    """Decode base64 PCM16 text into a sample array."""
    return samples_from_bytes(base64_to_array_buffer(encoded))


def merge_int16_arrays(left: SampleInput, right: SampleInput) -> array:
    """Return a new sample array holding ``left`` followed by ``right``."""
    merged = as_samples(left)
    merged.extend(as_samples(right))
    return merged


def ms_to_sample_index(ms: int, sample_rate: int = DEFAULT_SAMPLE_RATE) -> int:
    """Sample offset for a millisecond timestamp, floored."""
    return (int(ms) * sample_rate) // 1000


def samples_to_ms(sample_count: int, sample_rate: int = DEFAULT_SAMPLE_RATE) -> int:
    """Millisecond timestamp reached after ``sample_count`` samples, floored."""
    return (int(sample_count) * 1000) // sample_rate
