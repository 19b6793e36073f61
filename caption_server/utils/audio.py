from typing import Union

import numpy as np

BYTES_PER_SAMPLE = 2  # PCM16

PCMInput = Union[bytes, bytearray, memoryview, np.ndarray]


def pcm16_bytes(samples: PCMInput) -> bytes:
    """Normalize a frame payload (bytes or int16 array) into little-endian bytes."""
    if isinstance(samples, np.ndarray):
        return samples.astype("<i2", copy=False).tobytes()
    return bytes(samples)


def pcm16_to_int16(pcm_bytes: bytes) -> np.ndarray:
    """PCM16 bytes → int16 numpy array"""
    usable = len(pcm_bytes) - (len(pcm_bytes) % BYTES_PER_SAMPLE)
    return np.frombuffer(pcm_bytes[:usable], dtype="<i2")


def sample_count(byte_length: int) -> int:
    return byte_length // BYTES_PER_SAMPLE


def mean_abs_amplitude(pcm_bytes: bytes) -> float:
    """Mean absolute amplitude of PCM16 bytes, in raw int16 units."""
    samples = pcm16_to_int16(pcm_bytes)
    if samples.size == 0:
        return 0.0
    return float(np.mean(np.abs(samples.astype(np.int32))))
