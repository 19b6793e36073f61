"""Canonical PCM16 WAV container encoding."""

from __future__ import annotations

import struct
from pathlib import Path
from typing import Tuple

from caption_server.utils.logger import LOGGER

BITS_PER_SAMPLE = 16
WAV_HEADER_BYTES = 44

_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


def encode_wav(pcm: bytes, sample_rate: int, channel_count: int) -> bytes:
    """Wrap raw little-endian PCM16 in a 44-byte RIFF/WAVE header."""
    block_align = channel_count * (BITS_PER_SAMPLE // 8)
    byte_rate = sample_rate * block_align
    data_size = len(pcm)
    header = _HEADER.pack(
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        16,
        1,
        channel_count,
        sample_rate,
        byte_rate,
        block_align,
        BITS_PER_SAMPLE,
        b"data",
        data_size,
    )
    return header + bytes(pcm)


def decode_wav(container: bytes) -> Tuple[bytes, int, int]:
    """Return ``(pcm, sample_rate, channel_count)`` from a canonical container."""
    if len(container) < WAV_HEADER_BYTES:
        raise ValueError("container shorter than WAV header")
    (
        riff,
        _riff_size,
        wave,
        fmt,
        _fmt_size,
        audio_format,
        channel_count,
        sample_rate,
        _byte_rate,
        _block_align,
        bits,
        data_tag,
        data_size,
    ) = _HEADER.unpack_from(container, 0)
    if riff != b"RIFF" or wave != b"WAVE" or fmt != b"fmt " or data_tag != b"data":
        raise ValueError("not a canonical WAV container")
    if audio_format != 1 or bits != BITS_PER_SAMPLE:
        raise ValueError("unsupported WAV sample format")
    pcm = container[WAV_HEADER_BYTES : WAV_HEADER_BYTES + data_size]
    return pcm, sample_rate, channel_count


def write_temp_wav(
    directory: Path, stem: str, pcm: bytes, sample_rate: int, channel_count: int
) -> Path:
    path = directory / f"{stem}.wav"
    path.write_bytes(encode_wav(pcm, sample_rate, channel_count))
    return path


def discard_file(path: Path) -> None:
    """Best-effort removal; failures are logged and ignored."""
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        LOGGER.debug("Could not remove temp file %s: %s", path, exc)


__all__ = [
    "BITS_PER_SAMPLE",
    "WAV_HEADER_BYTES",
    "decode_wav",
    "discard_file",
    "encode_wav",
    "write_temp_wav",
]
