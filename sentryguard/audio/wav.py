"""16-bit mono PCM WAV container, written byte for byte."""
from __future__ import annotations

import struct
from typing import Tuple

import numpy as np

HEADER_SIZE = 44
BITS_PER_SAMPLE = 16
BLOCK_ALIGN = 2


def float_to_pcm16(samples: np.ndarray) -> np.ndarray:
    """Clip to [-1, 1], scale negatives by 32768 and positives by 32767, truncate."""
    s = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(s < 0, s * 0x8000, s * 0x7FFF)
    return np.trunc(scaled).astype("<i2")


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    pcm = float_to_pcm16(samples)
    data_bytes = pcm.size * BLOCK_ALIGN
    header = b"".join(
        (
            b"RIFF",
            struct.pack("<I", 36 + data_bytes),
            b"WAVE",
            b"fmt ",
            struct.pack("<IHHIIHH", 16, 1, 1, sample_rate, sample_rate * BLOCK_ALIGN, BLOCK_ALIGN, BITS_PER_SAMPLE),
            b"data",
            struct.pack("<I", data_bytes),
        )
    )
    return header + pcm.tobytes()


def decode_wav(blob: bytes) -> Tuple[np.ndarray, int]:
    """Inverse of :func:`encode_wav`. Returns float32 samples and the sample rate."""
    if len(blob) < HEADER_SIZE or blob[0:4] != b"RIFF" or blob[8:12] != b"WAVE":
        raise ValueError("not a RIFF/WAVE container")
    fmt_size, audio_format, channels, sample_rate, _, _, bits = struct.unpack_from("<IHHIIHH", blob, 16)
    if blob[12:16] != b"fmt " or fmt_size != 16 or audio_format != 1:
        raise ValueError("unsupported fmt chunk")
    if channels != 1 or bits != BITS_PER_SAMPLE:
        raise ValueError(f"expected mono 16-bit PCM, got {channels}ch/{bits}bit")
    if blob[36:40] != b"data":
        raise ValueError("missing data chunk")
    (data_bytes,) = struct.unpack_from("<I", blob, 40)
    pcm = np.frombuffer(blob, dtype="<i2", count=data_bytes // BLOCK_ALIGN, offset=HEADER_SIZE)
    samples = np.where(pcm < 0, pcm / 0x8000, pcm / 0x7FFF).astype(np.float32)
    return samples, int(sample_rate)
