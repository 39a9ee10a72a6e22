"""Utility helpers shared by multiple SentryGuard subsystems."""
from __future__ import annotations

from pathlib import Path
from typing import Tuple

import numpy as np
import soundfile as sf


FloatArray = np.ndarray


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def ensure_mono(signal: FloatArray) -> FloatArray:
    """Ensure waveform is mono by averaging channels if necessary."""
    if signal.ndim == 1:
        return signal
    return signal.mean(axis=1)


def load_audio(path: str | Path) -> Tuple[FloatArray, int]:
    """Load an audio file as mono float32 at its native rate."""
    data, sr = sf.read(str(path), dtype="float32", always_2d=False)
    return ensure_mono(data).astype(np.float32), int(sr)


def normalize_signal(signal: FloatArray, peak: float = 1.0) -> FloatArray:
    """Scale signal so its absolute peak equals *peak*."""
    max_val = np.max(np.abs(signal)) + 1e-10
    return signal / max_val * peak
