"""Short-time spectrum and alarm-band metrics."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from sentryguard.utils.constants import AUDIO, AudioConstants
from sentryguard.utils.helpers import clamp


@dataclass(frozen=True)
class DetectionMetrics:
    volume: float = 0.0  # 0..100
    tonality: float = 0.0  # 0..1


SILENT = DetectionMetrics()


class SpectrumAnalyser:
    """Byte-scaled magnitude spectrum with exponential time smoothing.

    Each frame windows the newest ``fft_size`` samples with a Blackman window,
    smooths the magnitudes against the previous frame and maps decibels in
    ``[min_db, max_db]`` onto ``0..255``.
    """

    def __init__(self, params: AudioConstants = AUDIO) -> None:
        self.params = params
        self.fft_size = params.fft_size
        self._window = np.blackman(self.fft_size).astype(np.float32)
        self._smoothed = np.zeros(self.fft_size // 2, dtype=np.float32)

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    def frame(self, samples: np.ndarray) -> np.ndarray:
        if len(samples) != self.fft_size:
            raise ValueError(f"expected {self.fft_size} samples, got {len(samples)}")
        spectrum = np.fft.rfft(samples.astype(np.float32) * self._window)[: self.bin_count]
        magnitude = (np.abs(spectrum) / self.fft_size).astype(np.float32)
        tau = self.params.smoothing
        self._smoothed = tau * self._smoothed + (1.0 - tau) * magnitude
        with np.errstate(divide="ignore"):
            db = 20.0 * np.log10(self._smoothed)
        span = self.params.max_db - self.params.min_db
        scaled = np.floor(255.0 / span * (db - self.params.min_db))
        return np.clip(np.nan_to_num(scaled, neginf=0.0), 0, 255).astype(np.uint8)

    def reset(self) -> None:
        self._smoothed.fill(0)


def band_metrics(
    byte_bins: Optional[np.ndarray],
    sample_rate: int,
    params: AudioConstants = AUDIO,
) -> DetectionMetrics:
    """Volume and tonality over the alarm/scream band of one analyser frame."""
    if byte_bins is None or len(byte_bins) == 0:
        return SILENT
    bin_width = sample_rate / params.fft_size
    start_bin = int(params.band_low_hz // bin_width)
    end_bin = min(int(params.band_high_hz // bin_width), len(byte_bins))
    band = byte_bins[start_bin:end_bin].astype(np.float64)
    if band.size == 0:
        return SILENT

    average = float(band.mean())
    volume = min(100.0, average / 255.0 * 100.0)

    tonality = 0.0
    if average > params.noise_floor:
        ratio = float(band.max()) / average
        low, high = params.tonality_ratio_low, params.tonality_ratio_high
        tonality = clamp((ratio - low) / (high - low), 0.0, 1.0)
    return DetectionMetrics(volume=volume, tonality=tonality)
