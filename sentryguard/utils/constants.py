"""Tuning parameters shared across SentryGuard modules.

Each group is a frozen dataclass with a module-level default instance.
Components take one of these in their constructor so tests and
deployments can swap in a different set without touching module state.
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class AudioConstants:
    sample_rate: int = 44100
    window_seconds: float = 5.0  # length of the pre-trigger evidence buffer
    block_size: int = 4096  # samples per capture callback
    fft_size: int = 512
    smoothing: float = 0.2  # analyser time smoothing, 0..1
    min_db: float = -100.0  # maps to byte 0
    max_db: float = -30.0  # maps to byte 255
    band_low_hz: float = 900.0
    band_high_hz: float = 6000.0
    noise_floor: float = 10.0  # band average (byte scale) below which tonality is 0
    tonality_ratio_low: float = 2.5
    tonality_ratio_high: float = 4.5


@dataclass(frozen=True)
class DetectionConstants:
    tick_interval_s: float = 0.1
    tonality_threshold: float = 0.4
    mechanical_gain: float = 15.0  # per loud tonal tick
    vocal_gain: float = 25.0  # per loud atonal tick
    mechanical_decay: float = 5.0  # per quiet tick
    vocal_decay: float = 2.0  # per quiet tick
    cross_suppression: float = 0.0  # subtracted from the other accumulator on a loud tick
    saturation: float = 100.0


@dataclass(frozen=True)
class CycleConstants:
    step_count: int = 5
    dwell_s: float = 4.0
    cycle_interval_s: float = 90.0
    emergency_interval_s: float = 120.0
    rate_limit_cooldown_s: float = 60.0
    false_alarm_delay_s: float = 5.0
    heartbeat_poll_s: float = 10.0
    restart_capture_delay_s: float = 1.0
    reload_delay_s: float = 2.0
    history_size: int = 256


@dataclass(frozen=True)
class NetworkConstants:
    max_retries: int = 3
    backoff_base_s: float = 1.0
    timeout_s: float = 15.0
    classifier_model: str = "gemini-2.0-flash"
    classifier_min_audio_bytes: int = 1024


AUDIO = AudioConstants()
DETECTION = DetectionConstants()
CYCLE = CycleConstants()
NETWORK = NetworkConstants()
