"""Synthetic acoustic scenarios for exercising the agent without a microphone."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from sentryguard.audio.capture_engine import AudioCaptureEngine
from sentryguard.audio.mic_stream import ArraySource, MicStream
from sentryguard.system.detection_scorer import AlertCategory, DetectionScorer
from sentryguard.utils.constants import AUDIO, DETECTION, AudioConstants, DetectionConstants


@dataclass
class AudioEvent:
    label: str  # "fire_alarm" or "scream"
    start_s: float
    duration_s: float
    amplitude: float = 0.8


@dataclass
class Scenario:
    name: str
    length_s: float
    noise_level: float
    events: List[AudioEvent] = field(default_factory=list)


SCENARIOS: Dict[str, Scenario] = {
    "quiet": Scenario("quiet", length_s=20.0, noise_level=0.001),
    "fire_alarm": Scenario(
        "fire_alarm",
        length_s=30.0,
        noise_level=0.0005,
        events=[AudioEvent("fire_alarm", start_s=3.0, duration_s=20.0, amplitude=0.9)],
    ),
    "scream": Scenario(
        "scream",
        length_s=20.0,
        noise_level=0.001,
        events=[AudioEvent("scream", start_s=2.0, duration_s=4.0, amplitude=0.6)],
    ),
}


class EventPlayer:
    def __init__(self, scenario: Scenario, sample_rate: int = AUDIO.sample_rate, seed: Optional[int] = None) -> None:
        self.scenario = scenario
        self.sample_rate = sample_rate
        self._rng = np.random.default_rng(seed)
        self.timeline = self._synthesize()

    def _synthesize(self) -> np.ndarray:
        num_samples = int(self.scenario.length_s * self.sample_rate)
        timeline = self._rng.normal(scale=self.scenario.noise_level, size=num_samples).astype(np.float32)
        for event in self.scenario.events:
            start = int(event.start_s * self.sample_rate)
            length = int(event.duration_s * self.sample_rate)
            end = min(start + length, num_samples)
            timeline[start:end] += self._event_waveform(event.label, length, event.amplitude)[: end - start]
        return np.clip(timeline, -1.0, 1.0)

    def _event_waveform(self, label: str, length: int, amplitude: float) -> np.ndarray:
        t = np.arange(length) / self.sample_rate
        if label == "fire_alarm":
            # temporal-three: three 0.5 s beeps separated by 0.5 s, then 1.5 s off
            tone = np.sin(2 * np.pi * 3100.0 * t)
            phase = t % 4.0
            gate = (phase < 3.0) & ((phase % 1.0) < 0.5)
            return (amplitude * tone * gate).astype(np.float32)
        if label == "scream":
            # broadband burst with a wavering pitch contour
            noise = self._rng.uniform(-1.0, 1.0, size=length)
            pitch = 1200.0 + 300.0 * np.sin(2 * np.pi * 5.0 * t)
            voiced = np.sin(2 * np.pi * np.cumsum(pitch) / self.sample_rate)
            envelope = np.hanning(length) ** 0.25
            return (amplitude * envelope * (0.8 * noise + 0.2 * voiced)).astype(np.float32)
        raise ValueError(f"Unknown event label: {label}")

    def event_schedule(self) -> Dict[str, List[float]]:
        schedule: Dict[str, List[float]] = {}
        for event in self.scenario.events:
            schedule.setdefault(event.label, []).append(event.start_s)
        return schedule

    def source(self, realtime: bool = True, loop: bool = True) -> ArraySource:
        return ArraySource(self.timeline, sample_rate=self.sample_rate, realtime=realtime, loop=loop)


def replay_detections(
    samples: np.ndarray,
    sample_rate: int,
    sensitivity: int = 70,
    audio: AudioConstants = AUDIO,
    detection: DetectionConstants = DETECTION,
) -> List[Tuple[float, AlertCategory]]:
    """Run the engine and scorer over a recording offline, one tick per tick interval."""
    engine = AudioCaptureEngine(audio)
    scorer = DetectionScorer(detection)
    engine.initialize(ArraySource(np.zeros(0, dtype=np.float32), sample_rate=sample_rate))
    tick_samples = max(1, int(round(sample_rate * detection.tick_interval_s)))
    detections: List[Tuple[float, AlertCategory]] = []
    processed = 0
    for chunk in MicStream(sample_rate, tick_samples).from_array(samples):
        engine.ingest(chunk)
        processed += len(chunk)
        event = scorer.tick(engine.current_metrics(), sensitivity)
        if event is not None:
            detections.append((processed / sample_rate, event.category))
    engine.shutdown()
    return detections
