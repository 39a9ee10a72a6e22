"""Dual accumulator trigger that turns per-tick metrics into detection events."""
from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Optional

from sentryguard.audio.spectrum import DetectionMetrics
from sentryguard.utils.constants import DETECTION, DetectionConstants
from sentryguard.utils.helpers import clamp


class AlertCategory(str, enum.Enum):
    MECHANICAL = "FIRE_ALARM"
    VOCAL = "SCREAM"


@dataclass(frozen=True)
class DetectionEvent:
    category: AlertCategory
    detected_at: float = field(default_factory=time.time)


@dataclass
class DetectionScorer:
    """
    Two bounded scores with hysteresis.

    A loud tick feeds the mechanical score when the band is tonal and the
    vocal score otherwise; a quiet tick decays each by its own configured
    rate (``mechanical_decay`` and ``vocal_decay``). When both saturate on
    the same tick the mechanical category wins.
    """

    params: DetectionConstants = DETECTION
    fire_score: float = 0.0
    scream_score: float = 0.0

    def tick(self, metrics: DetectionMetrics, sensitivity: float) -> Optional[DetectionEvent]:
        p = self.params
        threshold = 100.0 - sensitivity
        if metrics.volume > threshold:
            if metrics.tonality > p.tonality_threshold:
                self.fire_score += p.mechanical_gain
                self.scream_score -= p.cross_suppression
            else:
                self.scream_score += p.vocal_gain
                self.fire_score -= p.cross_suppression
        else:
            self.fire_score -= p.mechanical_decay
            self.scream_score -= p.vocal_decay

        self.fire_score = clamp(self.fire_score, 0.0, p.saturation)
        self.scream_score = clamp(self.scream_score, 0.0, p.saturation)

        if self.fire_score >= p.saturation:
            self.fire_score = 0.0
            return DetectionEvent(AlertCategory.MECHANICAL)
        if self.scream_score >= p.saturation:
            self.scream_score = 0.0
            return DetectionEvent(AlertCategory.VOCAL)
        return None

    def reset(self) -> None:
        self.fire_score = 0.0
        self.scream_score = 0.0
