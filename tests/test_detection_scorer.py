import math

import numpy as np

from sentryguard.audio.spectrum import DetectionMetrics
from sentryguard.system.detection_scorer import AlertCategory, DetectionScorer
from sentryguard.utils.constants import DETECTION, DetectionConstants

LOUD_TONAL = DetectionMetrics(volume=90.0, tonality=0.9)
LOUD_VOCAL = DetectionMetrics(volume=90.0, tonality=0.1)
QUIET = DetectionMetrics(volume=5.0, tonality=0.0)


def test_mechanical_saturates_within_expected_ticks_and_fires_once():
    scorer = DetectionScorer()
    limit = math.ceil(100 / DETECTION.mechanical_gain)
    events = [scorer.tick(LOUD_TONAL, sensitivity=70) for _ in range(limit)]
    fired = [e for e in events if e is not None]
    assert len(fired) == 1
    assert fired[0].category is AlertCategory.MECHANICAL
    assert events[-1] is fired[0]
    assert scorer.fire_score == 0.0


def test_vocal_saturation():
    scorer = DetectionScorer()
    events = [scorer.tick(LOUD_VOCAL, sensitivity=70) for _ in range(4)]
    assert events[:3] == [None, None, None]
    assert events[3].category is AlertCategory.VOCAL
    assert scorer.scream_score == 0.0


def test_volume_must_exceed_threshold():
    scorer = DetectionScorer()
    at_threshold = DetectionMetrics(volume=30.0, tonality=0.9)
    for _ in range(50):
        assert scorer.tick(at_threshold, sensitivity=70) is None
    assert scorer.fire_score == 0.0


def test_mechanical_wins_tie():
    scorer = DetectionScorer(fire_score=95.0, scream_score=100.0)
    event = scorer.tick(LOUD_TONAL, sensitivity=70)
    assert event.category is AlertCategory.MECHANICAL
    assert scorer.fire_score == 0.0
    assert scorer.scream_score == 100.0


def test_asymmetric_decay():
    scorer = DetectionScorer(fire_score=50.0, scream_score=50.0)
    scorer.tick(QUIET, sensitivity=70)
    assert scorer.fire_score == 50.0 - DETECTION.mechanical_decay
    assert scorer.scream_score == 50.0 - DETECTION.vocal_decay


def test_cross_suppression():
    scorer = DetectionScorer(DetectionConstants(cross_suppression=3.0), fire_score=10.0, scream_score=10.0)
    scorer.tick(LOUD_VOCAL, sensitivity=70)
    assert scorer.fire_score == 7.0
    assert scorer.scream_score == 35.0


def test_scores_stay_bounded_for_random_ticks():
    rng = np.random.default_rng(11)
    scorer = DetectionScorer(DetectionConstants(cross_suppression=4.0))
    for _ in range(5000):
        metrics = DetectionMetrics(volume=float(rng.uniform(0, 100)), tonality=float(rng.uniform(0, 1)))
        scorer.tick(metrics, sensitivity=int(rng.integers(10, 91)))
        assert 0.0 <= scorer.fire_score <= 100.0
        assert 0.0 <= scorer.scream_score <= 100.0


def test_reset():
    scorer = DetectionScorer(fire_score=40.0, scream_score=60.0)
    scorer.reset()
    assert (scorer.fire_score, scorer.scream_score) == (0.0, 0.0)
