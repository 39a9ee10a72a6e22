import numpy as np

from sentryguard.simulation.event_player import SCENARIOS, EventPlayer, replay_detections
from sentryguard.system.detection_scorer import AlertCategory

SR = 16000


def test_scenario_timeline_shape():
    player = EventPlayer(SCENARIOS["fire_alarm"], sample_rate=SR, seed=1)
    assert len(player.timeline) == int(SCENARIOS["fire_alarm"].length_s * SR)
    assert np.max(np.abs(player.timeline)) <= 1.0
    assert player.event_schedule() == {"fire_alarm": [3.0]}


def test_quiet_scenario_never_triggers():
    player = EventPlayer(SCENARIOS["quiet"], sample_rate=SR, seed=2)
    assert replay_detections(player.timeline, SR) == []


def test_scream_scenario_triggers_vocal():
    player = EventPlayer(SCENARIOS["scream"], sample_rate=SR, seed=3)
    detections = replay_detections(player.timeline, SR)
    assert detections
    when, category = detections[0]
    assert category is AlertCategory.VOCAL
    assert 2.0 <= when <= 6.0
