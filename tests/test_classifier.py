import json

import pytest
import requests

from sentryguard.audio.capture_engine import AudioSnapshot
from sentryguard.system.classifier import GeminiClassifier, parse_verdict
from sentryguard.system.detection_scorer import AlertCategory
from sentryguard.utils.errors import ClassifierError, ClassifierRateLimited

from tests.conftest import FakeResponse, FakeSession

AUDIO = AudioSnapshot(wav=b"RIFF" + b"\x00" * 2000, sample_rate=8000, num_samples=1000, captured_at=0.0)


def gemini_body(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def test_parse_verdict_strips_code_fences():
    verdict = parse_verdict('```json\n{"category": "FIRE_ALARM", "description": "beeping", "confidence": 0.8}\n```')
    assert verdict.category is AlertCategory.MECHANICAL
    assert verdict.description == "beeping"
    assert verdict.confidence == 0.8


def test_parse_false_alarm():
    verdict = parse_verdict('{"category": "FALSE_ALARM", "description": "tv"}')
    assert verdict.is_false_alarm


@pytest.mark.parametrize("text", ["not json", "[1, 2]", '{"category": "EXPLOSION"}'])
def test_parse_rejects_bad_answers(text):
    with pytest.raises(ClassifierError):
        parse_verdict(text)


def test_analyze_sends_image_and_audio():
    answer = json.dumps({"category": "SCREAM", "description": "help", "confidence": 0.7})
    session = FakeSession([FakeResponse(200, gemini_body(answer))])
    verdict = GeminiClassifier(api_key="k", session=session).analyze(b"jpeg", AUDIO, "lobby")
    assert verdict.category is AlertCategory.VOCAL
    call = session.calls[0]
    assert call["params"] == {"key": "k"}
    parts = call["json"]["contents"][0]["parts"]
    assert [p["inline_data"]["mime_type"] for p in parts[:2]] == ["image/jpeg", "audio/wav"]
    assert "lobby" in parts[2]["text"]


def test_small_audio_is_not_sent():
    tiny = AudioSnapshot(wav=b"RIFF", sample_rate=8000, num_samples=0, captured_at=0.0)
    session = FakeSession([FakeResponse(200, gemini_body('{"category": "FALSE_ALARM"}'))])
    GeminiClassifier(api_key="k", session=session).analyze(b"jpeg", tiny, "lobby")
    parts = session.calls[0]["json"]["contents"][0]["parts"]
    assert len(parts) == 2


def test_rate_limit_is_distinct():
    session = FakeSession([FakeResponse(429, None, text="RESOURCE_EXHAUSTED")])
    with pytest.raises(ClassifierRateLimited):
        GeminiClassifier(api_key="k", session=session).analyze(b"jpeg", AUDIO, "lobby")


@pytest.mark.parametrize(
    "outcome",
    [
        requests.ConnectionError("offline"),
        FakeResponse(500, None, text="boom"),
        FakeResponse(200, {"candidates": []}),
        FakeResponse(200, gemini_body("")),
    ],
)
def test_failures_become_classifier_error(outcome):
    session = FakeSession([outcome])
    with pytest.raises(ClassifierError):
        GeminiClassifier(api_key="k", session=session).analyze(b"jpeg", AUDIO, "lobby")


def test_missing_key_is_classifier_error():
    with pytest.raises(ClassifierError):
        GeminiClassifier(api_key="", session=FakeSession([])).analyze(b"jpeg", AUDIO, "lobby")
