import asyncio
from typing import Any, Dict, List, Optional

import numpy as np
import pytest
import requests

from sentryguard.audio.capture_engine import AudioCaptureEngine
from sentryguard.audio.mic_stream import ArraySource
from sentryguard.system.alert_orchestrator import AlertOrchestrator
from sentryguard.system.classifier import ClassifierVerdict
from sentryguard.system.report_dispatcher import ReportPayload
from sentryguard.utils.config import Config, ConfigStore
from sentryguard.utils.constants import AudioConstants, CycleConstants
from sentryguard.utils.errors import DeliveryFailed

SAMPLE_RATE = 8000

FAST_AUDIO = AudioConstants(sample_rate=SAMPLE_RATE, window_seconds=0.5)
FAST_CYCLE = CycleConstants(
    step_count=5,
    dwell_s=0.0,
    cycle_interval_s=0.001,
    emergency_interval_s=0.01,
    rate_limit_cooldown_s=0.001,
    false_alarm_delay_s=0.001,
    heartbeat_poll_s=0.01,
    restart_capture_delay_s=0.001,
    reload_delay_s=0.001,
)


class FakeImageSource:
    def __init__(self, image: Optional[bytes] = b"\xff\xd8jpeg\xff\xd9") -> None:
        self.image = image
        self.calls = 0

    def capture(self) -> Optional[bytes]:
        self.calls += 1
        return self.image


class FakeDispatcher:
    """Records payloads; optional scripted responses and a gate to hold uploads in flight."""

    def __init__(self, responses: Optional[List[Any]] = None, configured: bool = True) -> None:
        self.payloads: List[ReportPayload] = []
        self.responses = list(responses or [])
        self.configured = configured
        self.gate: Optional[asyncio.Event] = None
        self.entered: Optional[asyncio.Event] = None

    async def deliver(self, payload: ReportPayload, max_retries: Optional[int] = None, token=None) -> Dict[str, Any]:
        self.payloads.append(payload)
        if self.entered is not None:
            self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        response = self.responses.pop(0) if self.responses else {}
        if isinstance(response, Exception):
            raise response
        return response


class FakeClassifier:
    def __init__(self, outcome: Any) -> None:
        self.outcome = outcome
        self.calls = []

    def analyze(self, image, audio, location) -> ClassifierVerdict:
        self.calls.append((image, audio, location))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, text: Optional[str] = None) -> None:
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else ("" if body is None else str(body))

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def raise_for_status(self) -> None:
        if not self.ok:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("no JSON body")
        return self._body


class FakeSession:
    """Stands in for requests.Session; each post pops the next scripted outcome."""

    def __init__(self, outcomes: List[Any]) -> None:
        self.outcomes = list(outcomes)
        self.calls: List[Dict[str, Any]] = []

    def post(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def delivery_failed() -> DeliveryFailed:
    return DeliveryFailed("simulated", attempts=3)


@pytest.fixture
def config_store() -> ConfigStore:
    return ConfigStore(Config(sensitivity=70, webhook_url="http://hook.local/report", location_name="lobby"))


@pytest.fixture
def running_engine() -> AudioCaptureEngine:
    engine = AudioCaptureEngine(FAST_AUDIO)
    engine.initialize(ArraySource(np.zeros(SAMPLE_RATE // 4, dtype=np.float32), sample_rate=SAMPLE_RATE))
    yield engine
    engine.shutdown()


def make_orchestrator(engine, config_store, dispatcher=None, classifier=None, image_source=None, **kwargs):
    return AlertOrchestrator(
        engine,
        image_source or FakeImageSource(),
        dispatcher or FakeDispatcher(),
        config_store,
        classifier=classifier,
        params=kwargs.pop("params", FAST_CYCLE),
        **kwargs,
    )
