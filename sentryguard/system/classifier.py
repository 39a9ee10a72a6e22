"""External verdict on a suspected event, from image and pre-trigger audio."""
from __future__ import annotations

import base64
import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import requests
from dotenv import load_dotenv

from sentryguard.audio.capture_engine import AudioSnapshot
from sentryguard.system.detection_scorer import AlertCategory
from sentryguard.utils.constants import NETWORK, NetworkConstants
from sentryguard.utils.errors import ClassifierError, ClassifierRateLimited

logger = logging.getLogger(__name__)

FALSE_ALARM = "FALSE_ALARM"
API_KEY_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY")
ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

SYSTEM_INSTRUCTION = """\
You are an acoustic event analyst for an emergency monitoring station. You receive
a recording of the seconds before a local trigger fired and a still image of the scene.
Decide whether an extremely dangerous event is happening.

Rules:
1. Sound has priority. The camera often has blind spots; if the audio clearly shows
   danger, report it even when the picture looks calm.
2. Rejecting false positives matters. Dogs, playing children, car horns and
   construction noise are not emergencies.
3. Categories:
   - FIRE_ALARM: mechanical, repetitive, high-pitched sound with temporal regularity:
     beep-beep-beep patterns, sustained high tones, evacuation announcements.
     Not reversing sensors, microwaves, ringtones or car alarms that sweep in volume.
   - SCREAM: a human voice in extreme fear or pain, cries for help, out-of-control
     shrieking. Not children playing, heated but coherent arguments, or barking.
   - FALSE_ALARM: everything else, including TV, power tools, dropped objects,
     normal conversation and laughter.

Answer with a JSON object: {"category": "FIRE_ALARM" | "SCREAM" | "FALSE_ALARM",
"description": "<one sentence>", "confidence": <0..1>}.
"""

PROMPT = """\
Location: "{location}".
Work through these steps before answering:
1. Is the sound a regular mechanical tone or an irregular biological sound? Is there an alarm rhythm?
2. If there is a voice, is it calling for help or is it ordinary talk or arguing?
3. Does the image show flames, smoke or a person on the ground? If not, rely on the audio.
4. Could this be a TV, a dog or children playing?
Then output the final JSON.
"""

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


@dataclass(frozen=True)
class ClassifierVerdict:
    category: Optional[AlertCategory]  # None means false alarm
    description: str
    confidence: float = 0.0

    @property
    def is_false_alarm(self) -> bool:
        return self.category is None


class Classifier(Protocol):
    def analyze(
        self, image: Optional[bytes], audio: Optional[AudioSnapshot], location: str
    ) -> ClassifierVerdict:
        """Raise ClassifierRateLimited on quota refusal, ClassifierError on anything else."""


def parse_verdict(text: str) -> ClassifierVerdict:
    cleaned = _FENCE.sub("", text).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ClassifierError(f"classifier returned non-JSON text: {cleaned[:100]!r}") from e
    if not isinstance(data, dict):
        raise ClassifierError("classifier returned a non-object JSON value")

    raw = str(data.get("category", "")).upper()
    if raw == FALSE_ALARM:
        category = None
    else:
        try:
            category = AlertCategory(raw)
        except ValueError as e:
            raise ClassifierError(f"unknown category {raw!r}") from e
    try:
        confidence = float(data.get("confidence", 0.0))
    except (TypeError, ValueError):
        confidence = 0.0
    return ClassifierVerdict(category, str(data.get("description", "")), confidence)


def resolve_api_key() -> Optional[str]:
    load_dotenv(override=False)
    for name in API_KEY_VARS:
        value = os.environ.get(name)
        if value:
            return value
    return None


class GeminiClassifier:
    """Gemini ``generateContent`` over plain HTTPS."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        params: NetworkConstants = NETWORK,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else resolve_api_key()
        self.params = params
        self.session = session or requests.Session()

    def _payload(self, image: Optional[bytes], audio: Optional[AudioSnapshot], location: str) -> Dict[str, Any]:
        parts = []
        if image:
            parts.append({"inline_data": {"mime_type": "image/jpeg", "data": base64.b64encode(image).decode("ascii")}})
        if audio is not None and len(audio.wav) > self.params.classifier_min_audio_bytes:
            parts.append({"inline_data": {"mime_type": "audio/wav", "data": base64.b64encode(audio.wav).decode("ascii")}})
        parts.append({"text": PROMPT.format(location=location)})
        return {
            "system_instruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
            "contents": [{"parts": parts}],
            "generationConfig": {"responseMimeType": "application/json", "temperature": 0.1, "topK": 1},
        }

    def analyze(
        self, image: Optional[bytes], audio: Optional[AudioSnapshot], location: str
    ) -> ClassifierVerdict:
        if not self.api_key:
            raise ClassifierError("no classifier API key in the environment")
        if not image and audio is None:
            raise ClassifierError("nothing to analyze: no image and no audio")

        url = ENDPOINT.format(model=self.params.classifier_model)
        try:
            r = self.session.post(
                url,
                params={"key": self.api_key},
                json=self._payload(image, audio, location),
                timeout=self.params.timeout_s,
            )
        except requests.RequestException as e:
            raise ClassifierError(f"classifier request failed: {e}") from e

        if r.status_code == 429 or "RESOURCE_EXHAUSTED" in r.text:
            raise ClassifierRateLimited("classifier quota exhausted (429)")
        if not r.ok:
            raise ClassifierError(f"classifier HTTP {r.status_code}: {r.text[:100]}")

        try:
            data = r.json()
            # Gemini returns candidates -> content -> parts[0].text
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ClassifierError("unexpected classifier response shape") from e
        if not text:
            raise ClassifierError("classifier returned an empty answer")

        verdict = parse_verdict(text)
        logger.info(
            "Classifier verdict: %s (%.2f) %s",
            verdict.category.value if verdict.category else FALSE_ALARM,
            verdict.confidence,
            verdict.description,
        )
        return verdict
