"""Multipart report delivery to the webhook, with exponential backoff."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import requests

from sentryguard.utils.config import ConfigStore
from sentryguard.utils.constants import NETWORK, NetworkConstants
from sentryguard.utils.errors import DeliveryFailed

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class Cancellable(Protocol):
    @property
    def active(self) -> bool: ...

    async def sleep(self, delay: float) -> bool:
        """Return False if cancelled before *delay* elapsed."""


@dataclass(frozen=True)
class ReportPayload:
    image: Optional[bytes]
    audio: Optional[bytes]
    alert_type: str
    location_name: str
    description: str
    cycle_step: int

    def form_fields(self) -> Dict[str, str]:
        return {
            "alert_type": self.alert_type,
            "location_name": self.location_name,
            "description": self.description,
            "cycle_step": str(self.cycle_step),
        }

    def form_files(self) -> Dict[str, tuple]:
        files = {}
        if self.image is not None:
            files["data"] = ("report.jpg", self.image, "image/jpeg")
        if self.audio is not None:
            files["audio"] = ("report.wav", self.audio, "audio/wav")
        return files


def parse_response(response: requests.Response) -> Dict[str, Any]:
    """Body as a JSON object; anything else (empty, malformed, non-object) becomes {}."""
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class ReportDispatcher:
    """
    POSTs reports to the configured webhook.

    The URL is read from the ConfigStore on every delivery so that a remote
    webhook change takes effect on the next report. Each failed attempt is
    followed by a backoff of ``backoff_base * 2**attempt`` seconds; once
    ``max_retries`` attempts have failed, DeliveryFailed is raised.
    """

    def __init__(
        self,
        config: ConfigStore,
        params: NetworkConstants = NETWORK,
        session: Optional[requests.Session] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config
        self.params = params
        self.session = session or requests.Session()
        self._sleep = sleep

    @property
    def configured(self) -> bool:
        return bool(self.config.current.webhook_url)

    def _post(self, url: str, payload: ReportPayload) -> Dict[str, Any]:
        r = self.session.post(
            url,
            data=payload.form_fields(),
            files=payload.form_files() or None,
            timeout=self.params.timeout_s,
        )
        r.raise_for_status()
        return parse_response(r)

    async def _backoff(self, delay: float, token: Optional[Cancellable]) -> bool:
        if token is None:
            await self._sleep(delay)
            return True
        return await token.sleep(delay)

    async def deliver(
        self,
        payload: ReportPayload,
        max_retries: Optional[int] = None,
        token: Optional[Cancellable] = None,
    ) -> Dict[str, Any]:
        """
        Deliver one report, retrying with backoff.

        With a *token*, no attempt starts once it is cancelled and backoff
        waits wake up on cancel; DeliveryFailed is then raised with
        ``cancelled`` set.
        """
        retries = self.params.max_retries if max_retries is None else max_retries
        url = self.config.current.webhook_url
        if not url:
            raise DeliveryFailed("no webhook URL configured", attempts=0)

        last_error: Optional[Exception] = None
        for attempt in range(retries):
            if token is not None and not token.active:
                raise DeliveryFailed("delivery cancelled", attempts=attempt, cancelled=True)
            try:
                body = await asyncio.to_thread(self._post, url, payload)
            except requests.RequestException as e:
                last_error = e
                delay = self.params.backoff_base_s * (2 ** attempt)
                logger.warning(
                    "Report %s/%d attempt %d/%d failed (%s); backing off %.1fs",
                    payload.alert_type,
                    payload.cycle_step,
                    attempt + 1,
                    retries,
                    e,
                    delay,
                )
                if not await self._backoff(delay, token):
                    raise DeliveryFailed("delivery cancelled", attempts=attempt + 1, cancelled=True) from e
                continue
            logger.info("Report %s step %d delivered", payload.alert_type, payload.cycle_step)
            return body

        raise DeliveryFailed(f"delivery failed after {retries} attempts: {last_error}", attempts=retries)
