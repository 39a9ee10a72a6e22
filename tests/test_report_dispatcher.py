import asyncio

import pytest
import requests

from sentryguard.system.alert_orchestrator import CancellationToken
from sentryguard.system.report_dispatcher import ReportDispatcher, ReportPayload
from sentryguard.utils.constants import NetworkConstants
from sentryguard.utils.errors import DeliveryFailed

from tests.conftest import FakeResponse, FakeSession

PAYLOAD = ReportPayload(
    image=b"jpeg",
    audio=b"RIFFwav",
    alert_type="FIRE_ALARM",
    location_name="lobby",
    description="beeping",
    cycle_step=2,
)


def make_dispatcher(config_store, outcomes):
    delays = []

    async def record_sleep(delay):
        delays.append(delay)

    session = FakeSession(outcomes)
    return ReportDispatcher(config_store, session=session, sleep=record_sleep), session, delays


def test_two_failures_then_success(config_store):
    dispatcher, session, delays = make_dispatcher(
        config_store,
        [requests.ConnectionError("down"), FakeResponse(503), FakeResponse(200, {"sensitivity": 50})],
    )
    body = asyncio.run(dispatcher.deliver(PAYLOAD))
    assert body == {"sensitivity": 50}
    assert len(session.calls) == 3
    assert delays == [1.0, 2.0]


def test_three_failures_raise_delivery_failed(config_store):
    dispatcher, session, delays = make_dispatcher(
        config_store,
        [requests.Timeout("slow"), FakeResponse(500), requests.ConnectionError("down")],
    )
    with pytest.raises(DeliveryFailed) as info:
        asyncio.run(dispatcher.deliver(PAYLOAD, max_retries=3))
    assert info.value.attempts == 3
    assert len(session.calls) == 3
    assert delays == [1.0, 2.0, 4.0]


@pytest.mark.parametrize("response", [FakeResponse(200, None, text=""), FakeResponse(200, None, text="<html>"), FakeResponse(200, [1, 2])])
def test_unparseable_body_is_empty_object(config_store, response):
    dispatcher, _, _ = make_dispatcher(config_store, [response])
    assert asyncio.run(dispatcher.deliver(PAYLOAD)) == {}


def test_multipart_fields(config_store):
    dispatcher, session, _ = make_dispatcher(config_store, [FakeResponse(200, {})])
    asyncio.run(dispatcher.deliver(PAYLOAD))
    call = session.calls[0]
    assert call["url"] == "http://hook.local/report"
    assert call["data"] == {
        "alert_type": "FIRE_ALARM",
        "location_name": "lobby",
        "description": "beeping",
        "cycle_step": "2",
    }
    assert call["files"]["data"][1] == b"jpeg"
    assert call["files"]["audio"] == ("report.wav", b"RIFFwav", "audio/wav")


def test_audio_field_is_optional(config_store):
    dispatcher, session, _ = make_dispatcher(config_store, [FakeResponse(200, {})])
    payload = ReportPayload(b"jpeg", None, "SCREAM", "lobby", "", 1)
    asyncio.run(dispatcher.deliver(payload))
    assert set(session.calls[0]["files"]) == {"data"}


def test_webhook_url_read_per_delivery(config_store):
    dispatcher, session, _ = make_dispatcher(config_store, [FakeResponse(200, {}), FakeResponse(200, {})])
    asyncio.run(dispatcher.deliver(PAYLOAD))
    config_store.update(webhook_url="http://other.local/hook")
    asyncio.run(dispatcher.deliver(PAYLOAD))
    assert [c["url"] for c in session.calls] == ["http://hook.local/report", "http://other.local/hook"]


def test_missing_webhook_fails_without_attempts(config_store):
    config_store.update(webhook_url="")
    dispatcher, session, _ = make_dispatcher(config_store, [])
    assert not dispatcher.configured
    with pytest.raises(DeliveryFailed):
        asyncio.run(dispatcher.deliver(PAYLOAD))
    assert session.calls == []


def test_cancelled_token_sends_nothing(config_store):
    dispatcher, session, _ = make_dispatcher(config_store, [FakeResponse(200, {})])
    token = CancellationToken()
    token.cancel()
    with pytest.raises(DeliveryFailed) as info:
        asyncio.run(dispatcher.deliver(PAYLOAD, token=token))
    assert info.value.cancelled
    assert session.calls == []


def test_cancel_during_backoff_stops_retries(config_store):
    session = FakeSession([requests.ConnectionError("down") for _ in range(3)])
    dispatcher = ReportDispatcher(config_store, params=NetworkConstants(backoff_base_s=30.0), session=session)

    async def scenario():
        token = CancellationToken()
        task = asyncio.create_task(dispatcher.deliver(PAYLOAD, token=token))
        while not session.calls:
            await asyncio.sleep(0.001)
        token.cancel()
        return await asyncio.wait_for(task, timeout=2.0)

    with pytest.raises(DeliveryFailed) as info:
        asyncio.run(scenario())
    assert info.value.cancelled
    assert info.value.attempts == 1
    assert len(session.calls) == 1
