"""Server-Sent Events stream of live marketplace events"""
import json

import pytest

from core.events import EventHub
from server import marketplace_event_stream


class StubRequest:
    """Stands in for a Starlette request; disconnects after `polls` checks"""

    def __init__(self, polls: int = 100):
        self.polls = polls

    async def is_disconnected(self) -> bool:
        self.polls -= 1
        return self.polls < 0


@pytest.mark.asyncio
async def test_stream_relays_bids_and_unsubscribes():
    hub = EventHub()
    stream = marketplace_event_stream(hub, StubRequest())

    ready = await stream.__anext__()
    assert ready["event"] == "ready"
    assert hub.subscriber_count == 1

    await hub.broadcast({"type": "bid", "productId": 3, "amount": 150, "userId": 2})
    event = await stream.__anext__()
    assert event["event"] == "bid"
    assert json.loads(event["data"]) == {"type": "bid", "productId": 3, "amount": 150, "userId": 2}

    await stream.aclose()
    assert hub.subscriber_count == 0


@pytest.mark.asyncio
async def test_stream_ends_when_client_disconnects():
    hub = EventHub()
    stream = marketplace_event_stream(hub, StubRequest(polls=0), poll_seconds=0.01)

    assert (await stream.__anext__())["event"] == "ready"
    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()
    assert hub.subscriber_count == 0


def test_events_route_is_registered(app):
    assert "/api/events" in {route.path for route in app.routes}
