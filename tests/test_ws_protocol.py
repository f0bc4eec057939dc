"""Connection bookkeeping and event fan-out"""

import pytest

from core.events import EventHub
from services.ws_protocol import ConnectionRegistry, ConnectionState, split_session_prefix


def test_split_session_prefix():
    assert split_session_prefix(b"session_42:RIFFdata") == ("session_42", b"RIFFdata")
    assert split_session_prefix(b"RIFF:data") == (None, b"RIFF:data")
    assert split_session_prefix(b"session_with space:x") == (None, b"session_with space:x")


def test_rate_window_rolls_over():
    state = ConnectionState(connection_id="c1")
    assert state.allow_message(2, now=100.0)
    assert state.allow_message(2, now=101.0)
    assert not state.allow_message(2, now=102.0)
    assert state.allow_message(2, now=161.0)


def test_voice_cooldown_remaining():
    state = ConnectionState(connection_id="c1")
    state.mark_voice(now=1000.0)
    assert state.voice_cooldown_remaining(2000, now=1000.5) == pytest.approx(1.5)
    assert state.voice_cooldown_remaining(2000, now=1003.0) == 0.0


def test_pending_queue_is_bounded():
    state = ConnectionState(connection_id="c1", max_pending=2)
    first = state.track({"type": "ai_response"})
    state.track({"type": "ai_response"})
    state.track({"type": "ai_response"})
    assert len(state.pending) == 2
    assert first not in state.pending


def test_registry_resume_moves_pending_and_session():
    registry = ConnectionRegistry()
    old = registry.open()
    old.user_id = 7
    message_id = old.track({"type": "ai_response", "content": {}})
    registry.close(old.connection_id)

    new = registry.open()
    replay = registry.resume(old.connection_id, new)
    assert [m["messageId"] for m in replay] == [message_id]
    assert new.session_id == old.session_id
    assert new.user_id == 7
    assert registry.get(old.connection_id) is None
    assert registry.resume(old.connection_id, new) is None


def test_registry_cleanup_drops_stale_closed_connections():
    registry = ConnectionRegistry(resume_ttl=10)
    stale = registry.open()
    live = registry.open()
    registry.close(stale.connection_id)
    stale.closed_at = 0.0

    assert registry.cleanup(now=100.0) == 1
    assert registry.get(stale.connection_id) is None
    assert registry.get(live.connection_id) is live


class FakeSocket:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send_json(self, payload):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(payload)


@pytest.mark.asyncio
async def test_broadcast_reaches_sockets_and_streams():
    hub = EventHub(max_queue_size=1)
    good, bad = FakeSocket(), FakeSocket(fail=True)
    hub.add_socket("good", good)
    hub.add_socket("bad", bad)
    queue = hub.subscribe()

    delivered = await hub.broadcast({"type": "bid", "amount": 10})
    assert delivered == 2
    assert good.sent == [{"type": "bid", "amount": 10}]
    assert queue.get_nowait() == {"type": "bid", "amount": 10}
    assert hub.connection_count == 1


@pytest.mark.asyncio
async def test_broadcast_drops_events_for_full_streams():
    hub = EventHub(max_queue_size=1)
    queue = hub.subscribe()
    await hub.broadcast({"type": "bid", "amount": 10})
    await hub.broadcast({"type": "bid", "amount": 20})
    assert queue.qsize() == 1

    hub.unsubscribe(queue)
    assert hub.subscriber_count == 0
    assert await hub.broadcast({"type": "bid", "amount": 30}, streams=False) == 0


@pytest.mark.asyncio
async def test_broadcast_can_exclude_sender():
    hub = EventHub()
    sender, other = FakeSocket(), FakeSocket()
    hub.add_socket("sender", sender)
    hub.add_socket("other", other)
    await hub.broadcast({"type": "response"}, exclude="sender")
    assert sender.sent == [] and other.sent == [{"type": "response"}]


def test_split_session_prefix_ignores_non_ascii_ids():
    frame = b"session_\xff\xfe:\x00\x01audio"
    assert split_session_prefix(frame) == (None, frame)


def test_opening_a_connection_drops_stale_closed_ones():
    registry = ConnectionRegistry(resume_ttl=10)
    stale = registry.open()
    stale.track({"type": "ai_response", "content": {"audioResponse": "AAAA"}})
    registry.close(stale.connection_id)
    stale.closed_at -= 60

    recent = registry.open()
    registry.close(recent.connection_id)

    fresh = registry.open()
    assert registry.get(stale.connection_id) is None
    assert registry.get(recent.connection_id) is recent
    assert registry.get(fresh.connection_id) is fresh
