import asyncio
import time

import pytest

from api.whatsapp import live_status_stream
from app.live_status import LiveStatusBroadcaster, format_sse
from app.state import AIReply, InboundMessage, ReplyType, SenderStatus
from app.whatsapp import (
    MSG_EMPTY_QUERY,
    MSG_NOT_APPROVED,
    MSG_NOT_REGISTERED,
    MSG_UNKNOWN_NUMBER,
    ClientNotConnected,
    ClientState,
    GatewayError,
    WhatsAppGateway,
    transition,
)

from conftest import FakeClient


class DummyOrchestrator:
    def __init__(self, content="Jawaban AI"):
        self.content = content
        self.calls = []

    async def route_message(self, text, owner_user_id):
        self.calls.append((text, owner_user_id))
        return AIReply.of(self.content, ReplyType.GENERAL)


def _gateway(store, orchestrator=None, broadcaster=None, **client_kwargs):
    clients = []

    def factory(on_event):
        client = FakeClient(on_event, **client_kwargs)
        clients.append(client)
        return client

    gw = WhatsAppGateway(
        store,
        orchestrator or DummyOrchestrator(),
        client_factory=factory,
        broadcaster=broadcaster or LiveStatusBroadcaster(ping_interval=0),
        init_timeout=0.2,
        qr_renderer=lambda code: f"data:image/png;base64,{code}",
    )
    return gw, clients


async def _ready(gw):
    await gw.connect()
    await gw.handle_client_event("qr", {"qr": "abc"})
    await gw.handle_client_event("authenticated", {})
    await gw.handle_client_event("ready", {})


def _msg(body, sender="6281234@c.us", from_me=False):
    return InboundMessage(chat_id=sender, sender=sender, body=body, from_me=from_me, message_id="m1")


def test_transition_table():
    assert transition(ClientState.UNINITIALIZED, "initialize") is ClientState.INITIALIZING
    assert transition(ClientState.AWAITING_SCAN, "qr") is ClientState.AWAITING_SCAN
    assert transition(ClientState.AUTHENTICATED, "ready") is ClientState.READY
    assert transition(ClientState.READY, "disconnected") is ClientState.DISCONNECTED
    assert transition(ClientState.READY, "auth_failure") is ClientState.AUTH_FAILED
    assert transition(ClientState.AUTH_FAILED, "initialize") is ClientState.INITIALIZING
    # not valid in these states
    assert transition(ClientState.UNINITIALIZED, "ready") is None
    assert transition(ClientState.READY, "qr") is None
    assert transition(ClientState.DISCONNECTED, "disconnected") is None


def test_full_lifecycle_publishes_events(store):
    async def scenario():
        bc = LiveStatusBroadcaster(ping_interval=0)
        gw, clients = _gateway(store, broadcaster=bc)
        sub = bc.subscribe()
        await gw.connect()
        assert gw.state is ClientState.INITIALIZING
        await gw.handle_client_event("qr", {"qr": "abc"})
        assert gw.get_status()["qrCode"] == "data:image/png;base64,abc"
        await gw.handle_client_event("authenticated", {})
        await gw.handle_client_event("ready", {})
        status = gw.get_status()
        assert status["isConnected"] is True
        assert status["state"] == "READY"
        assert status["qrCode"] is None
        assert status["lastActivity"]

        await gw.handle_client_event("disconnected", {"reason": "LOGOUT"})
        assert gw.state is ClientState.DISCONNECTED
        assert gw.get_status()["isConnected"] is False
        assert clients[0].destroyed == 1

        events = []
        while not sub.queue.empty():
            events.append(sub.queue.get_nowait())
        names = [e for e, _ in events]
        assert names == ["status", "qr", "status", "ready", "disconnected"]
        assert events[-1][1] == {"reason": "LOGOUT", "isConnected": False}

        # client was dropped, so a fresh connect starts a new one
        await gw.connect()
        assert len(clients) == 2
        assert gw.state is ClientState.INITIALIZING

    asyncio.run(scenario())


def test_invalid_events_are_ignored(store):
    async def scenario():
        gw, _ = _gateway(store)
        await gw.handle_client_event("ready", {})
        assert gw.state is ClientState.UNINITIALIZED
        assert gw.get_status()["isConnected"] is False

    asyncio.run(scenario())


def test_concurrent_connects_collapse_to_one(store):
    async def scenario():
        gw, clients = _gateway(store)
        await asyncio.gather(gw.connect(), gw.connect(), gw.connect())
        assert len(clients) == 1
        assert clients[0].initialized == 1

    asyncio.run(scenario())


def test_connect_timeout_resets_state(store):
    async def scenario():
        bc = LiveStatusBroadcaster(ping_interval=0)
        gw, clients = _gateway(store, broadcaster=bc, hang=True)
        sub = bc.subscribe()
        with pytest.raises(GatewayError):
            await gw.connect()
        assert gw.state is ClientState.UNINITIALIZED
        assert clients[0].destroyed == 1
        assert gw.get_status()["lastError"]
        names = []
        while not sub.queue.empty():
            names.append(sub.queue.get_nowait()[0])
        assert names[-1] == "error"

    asyncio.run(scenario())


def test_auth_failure_allows_fresh_connect(store):
    async def scenario():
        gw, clients = _gateway(store)
        await gw.connect()
        await gw.handle_client_event("auth_failure", {"message": "bad session"})
        assert gw.state is ClientState.AUTH_FAILED
        assert gw.get_status()["lastError"] == "bad session"
        assert clients[0].destroyed == 1
        await gw.connect()
        assert len(clients) == 2

    asyncio.run(scenario())


def test_send_message_requires_ready(store):
    async def scenario():
        gw, clients = _gateway(store)
        with pytest.raises(ClientNotConnected):
            await gw.send_message("62811", "halo")
        assert await gw.get_chats() == []
        await _ready(gw)
        await gw.send_message("+62 811", "halo")
        assert clients[0].sent == [("62811@c.us", "halo")]
        assert (await gw.get_chats())[0]["name"] == "Budi"
        await gw.disconnect()
        assert gw.state is ClientState.UNINITIALIZED
        assert clients[0].destroyed == 1

    asyncio.run(scenario())


def test_inbound_gate(store):
    async def scenario():
        orch = DummyOrchestrator()
        gw, clients = _gateway(store, orchestrator=orch)
        await _ready(gw)
        client = clients[0]

        assert await gw.handle_inbound_message(_msg("halo", sender="@c.us")) == MSG_UNKNOWN_NUMBER
        assert await gw.handle_inbound_message(_msg("halo")) == MSG_NOT_REGISTERED
        store.register_sender("6281234")
        assert await gw.handle_inbound_message(_msg("halo")) == MSG_NOT_APPROVED
        store.set_sender_status("6281234", SenderStatus.REJECTED)
        assert await gw.handle_inbound_message(_msg("halo")) == MSG_NOT_APPROVED
        assert orch.calls == []
        assert len(client.replies) == 4

    asyncio.run(scenario())


def test_inbound_approved_sender_is_routed(store):
    async def scenario():
        orch = DummyOrchestrator("Siap!")
        gw, clients = _gateway(store, orchestrator=orch)
        await _ready(gw)
        admin = store.ensure_default_admin()
        store.register_sender("6281234")
        store.set_sender_status("6281234", SenderStatus.APPROVED)

        assert await gw.handle_inbound_message(_msg("/ai   ")) == MSG_EMPTY_QUERY
        assert await gw.handle_inbound_message(_msg("AI: buatkan SPH")) == "Siap!"
        assert await gw.handle_inbound_message(_msg("halo")) == "Siap!"
        assert await gw.handle_inbound_message(_msg("halo", from_me=True)) is None

        assert orch.calls == [("buatkan SPH", admin["id"]), ("halo", admin["id"])]
        assert clients[0].typing == ["6281234@c.us", "6281234@c.us"]

    asyncio.run(scenario())


def test_message_event_is_handled_in_background(store):
    async def scenario():
        gw, clients = _gateway(store)
        await _ready(gw)
        await gw.handle_client_event("message", {"message": _msg("halo")})
        await asyncio.gather(*list(gw._tasks))
        assert clients[0].replies == [("6281234@c.us", MSG_NOT_REGISTERED)]

    asyncio.run(scenario())


def test_unsubscribe_stops_delivery():
    async def scenario():
        bc = LiveStatusBroadcaster(ping_interval=0)
        a, b = bc.subscribe(), bc.subscribe()
        bc.publish("status", {"isConnected": False})
        bc.unsubscribe(a)
        bc.publish("ready", {"isConnected": True})
        assert a.queue.empty()
        assert a.closed
        assert bc.subscriber_count == 1
        assert [b.queue.get_nowait()[0], b.queue.get_nowait()[0]] == ["status", "ready"]

    asyncio.run(scenario())


def test_keepalive_pings_and_cancels():
    async def scenario():
        bc = LiveStatusBroadcaster()
        sub = bc.subscribe(ping_interval=0.01)
        event = await sub.next_event(timeout=1)
        assert event[0] == "ping"
        assert "timestamp" in event[1]
        task = sub.keepalive
        bc.unsubscribe(sub)
        await asyncio.sleep(0.02)
        assert task.done()
        assert await sub.next_event(timeout=0.05) is None

    asyncio.run(scenario())


def test_format_sse():
    assert format_sse("ready", {"isConnected": True}) == 'event: ready\ndata: {"isConnected": true}\n\n'


def test_first_subscriber_starts_one_connection(store):
    async def scenario():
        gw, clients = _gateway(store)
        gw.ensure_connecting()
        gw.ensure_connecting()
        await asyncio.gather(*list(gw._tasks))
        assert len(clients) == 1
        assert clients[0].initialized == 1
        assert gw.state is ClientState.INITIALIZING

        # a client already exists
        gw.ensure_connecting()
        await asyncio.gather(*list(gw._tasks))
        assert len(clients) == 1

    asyncio.run(scenario())


def test_live_status_stream_connects_and_releases_subscription(store):
    async def scenario():
        gw, clients = _gateway(store)

        async def still_connected():
            return False

        stream = live_status_stream(gw, still_connected, poll_seconds=0.01)
        first = await stream.__anext__()
        assert first.startswith("event: status\n")
        assert gw.broadcaster.subscriber_count == 1

        await asyncio.gather(*list(gw._tasks))
        assert clients[0].initialized == 1
        frame = await stream.__anext__()
        assert frame.startswith("event: status\n")
        assert "INITIALIZING" in frame

        await stream.aclose()
        assert gw.broadcaster.subscriber_count == 0

    asyncio.run(scenario())


def test_live_status_stream_ends_when_client_goes_away(store):
    async def scenario():
        gw, _ = _gateway(store)

        async def gone():
            return True

        frames = [frame async for frame in live_status_stream(gw, gone, poll_seconds=0.01)]
        assert len(frames) == 1
        assert gw.broadcaster.subscriber_count == 0
        await asyncio.gather(*list(gw._tasks))

    asyncio.run(scenario())


class SlowStore:
    """Wraps a store so sender lookups block like a busy disk."""

    def __init__(self, store, delay):
        self._store = store
        self.delay = delay

    def __getattr__(self, name):
        return getattr(self._store, name)

    def get_sender(self, number):
        time.sleep(self.delay)
        return self._store.get_sender(number)


def test_store_lookups_do_not_block_the_loop(store):
    async def scenario():
        gw, clients = _gateway(SlowStore(store, 0.3))
        await _ready(gw)
        loop = asyncio.get_running_loop()
        ticks = []

        async def ticker():
            for _ in range(20):
                ticks.append(loop.time())
                await asyncio.sleep(0.01)

        reply, _ = await asyncio.gather(gw.handle_inbound_message(_msg("halo")), ticker())
        assert reply == MSG_NOT_REGISTERED
        gaps = [b - a for a, b in zip(ticks, ticks[1:])]
        assert max(gaps) < 0.2

    asyncio.run(scenario())
