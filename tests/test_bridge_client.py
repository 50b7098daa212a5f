import asyncio
import json

import httpx
import pytest

from app.bridge_client import BridgeClient, parse_bridge_event
from app.config import Settings
from app.state import InboundMessage


def _client(handler, **overrides):
    settings = Settings(
        WA_BRIDGE_URL="http://bridge.local",
        WA_SESSION_ID="sess 1",
        WA_CALLBACK_URL="http://api.local/api/whatsapp/bridge/events",
        **overrides,
    )
    return BridgeClient(settings, transport=httpx.MockTransport(handler))


def test_commands_hit_session_endpoints():
    seen = []

    def handler(request):
        seen.append((request.method, request.url.path, request.headers.get("x-bridge-secret"),
                     json.loads(request.content or b"null")))
        return httpx.Response(200, json={"ok": True})

    client = _client(handler, WA_BRIDGE_SECRET="s3cret")
    msg = InboundMessage(chat_id="62811@c.us", sender="62811@c.us", body="halo", message_id="abc")

    async def scenario():
        await client.initialize()
        await client.send_message("62811@c.us", "hai")
        await client.reply(msg, "balas")
        await client.send_typing("62811@c.us")
        await client.destroy()

    asyncio.run(scenario())
    assert seen[0] == (
        "POST",
        "/sessions/sess 1/start",
        "s3cret",
        {"webhook": "http://api.local/api/whatsapp/bridge/events"},
    )
    assert seen[1][3] == {"chatId": "62811@c.us", "text": "hai"}
    assert seen[2][3] == {"chatId": "62811@c.us", "text": "balas", "quotedMessageId": "abc"}
    assert seen[3][1] == "/sessions/sess 1/chats/62811@c.us/typing"
    assert seen[4][1] == "/sessions/sess 1/stop"


def test_get_chats_maps_fields():
    def handler(request):
        return httpx.Response(200, json=[{"id": "1@c.us", "name": "Budi", "isGroup": 0, "unreadCount": 3}, "junk"])

    chats = asyncio.run(_client(handler).get_chats())
    assert chats == [{"id": "1@c.us", "name": "Budi", "isGroup": False, "unreadCount": 3}]


def test_http_errors_propagate():
    def handler(request):
        return httpx.Response(503)

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(_client(handler).initialize())


def test_parse_bridge_event():
    event, data = parse_bridge_event({"event": "qr", "data": {"qr": "2@abc"}})
    assert (event, data) == ("qr", {"qr": "2@abc"})

    event, data = parse_bridge_event(
        {
            "event": "message",
            "data": {"id": "m1", "from": "62811@c.us", "body": "/ai halo", "fromMe": False, "contactNumber": "62811"},
        }
    )
    assert event == "message"
    msg = data["message"]
    assert (msg.chat_id, msg.sender, msg.body, msg.from_me, msg.message_id, msg.sender_number) == (
        "62811@c.us",
        "62811@c.us",
        "/ai halo",
        False,
        "m1",
        "62811",
    )

    assert parse_bridge_event({"event": "ready", "data": None}) == ("ready", {})
