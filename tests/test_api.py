"""Tests for the long-poll and WebSocket transports."""

import asyncio

import pytest
from aiohttp import WSMsgType

from main import advertised_host
from tandem.api import RELAY

from conftest import wait_until


def ids(room="r1", client="alice", **extra):
    return {"room": room, "client": client, **extra}


@pytest.mark.asyncio
async def test_send_then_recv(client):
    resp = await client.post("/send", params=ids(), json={"text": "hello", "status": "typing"})
    assert resp.status == 200
    sent = await resp.json()
    assert sent["success"] is True

    resp = await client.get("/recv", params=ids(client="bob", lastTimestamp="0", timeout="0"))
    assert resp.status == 200
    data = await resp.json()
    assert data["text"] == "hello"
    assert data["status"] == "typing"
    assert data["hasNewContent"] is True
    assert data["timestamp"] == sent["timestamp"]
    assert data["userCount"] == 2


@pytest.mark.asyncio
async def test_recv_waits_for_text(client):
    await client.post("/send", params=ids(), json={})
    poll = asyncio.create_task(
        client.get("/recv", params=ids(client="bob", lastTimestamp="0", timeout="2000"))
    )
    relay = client.server.app[RELAY]
    await wait_until(lambda: relay.registry.get("r1").pending_waiters)

    await client.post("/send", params=ids(), json={"text": "are you there?"})
    resp = await asyncio.wait_for(poll, 2)

    assert (await resp.json())["text"] == "are you there?"


@pytest.mark.asyncio
async def test_parked_recv_gets_status_sent_with_text(client):
    await client.post("/send", params=ids(), json={})
    poll = asyncio.create_task(
        client.get("/recv", params=ids(client="bob", lastTimestamp="0", timeout="2000"))
    )
    relay = client.server.app[RELAY]
    await wait_until(lambda: relay.registry.get("r1").pending_waiters)

    await client.post("/send", params=ids(), json={"text": "hi", "status": "typing"})
    data = await (await asyncio.wait_for(poll, 2)).json()

    assert data["text"] == "hi"
    assert data["status"] == "typing"


@pytest.mark.asyncio
async def test_recv_times_out_empty(client):
    resp = await client.get("/recv", params=ids(lastTimestamp="0", timeout="100"))
    data = await resp.json()

    assert resp.status == 200
    assert data["hasNewContent"] is False
    assert "text" not in data


@pytest.mark.asyncio
@pytest.mark.parametrize("params", [{}, {"room": "r1"}, {"client": "alice"}])
async def test_missing_ids_is_bad_request(client, params):
    resp = await client.get("/recv", params=params)

    assert resp.status == 400
    assert (await resp.json())["ok"] is False


@pytest.mark.asyncio
async def test_full_room_is_reported(client):
    await client.post("/send", params=ids(client="alice"), json={"text": "a"})
    await client.post("/send", params=ids(client="bob"), json={"text": "b"})

    resp = await client.get("/recv", params=ids(client="carol", timeout="0"))

    assert resp.status == 429
    data = await resp.json()
    assert data["full"] is True
    assert data["error"] == "Room is full"


@pytest.mark.asyncio
async def test_invalid_json_is_bad_request(client):
    resp = await client.post("/send", params=ids(), data="{not json",
                             headers={"Content-Type": "application/json"})

    assert resp.status == 400


@pytest.mark.asyncio
async def test_emoji_requires_emoji(client):
    resp = await client.post("/emoji", params=ids(), json={})
    assert resp.status == 400

    resp = await client.post("/emoji", params=ids(), json={"emoji": "🎉"})
    assert resp.status == 200
    timestamp = (await resp.json())["timestamp"]

    resp = await client.get("/recv", params=ids(client="bob", timeout="0"))
    data = await resp.json()
    assert data["emoji"] == "🎉"
    assert data["emojiTimestamp"] == timestamp


@pytest.mark.asyncio
async def test_check_join(client):
    waiting = asyncio.create_task(client.get("/check-join", params=ids(timeout="2000")))
    relay = client.server.app[RELAY]
    await wait_until(lambda: relay.registry.get("r1") is not None
                     and relay.registry.get("r1").pending_waiters)

    await client.post("/send", params=ids(client="bob"), json={})
    resp = await asyncio.wait_for(waiting, 2)

    assert (await resp.json())["joined"] is True


@pytest.mark.asyncio
async def test_heartbeat_and_disconnect(client):
    resp = await client.post("/heartbeat", params=ids(), json={})
    assert (await resp.json())["member"] is False

    await client.post("/send", params=ids(), json={})
    resp = await client.post("/heartbeat", params=ids(), json={"status": "online"})
    assert (await resp.json())["member"] is True

    resp = await client.post("/disconnect", params=ids(), data="")
    assert resp.status == 200

    resp = await client.get("/room/r1")
    assert resp.status == 404


@pytest.mark.asyncio
async def test_room_info_and_new_room(client):
    resp = await client.post("/room/new")
    created = await resp.json()
    assert created["room_id"]
    assert created["client_id"].startswith("client_")

    await client.post("/send", params=ids(room=created["room_id"], client=created["client_id"]),
                      json={"text": "hi"})
    resp = await client.get(f"/room/{created['room_id']}")
    info = (await resp.json())["room"]
    assert info["user_count"] == 1
    assert info["full"] is False


@pytest.mark.asyncio
async def test_cors_headers(client):
    resp = await client.options("/send")
    assert resp.status == 200
    assert resp.headers["Access-Control-Allow-Origin"] == "*"

    resp = await client.post("/send", params=ids(), json={})
    assert resp.headers["Access-Control-Allow-Origin"] == "*"


# =============================================================================
# WebSocket transport
# =============================================================================


@pytest.mark.asyncio
async def test_websocket_receives_pushed_events(client):
    ws = await client.ws_connect("/ws", params=ids())
    relay = client.server.app[RELAY]
    await wait_until(lambda: relay.registry.get("r1") is not None
                     and "alice" in relay.registry.get("r1").push_sinks)

    await client.post("/send", params=ids(client="bob"), json={"text": "hello"})

    joined = await ws.receive_json(timeout=2)
    text = await ws.receive_json(timeout=2)
    assert joined["type"] == "presence" and joined["joined"] is True
    assert text["type"] == "text" and text["text"] == "hello"

    await ws.close()


@pytest.mark.asyncio
async def test_websocket_messages_reach_poller(client):
    ws = await client.ws_connect("/ws", params=ids())
    await ws.send_json({"type": "text", "text": "from the socket"})

    resp = await client.get("/recv", params=ids(client="bob", timeout="2000"))
    assert (await resp.json())["text"] == "from the socket"

    await ws.send_str("ping")
    # bob's join notice may arrive first
    msg = await ws.receive(timeout=2)
    while msg.data != "pong":
        msg = await ws.receive(timeout=2)
    await ws.close()


@pytest.mark.asyncio
async def test_websocket_rejects_bad_messages(client):
    ws = await client.ws_connect("/ws", params=ids())

    await ws.send_json({"type": "dance"})
    error = await ws.receive_json(timeout=2)
    assert error["type"] == "error"

    await ws.send_str("{broken")
    error = await ws.receive_json(timeout=2)
    assert error["error"] == "invalid JSON"
    await ws.close()


@pytest.mark.asyncio
async def test_websocket_close_leaves_room(client):
    await client.post("/send", params=ids(client="bob"), json={})
    ws = await client.ws_connect("/ws", params=ids())
    relay = client.server.app[RELAY]
    await wait_until(lambda: "alice" in relay.registry.get("r1").members)

    await ws.close()
    await wait_until(lambda: relay.registry.get("r1").members == {"bob"})


@pytest.mark.asyncio
async def test_websocket_full_room(client):
    await client.post("/send", params=ids(client="bob"), json={})
    await client.post("/send", params=ids(client="carol"), json={})

    ws = await client.ws_connect("/ws", params=ids())
    error = await ws.receive_json(timeout=2)
    assert error["full"] is True

    msg = await ws.receive(timeout=2)
    assert msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSED)


@pytest.mark.asyncio
async def test_websocket_text_carries_status_to_parked_recv(client):
    ws = await client.ws_connect("/ws", params=ids())
    poll = asyncio.create_task(
        client.get("/recv", params=ids(client="bob", lastTimestamp="0", timeout="2000"))
    )
    relay = client.server.app[RELAY]
    await wait_until(lambda: relay.registry.get("r1") is not None
                     and relay.registry.get("r1").pending_waiters)

    await ws.send_json({"type": "text", "text": "hi", "status": "typing"})
    data = await (await asyncio.wait_for(poll, 2)).json()

    assert data["status"] == "typing"
    await ws.close()


@pytest.mark.asyncio
async def test_websocket_closed_when_member_removed_elsewhere(client):
    await client.post("/send", params=ids(client="bob"), json={})
    ws = await client.ws_connect("/ws", params=ids())
    relay = client.server.app[RELAY]
    await wait_until(lambda: "alice" in relay.registry.get("r1").push_sinks)

    await client.post("/disconnect", params=ids(), json={"reason": "tab closed"})

    msg = await ws.receive(timeout=2)
    while msg.type not in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
        msg = await ws.receive(timeout=2)
    assert relay.registry.get("r1").members == {"bob"}
    assert "alice" not in relay.registry.get("r1").push_sinks


@pytest.mark.asyncio
async def test_replaced_websocket_is_closed_without_leaving(client):
    await client.post("/send", params=ids(client="bob"), json={})
    first = await client.ws_connect("/ws", params=ids())
    relay = client.server.app[RELAY]
    await wait_until(lambda: "alice" in relay.registry.get("r1").push_sinks)
    old_sink = relay.registry.get("r1").push_sinks["alice"]

    second = await client.ws_connect("/ws", params=ids())
    await wait_until(lambda: relay.registry.get("r1").push_sinks.get("alice") is not old_sink)

    msg = await first.receive(timeout=2)
    while msg.type not in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
        msg = await first.receive(timeout=2)
    assert relay.registry.get("r1").members == {"alice", "bob"}
    await second.close()


def test_advertised_host_keeps_explicit_bind_address():
    assert advertised_host("127.0.0.1") == "127.0.0.1"
    assert advertised_host("0.0.0.0") != "0.0.0.0"
