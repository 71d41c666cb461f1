"""
HTTP and WebSocket handlers for the relay
Long-poll endpoints and a push socket, both driving the same RendezvousRelay
"""
import asyncio
import json
import logging

from aiohttp import WSCloseCode, web

from .channels import PushChannel
from .config import SINK_QUEUE_SIZE, WS_HEARTBEAT
from .errors import InvalidArgument, NotFound, RelayError, RoomFull
from .relay import RendezvousRelay
from .utils import generate_client_id, generate_room_id, parse_int

logger = logging.getLogger("tandem")

RELAY = web.AppKey("relay", RendezvousRelay)


def _ids(request: web.Request):
    """Resolve (room, client) from the query string"""
    room_id = request.query.get("room")
    client_id = request.query.get("client")
    if not room_id or not client_id:
        raise InvalidArgument()
    return room_id, client_id


async def _body(request: web.Request) -> dict:
    if not request.can_read_body:
        return {}
    raw = await request.text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        raise InvalidArgument("invalid JSON body")
    if not isinstance(data, dict):
        raise InvalidArgument("JSON body must be an object")
    return data


def _timeout(request: web.Request):
    """Long-poll timeout from the query string, in milliseconds"""
    if "timeout" not in request.query:
        return None
    return parse_int(request.query["timeout"]) / 1000.0


# ============================================================
# LONG-POLL TRANSPORT
# ============================================================

async def api_send(request: web.Request) -> web.Response:
    """Update the shared text and/or the sender's status"""
    room_id, client_id = _ids(request)
    data = await _body(request)
    relay = request.app[RELAY]

    if "text" in data:
        timestamp = await relay.send_text(room_id, client_id, data["text"],
                                          status=data.get("status") or None)
    else:
        if data.get("status"):
            await relay.send_status(room_id, client_id, data["status"])
        else:
            await relay.join(room_id, client_id)
        timestamp = (relay.room_info(room_id) or {}).get("timestamp", 0)

    return web.json_response({
        "success": True,
        "message": "Message sent successfully",
        "timestamp": timestamp
    })


async def api_recv(request: web.Request) -> web.Response:
    """Wait for the next update from the other member"""
    room_id, client_id = _ids(request)
    since = parse_int(request.query.get("lastTimestamp"))
    result = await request.app[RELAY].poll_or_wait(
        room_id, client_id, since=since, timeout=_timeout(request)
    )
    return web.json_response(result.to_dict())


async def api_emoji(request: web.Request) -> web.Response:
    room_id, client_id = _ids(request)
    data = await _body(request)
    timestamp = await request.app[RELAY].send_emoji(room_id, client_id, data.get("emoji"))
    return web.json_response({
        "success": True,
        "message": "Emoji sent successfully",
        "timestamp": timestamp
    })


async def api_heartbeat(request: web.Request) -> web.Response:
    room_id, client_id = _ids(request)
    data = await _body(request)
    alive = await request.app[RELAY].heartbeat(room_id, client_id, data.get("status"))
    return web.json_response({"ok": True, "member": alive})


async def api_check_join(request: web.Request) -> web.Response:
    """Block until someone else is in the room"""
    room_id, client_id = _ids(request)
    event = await request.app[RELAY].wait_for_peer(room_id, client_id, timeout=_timeout(request))
    if event is None:
        return web.json_response({"joined": False})
    return web.json_response(event.to_dict())


async def api_disconnect(request: web.Request) -> web.Response:
    room_id, client_id = _ids(request)
    # navigator.sendBeacon posts whatever the page had, so the body is optional
    try:
        data = await _body(request)
    except InvalidArgument:
        data = {}
    await request.app[RELAY].leave(room_id, client_id, reason=data.get("reason") or "disconnect")
    return web.json_response({"ok": True})


# ============================================================
# ROOM MANAGEMENT
# ============================================================

async def api_room_new(request: web.Request) -> web.Response:
    """Hand out a fresh room code and client id"""
    relay = request.app[RELAY]
    room_id = generate_room_id()
    while room_id in relay.registry:
        room_id = generate_room_id()
    client_id = generate_client_id()
    logger.info("🎲 New room code %s for %s", room_id, client_id)
    return web.json_response({"ok": True, "room_id": room_id, "client_id": client_id})


async def api_room_info(request: web.Request) -> web.Response:
    room_id = request.match_info["room_id"]
    info = request.app[RELAY].room_info(room_id)
    if info is None:
        raise NotFound()
    return web.json_response({"ok": True, "room": info})


# ============================================================
# PUSH TRANSPORT
# ============================================================

async def _handle_ws_message(relay: RendezvousRelay, room_id: str, client_id: str, data: dict):
    kind = data.get("type")
    if kind == "text":
        await relay.send_text(room_id, client_id, data.get("text"),
                              status=data.get("status") or None)
    elif kind == "status":
        await relay.send_status(room_id, client_id, data.get("status"))
    elif kind == "emoji":
        await relay.send_emoji(room_id, client_id, data.get("emoji"))
    elif kind == "heartbeat":
        await relay.heartbeat(room_id, client_id, data.get("status"))
    else:
        raise InvalidArgument(f"unknown message type: {kind}")


async def ws_room(request: web.Request) -> web.WebSocketResponse:
    """WebSocket endpoint: events from the other member are pushed as they happen"""
    room_id, client_id = _ids(request)
    relay = request.app[RELAY]

    ws = web.WebSocketResponse(heartbeat=WS_HEARTBEAT)
    await ws.prepare(request)

    closing = []

    def hang_up():
        # the relay dropped this sink (evicted, left elsewhere, replaced)
        if not ws.closed:
            closing.append(asyncio.ensure_future(
                ws.close(code=WSCloseCode.GOING_AWAY, message=b"Removed from room")))

    channel = PushChannel(client_id, ws.send_json, maxsize=SINK_QUEUE_SIZE)
    try:
        await relay.attach_sink(room_id, client_id, channel)
    except RoomFull as e:
        channel.close()
        await ws.send_json({"type": "error", **e.to_dict()})
        await ws.close(code=WSCloseCode.TRY_AGAIN_LATER, message=b"Room is full")
        return ws
    channel.on_close = hang_up

    logger.info(f"📡 WebSocket {client_id} connected to room {room_id}")

    try:
        async for msg in ws:
            if channel.closed:
                break
            if msg.type != web.WSMsgType.TEXT:
                continue
            if msg.data == "ping":
                await relay.heartbeat(room_id, client_id)
                await ws.send_str("pong")
                continue
            if msg.data == "leave":
                break
            try:
                data = json.loads(msg.data)
                if not isinstance(data, dict):
                    raise InvalidArgument("message must be a JSON object")
                await _handle_ws_message(relay, room_id, client_id, data)
            except json.JSONDecodeError:
                await ws.send_json({"type": "error", "ok": False, "error": "invalid JSON"})
            except RelayError as e:
                await ws.send_json({"type": "error", **e.to_dict()})
    except Exception as e:
        logger.debug(f"WebSocket error: {e}")
    finally:
        channel.on_close = None
        channel.close()
        if not channel.superseded:
            await relay.leave(room_id, client_id, reason="socket closed")
        logger.info(f"📡 WebSocket {client_id} disconnected from room {room_id}")

    if not ws.closed:
        await ws.close()
    return ws
