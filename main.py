#!/usr/bin/env python3
"""
Tandem - two-person live text rooms
Long-poll + WebSocket transports, presence sweeps
"""
import logging
import socket
from typing import Optional

from aiohttp import web

from tandem import config
from tandem.api import (
    RELAY, api_send, api_recv, api_emoji, api_heartbeat, api_check_join,
    api_disconnect, api_room_new, api_room_info, ws_room
)
from tandem.config import PresenceConfig
from tandem.errors import RelayError
from tandem.presence import PresenceTracker
from tandem.relay import RendezvousRelay

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("tandem")

PRESENCE = web.AppKey("presence", PresenceTracker)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


async def index(request):
    return web.FileResponse(config.STATIC_DIR / 'index.html')


@web.middleware
async def cors_middleware(request, handler):
    """Allow the static client to be served from anywhere"""
    if request.method == "OPTIONS":
        return web.Response(status=200, headers=CORS_HEADERS)

    response = await handler(request)
    if not response.prepared:
        response.headers.update(CORS_HEADERS)
    return response


@web.middleware
async def error_middleware(request, handler):
    """Map relay errors to JSON responses; anything unexpected becomes a 500"""
    try:
        return await handler(request)
    except RelayError as e:
        if e.status >= 500:
            logger.error(f"Relay error on {request.path}: {e}")
        return web.json_response(e.to_dict(), status=e.status)
    except web.HTTPException:
        raise
    except Exception:
        logger.exception("Unhandled error on %s", request.path)
        return web.json_response(
            {"ok": False, "error": "Internal server error"},
            status=500
        )


async def start_background_tasks(app):
    app[PRESENCE].start()


async def close_rooms(app):
    # resolves pending long polls and closes push sinks
    await app[RELAY].close_all()


async def stop_background_tasks(app):
    await app[PRESENCE].stop()


def create_app(relay: Optional[RendezvousRelay] = None,
               presence_config: Optional[PresenceConfig] = None) -> web.Application:
    """Create and configure the aiohttp application"""
    app = web.Application(middlewares=[cors_middleware, error_middleware])

    relay = relay or RendezvousRelay(max_poll_timeout=config.POLL_TIMEOUT)
    app[RELAY] = relay
    app[PRESENCE] = PresenceTracker(relay, presence_config)

    # HTML routes
    if config.STATIC_DIR.is_dir():
        app.router.add_get("/", index)
        app.router.add_static('/static', config.STATIC_DIR, name='static')

    # Long-poll routes
    app.router.add_post("/send", api_send)
    app.router.add_get("/recv", api_recv)
    app.router.add_post("/emoji", api_emoji)
    app.router.add_post("/heartbeat", api_heartbeat)
    app.router.add_get("/check-join", api_check_join)
    app.router.add_post("/disconnect", api_disconnect)

    # Rooms
    app.router.add_post("/room/new", api_room_new)
    app.router.add_get("/room/{room_id}", api_room_info)

    # WebSocket push transport
    app.router.add_get("/ws", ws_room)

    app.on_startup.append(start_background_tasks)
    app.on_shutdown.append(close_rooms)
    app.on_cleanup.append(stop_background_tasks)

    logger.info("💬 Tandem server ready • long-poll + WebSocket")
    return app


def advertised_host(host: str) -> str:
    """Address other devices should use to reach a server bound to host"""
    if host not in ("0.0.0.0", ""):
        return host
    # a connected UDP socket sends nothing; it only picks the outgoing interface
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        try:
            sock.connect(("10.255.255.255", 1))
            return sock.getsockname()[0]
        except OSError:
            return "localhost"


def main():
    app = create_app()
    public_host = advertised_host(config.HOST)

    logger.info(f"🚀 Starting server on {config.HOST}:{config.PORT}")
    logger.info(f"💡 Access at: http://{public_host}:{config.PORT}")

    web.run_app(app, host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
