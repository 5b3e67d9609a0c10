# pulse_dsp/http/server.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict

from aiohttp import WSMsgType, web

from ..config import ServerConfig
from ..engine import AudioEngine
from ..errors import SourceError
from ..gesture import GESTURE_KINDS
from ..ws.subscriptions import Subscriptions

logger = logging.getLogger(__name__)


@web.middleware
async def cors_middleware(request: web.Request, handler):
    """
    CORS нужен: рендерер (браузер) живёт на другом origin
    и делает preflight OPTIONS перед POST /gesture.
    """
    if request.method == "OPTIONS":
        resp = web.Response(status=200)
    else:
        resp = await handler(request)

    resp.headers["Access-Control-Allow-Origin"] = "*"
    resp.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
    resp.headers["Access-Control-Allow-Headers"] = "Content-Type,Authorization"
    resp.headers["Access-Control-Max-Age"] = "86400"
    return resp


# ================== WS SUBS ==================
async def broadcast(app: web.Application, stream: str, msg: Dict[str, Any]) -> None:
    subs = app["subs"]
    raw = json.dumps(msg, ensure_ascii=False)
    dead = []
    for ws in list(subs.get(stream)):
        try:
            await ws.send_str(raw)
        except (ConnectionResetError, RuntimeError):
            dead.append(ws)
    for ws in dead:
        subs.remove_ws(ws)


def engine_event_cb(app: web.Application):
    async def _cb(msg: Dict[str, Any]) -> None:
        t = msg.get("type")
        if t:
            await broadcast(app, t, msg)

    return _cb


# ================== HTTP ==================
async def health(_: web.Request) -> web.Response:
    return web.json_response({"ok": True})


async def get_signal(request: web.Request) -> web.Response:
    engine = request.app["engine"]
    return web.json_response(engine.signal.to_payload())


async def get_status(request: web.Request) -> web.Response:
    engine = request.app["engine"]
    return web.json_response(engine.status_payload())


async def post_gesture(request: web.Request) -> web.Response:
    """
    POST /gesture  {"kind": "click"}
    Response: {ok, consumed, state}
    """
    engine = request.app["engine"]
    body: Dict[str, Any] = {}
    if request.can_read_body:
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return web.json_response({"ok": False, "error": "invalid JSON"}, status=400)

    kind = str(body.get("kind", "click")) if isinstance(body, dict) else "click"
    if kind not in GESTURE_KINDS:
        return web.json_response({"ok": False, "error": f"unknown gesture {kind!r}"}, status=400)

    consumed = await engine.gesture(kind)
    return web.json_response({"ok": True, "consumed": consumed, "state": engine.playback_state.value})


# ================== WS ==================
async def ws_handler(request: web.Request) -> web.WebSocketResponse:
    app = request.app
    engine = app["engine"]
    subs = app["subs"]

    ws = web.WebSocketResponse(heartbeat=20)
    await ws.prepare(request)

    await ws.send_str(json.dumps({"type": "hello_ack", "payload": {"server": "pulse-dsp"}}, ensure_ascii=False))

    try:
        async for m in ws:
            if m.type != WSMsgType.TEXT:
                continue

            try:
                data = json.loads(m.data)
            except json.JSONDecodeError:
                logger.warning("WS: dropped non-JSON message")
                continue
            if not isinstance(data, dict):
                continue

            if data.get("type") == "subscribe":
                subs.add_many((data.get("payload") or {}).get("streams") or [], ws)
                await ws.send_str(json.dumps({"type": "ack", "reqId": data.get("reqId")}, ensure_ascii=False))
                continue

            if data.get("type") == "unsubscribe":
                for s in (data.get("payload") or {}).get("streams") or []:
                    subs.remove(str(s), ws)
                await ws.send_str(json.dumps({"type": "ack", "reqId": data.get("reqId")}, ensure_ascii=False))
                continue

            resp = await engine.handle_control(data)
            if resp:
                await ws.send_str(json.dumps(resp, ensure_ascii=False))
    finally:
        subs.remove_ws(ws)

    return ws


# ================== APP ==================
async def on_startup(app: web.Application) -> None:
    engine = app["engine"]
    cfg = app["config"]
    engine.set_event_callback(engine_event_cb(app))
    await engine.start()
    if cfg.source_url:
        try:
            await engine.set_source(cfg.source_url)
        except SourceError as e:
            # процесс живёт дальше: AudioSignal остаётся нулевым, источник можно сменить по WS
            logger.error("Could not start audio source %s: %s", cfg.source_url, e)


async def on_cleanup(app: web.Application) -> None:
    subs = app["subs"]
    for ws in {ws for conns in subs.by_stream.values() for ws in conns}:
        await ws.close()
    subs.by_stream.clear()
    await app["engine"].close()


def create_app(engine: AudioEngine, cfg: ServerConfig | None = None) -> web.Application:
    cfg = cfg or ServerConfig()
    app = web.Application(middlewares=[cors_middleware])
    app["engine"] = engine
    app["subs"] = Subscriptions()
    app["config"] = cfg

    app.router.add_get("/health", health)
    app.router.add_get("/signal", get_signal)
    app.router.add_get("/status", get_status)
    app.router.add_post("/gesture", post_gesture)
    app.router.add_get(cfg.ws_endpoint, ws_handler)

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    return app
