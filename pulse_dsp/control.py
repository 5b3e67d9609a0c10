# pulse_dsp/control.py
from __future__ import annotations

import time
from typing import Any, Dict, Optional

from .errors import SourceError

# dsp_set_params: ключ UI -> канал SmoothingFilter
_SMOOTHING_KEYS = {
    "volumeSmoothing": "volume",
    "bassSmoothing": "bass",
    "midSmoothing": "mid",
    "trebleSmoothing": "treble",
}


def _ack(req_id: Optional[str], payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"type": "ack", "reqId": req_id, "payload": payload or {"ok": True}}


def _err(req_id: Optional[str], code: str, message: str) -> Dict[str, Any]:
    return {"type": "error", "reqId": req_id, "payload": {"code": code, "message": message}}


def _status(engine: Any, req_id: Optional[str]) -> Dict[str, Any]:
    return {"type": "audio_status", "payload": engine.status_payload(), "reqId": req_id, "ts": time.time()}


async def handle_control(engine: Any, msg: Dict[str, Any]) -> Dict[str, Any] | None:
    """
    UI/renderer -> Backend control router.

    Вход:  { "type": "...", "payload": {...}, "reqId": "..." }
    Выход: response envelope (ack/error/audio_status/audio_signal)

    ВАЖНО:
    - Никаких блокировок frame loop: только await на методы engine.
    - Telemetry push (audio_signal/audio_status) не отсюда, а из engine через event callback.
    """
    t = msg.get("type")
    req = msg.get("reqId")
    payload = msg.get("payload", {}) or {}

    # -------------------- source --------------------
    if t == "audio_set_source":
        url = payload.get("url")
        if not url:
            return _err(req, "BAD_REQUEST", "payload.url is required")
        try:
            await engine.start(str(url))
        except SourceError as e:
            return _err(req, "AUDIO_SET_SOURCE_FAILED", f"{e.code}: {e}")
        return _status(engine, req)

    # -------------------- transport --------------------
    if t == "audio_play":
        await engine.resume()
        return _status(engine, req)

    if t == "audio_pause":
        await engine.pause()
        return _status(engine, req)

    if t == "audio_status_get":
        return _status(engine, req)

    if t == "audio_signal_get":
        return {"type": "audio_signal", "payload": engine.signal.to_payload(), "reqId": req, "ts": time.time()}

    if t == "gesture":
        kind = str(payload.get("kind", "click"))
        consumed = await engine.gesture(kind)
        return _ack(req, {"ok": True, "consumed": consumed, "state": engine.playback_state.value})

    # -------------------- smoothing params --------------------
    if t == "dsp_set_params":
        factors = {ch: payload[k] for k, ch in _SMOOTHING_KEYS.items() if k in payload}
        try:
            engine.smoothing.configure(
                factors=factors or None,
                decay_factor=payload.get("decayFactor"),
                silence_threshold=payload.get("silenceThreshold"),
            )
        except (TypeError, ValueError) as e:
            return _err(req, "DSP_SET_PARAMS_FAILED", str(e))
        return _ack(req, {"ok": True})

    # subscribe/unsubscribe обрабатываются в ws слое,
    # но для совместимости отвечаем ack и здесь.
    if t in ("subscribe", "unsubscribe"):
        return _ack(req, {"ok": True})

    # -------------------- unknown --------------------
    return _err(req, "UNKNOWN_MSG", str(t))
