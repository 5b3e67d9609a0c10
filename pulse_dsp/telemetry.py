# pulse_dsp/telemetry.py
from __future__ import annotations

import inspect
import logging
import time
from typing import Any, Dict, Optional

from .state import AudioSignal, EventCallback

logger = logging.getLogger(__name__)


async def _maybe_await(x: Any) -> None:
    """
    Позволяет event callback быть sync или async.
    """
    if x is None:
        return
    if inspect.isawaitable(x):
        await x


async def emit(event_cb: Optional[EventCallback], msg: Dict[str, Any]) -> None:
    """
    Безопасная публикация telemetry наружу (в WS слой).

    - msg это готовый JSON envelope {type, payload, reqId?, ts?}
    - Любая ошибка эмиттера НЕ должна убивать frame loop
    """
    if event_cb is None:
        return
    try:
        await _maybe_await(event_cb(msg))
    except Exception:
        # Don't kill the frame loop because UI/WS emitter failed
        logger.exception("Telemetry callback failed for %s", msg.get("type"))


def signal_message(signal: AudioSignal) -> Dict[str, Any]:
    return {"type": "audio_signal", "payload": signal.to_payload(), "ts": time.time()}


def status_message(payload: Dict[str, Any], req_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Контракт с презентационным слоем (overlay "click to start audio"):
      type: "audio_status"
      payload: {state, awaitingGesture, isPlaying, volume, sourceUrl}
    """
    msg: Dict[str, Any] = {"type": "audio_status", "payload": payload, "ts": time.time()}
    if req_id is not None:
        msg["reqId"] = req_id
    return msg


async def emit_signal(event_cb: Optional[EventCallback], signal: AudioSignal) -> None:
    await emit(event_cb, signal_message(signal))


async def emit_status(
    event_cb: Optional[EventCallback],
    payload: Dict[str, Any],
    req_id: Optional[str] = None,
) -> None:
    await emit(event_cb, status_message(payload, req_id=req_id))
