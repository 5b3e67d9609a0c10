# pulse_dsp/engine.py
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set

from .audio.context import AutoplayPolicy, StreamFactory
from .audio.source import AudioSourceManager, SourceHandle
from .config import AnalyzerConfig
from .control import handle_control as handle_control_router
from .dsp.core import BandExtractor, BandParams
from .dsp.smoothing import SmoothingFilter
from .gate import PlaybackGate
from .gesture import GestureSource, LocalGestureSource
from .sampler import SpectrumSampler
from .state import SILENT, AudioSignal, EventCallback, PlaybackState, RuntimeState
from .telemetry import emit as telemetry_emit, emit_signal, status_message

logger = logging.getLogger(__name__)

SignalListener = Callable[[AudioSignal], None]


class AudioEngine:
    """
    Одна сессия анализатора (ключ - source URL):
    - НЕ поднимает WS/HTTP
    - tick() -> AudioSignal (внешний frame loop или свой _frame_loop)
    - handle_control(msg) -> response msg (контракт в control.py)
    - telemetry наружу через set_event_callback(cb)
    - audio thread никогда не трогает state, только ring buffer анализатора
    """

    def __init__(
        self,
        cfg: AnalyzerConfig | None = None,
        policy: AutoplayPolicy | None = None,
        gestures: GestureSource | None = None,
        stream_factory: Optional[StreamFactory] = None,
    ) -> None:
        self.cfg = cfg or AnalyzerConfig()
        self.state = RuntimeState()

        self.gestures: GestureSource = gestures if gestures is not None else LocalGestureSource()
        self.source = AudioSourceManager(self.cfg, policy=policy, stream_factory=stream_factory)
        self.gate = PlaybackGate(
            self.source,
            gestures=self.gestures,
            strategy=self.cfg.autoplay_strategy,
            on_change=self._on_gate_change,
        )
        self.extractor = BandExtractor(
            BandParams(
                bass_range=self.cfg.bass_range,
                mid_range=self.cfg.mid_range,
                treble_range=self.cfg.treble_range,
                max_sample_value=self.cfg.max_sample_value,
            )
        )
        self.smoothing = SmoothingFilter(
            self.cfg.smoothing_factors(),
            decay_factor=self.cfg.decay_factor,
            silence_threshold=self.cfg.silence_threshold,
        )
        self.sampler = SpectrumSampler(self.source, self.gate, self.extractor, self.smoothing)

        self._signal: AudioSignal = SILENT
        self._listeners: List[SignalListener] = []

        self._event_cb: Optional[EventCallback] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._frame_task: Optional[asyncio.Task] = None
        self._emit_tasks: Set[asyncio.Task] = set()
        # audio_set_source от разных клиентов не должны пересекаться
        self._source_lock = asyncio.Lock()

    # -------------------- lifecycle --------------------

    def set_event_callback(self, cb: EventCallback | None) -> None:
        self._event_cb = cb

    async def start(self, url: str | None = None) -> Optional[SourceHandle]:
        self._loop = asyncio.get_running_loop()
        self.state.shutting_down = False
        if self._frame_task is None or self._frame_task.done():
            self._frame_task = asyncio.create_task(self._frame_loop(), name="pulse.frame_loop")
        if url is not None:
            return await self.set_source(url)
        return None

    async def set_source(self, url: str) -> SourceHandle:
        """
        Тот же url при живой сессии -> no-op.
        Новый url -> teardown старой сессии и новый initialize.
        SourceError пробрасывается вызывающему.
        Параллельные вызовы выполняются по очереди.
        """
        async with self._source_lock:
            live = self.gate.state not in (PlaybackState.UNINITIALIZED, PlaybackState.CLOSED)
            if live and url == self.state.source_url and self.source.handle is not None:
                return self.source.handle

            if live:
                self._reset_session()

            self.state.source_url = url
            logger.info("Initializing audio source %s", url)
            try:
                return await self.gate.start(url)
            except Exception:
                self.state.source_url = None
                raise

    async def teardown(self) -> None:
        """Лёгкий teardown: frame loop отменён, media освобождён, контекст тёплый."""
        task = self._frame_task
        self._frame_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._reset_session()

    async def close(self) -> None:
        """Жёсткий shutdown: + закрытие audio context."""
        self.state.shutting_down = True
        await self.teardown()
        await self.source.shutdown()
        await self._flush_emits()

    def _reset_session(self) -> None:
        self.sampler.stop()
        self.state.sampling = False
        self.gate.teardown()
        self.smoothing.reset()
        self._signal = SILENT

    # -------------------- gate observer --------------------

    def _on_gate_change(self, st: PlaybackState) -> None:
        self.state.playback = st
        if st is PlaybackState.RUNNING and not self.sampler.active:
            self.sampler.start()
            self.state.sampling = True
        self._emit_sync(status_message(self.status_payload()))

    # -------------------- telemetry helpers --------------------

    def _emit_sync(self, msg: Dict[str, Any]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed() or self._event_cb is None:
            return
        loop.call_soon_threadsafe(self._spawn_emit, msg)

    def _spawn_emit(self, msg: Dict[str, Any]) -> None:
        # корутина создаётся уже в потоке loop, task держим до завершения
        task = asyncio.get_running_loop().create_task(telemetry_emit(self._event_cb, msg))
        self._emit_tasks.add(task)
        task.add_done_callback(self._emit_tasks.discard)

    async def _flush_emits(self) -> None:
        # даём отработать уже запланированным _spawn_emit
        await asyncio.sleep(0)
        if self._emit_tasks:
            await asyncio.gather(*list(self._emit_tasks), return_exceptions=True)

    async def emit(self, msg: Dict[str, Any]) -> None:
        await telemetry_emit(self._event_cb, msg)

    # -------------------- observable signal --------------------

    def add_listener(self, cb: SignalListener) -> None:
        self._listeners.append(cb)

    def remove_listener(self, cb: SignalListener) -> None:
        if cb in self._listeners:
            self._listeners.remove(cb)

    @property
    def signal(self) -> AudioSignal:
        return self._signal

    @property
    def playback_state(self) -> PlaybackState:
        return self.gate.state

    @property
    def awaiting_gesture(self) -> bool:
        return self.gate.awaiting_gesture

    def tick(self) -> AudioSignal | None:
        sig = self.sampler.tick()
        if sig is None:
            return None
        self._signal = sig
        self.state.ticks += 1
        for cb in list(self._listeners):
            cb(sig)
        return sig

    # -------------------- transport --------------------

    async def pause(self) -> None:
        self.gate.pause()

    async def resume(self) -> bool:
        return await self.gate.resume()

    async def gesture(self, kind: str) -> bool:
        dispatch = getattr(self.gestures, "dispatch", None)
        if dispatch is None:
            raise TypeError("gesture source does not accept dispatched gestures")
        return await dispatch(kind)

    # -------------------- frame loop --------------------

    async def _frame_loop(self) -> None:
        interval = 1.0 / max(1.0, float(self.cfg.fps))
        next_status = time.monotonic() + float(self.cfg.status_log_interval)
        while not self.state.shutting_down:
            sig = self.tick()
            if sig is not None and self._event_cb is not None:
                await emit_signal(self._event_cb, sig)

            now = time.monotonic()
            if now >= next_status:
                logger.debug("Audio status: %s", self.debug_snapshot())
                next_status = now + float(self.cfg.status_log_interval)

            await asyncio.sleep(interval)

    # -------------------- status --------------------

    def status_payload(self) -> Dict[str, Any]:
        return {
            "state": self.gate.state.value,
            "awaitingGesture": self.gate.awaiting_gesture,
            "isPlaying": self.gate.is_playing,
            "volume": float(self._signal.volume),
            "sourceUrl": self.state.source_url,
        }

    def debug_snapshot(self) -> Dict[str, Any]:
        media = self.source.media
        ctx_state = self.source.context_state
        return {
            "state": self.gate.state.value,
            "context": None if ctx_state is None else ctx_state.value,
            "sampleRate": self.source.sample_rate,
            "paused": self.source.is_paused,
            "muted": None if media is None else media.muted,
            "volume": None if media is None else media.volume,
            "currentTime": None if media is None else round(media.current_time, 1),
            "duration": None if media is None else round(media.duration, 1),
            "ticks": self.state.ticks,
            "signal": self._signal.to_payload(),
        }

    # -------------------- control entrypoint --------------------

    async def handle_control(self, msg: Dict[str, Any]) -> Dict[str, Any] | None:
        return await handle_control_router(self, msg)
