# pulse_dsp/audio/source.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from ..config import AnalyzerConfig
from ..dsp.analyser import AnalyserNode
from ..errors import BlockedByPolicy, ContextError, DecodeNotReady
from . import fetch
from .context import AudioContext, AutoplayPolicy, ContextState, StreamFactory
from .media import MediaElement

logger = logging.getLogger(__name__)

SourceEventHandler = Callable[[str], None]


@dataclass(frozen=True)
class SourceHandle:
    url: str
    sample_rate: int
    frequency_bin_count: int
    probe: fetch.ProbeResult


class AudioSourceManager:
    """
    Владеет ровно одним MediaElement и одним графом анализа
    (media -> analyser -> output).

    - initialize(url): probe + decode pipeline + граф
    - ensure_context_active(): closed -> rebuild, suspended -> resume
    - play()/pause()/set_muted()
    - teardown(): останавливает и освобождает media, контекст остаётся "тёплым"
    - shutdown(): teardown + закрытие контекста

    События media/контекста (play, pause, ended, loadeddata, error, statechange)
    отдаются одному handler (PlaybackGate) синхронно.
    """

    def __init__(
        self,
        cfg: AnalyzerConfig | None = None,
        policy: AutoplayPolicy | None = None,
        stream_factory: Optional[StreamFactory] = None,
    ) -> None:
        self.cfg = cfg or AnalyzerConfig()
        self.policy = policy or AutoplayPolicy()
        self._stream_factory = stream_factory

        self.media: Optional[MediaElement] = None
        self.context: Optional[AudioContext] = None
        self.analyser: Optional[AnalyserNode] = None
        self.handle: Optional[SourceHandle] = None

        self._load_task: Optional[asyncio.Task] = None
        self._on_event: Optional[SourceEventHandler] = None

    # -------------------- events --------------------

    def set_event_handler(self, cb: SourceEventHandler | None) -> None:
        self._on_event = cb

    def _emit(self, name: str) -> None:
        cb = self._on_event
        if cb is not None:
            cb(name)

    # -------------------- graph --------------------

    def _new_context(self) -> AudioContext:
        ctx = AudioContext(
            sample_rate=self.cfg.sample_rate,
            channels=self.cfg.channels,
            block=self.cfg.block,
            policy=self.policy,
            stream_factory=self._stream_factory,
        )

        def _on_context_event(name: str) -> None:
            # события "старого" контекста после rebuild/shutdown не интересны
            if ctx is self.context:
                self._emit(name)

        ctx.add_listener(_on_context_event)
        return ctx

    def _wire(self) -> None:
        ctx = self.context
        if ctx is None:
            return
        self.analyser = ctx.create_analyser(
            fft_size=self.cfg.fft_size,
            smoothing_time_constant=self.cfg.smoothing_time_constant,
            min_decibels=self.cfg.min_decibels,
            max_decibels=self.cfg.max_decibels,
        )
        ctx.connect(self.media, self.analyser)

    # -------------------- lifecycle --------------------

    async def initialize(self, url: str) -> SourceHandle:
        """
        SourceUnreachable - probe не прошёл
        DecodeFailed      - decode упал до истечения load_timeout
        Timeout ожидания готовности НЕ ошибка: продолжаем оптимистично.
        """
        if self.media is not None:
            self.teardown()

        probe = await fetch.probe(url, timeout=self.cfg.probe_timeout)

        media = MediaElement(
            url,
            sample_rate=self.cfg.sample_rate,
            channels=self.cfg.channels,
            loop=self.cfg.loop,
            volume=self.cfg.initial_volume,
            muted=False,
        )
        for ev in ("play", "pause", "ended", "loadeddata", "error"):
            media.add_listener(ev, self._emit)
        self.media = media

        if self.context is None or self.context.state is ContextState.CLOSED:
            self.context = self._new_context()
        self._wire()

        self._load_task = asyncio.create_task(media.load(), name="pulse.media_load")
        try:
            await asyncio.wait_for(asyncio.shield(self._load_task), timeout=self.cfg.load_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Audio %s not ready after %.1fs, proceeding anyway", url, self.cfg.load_timeout
            )
            self._load_task.add_done_callback(self._log_late_load)
        except BaseException:
            self.teardown()
            raise

        self.handle = SourceHandle(
            url=url,
            sample_rate=self.context.sample_rate,
            frequency_bin_count=self.analyser.frequency_bin_count,
            probe=probe,
        )
        return self.handle

    @staticmethod
    def _log_late_load(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background audio load failed: %s", exc)

    async def ensure_context_active(self) -> bool:
        ctx = self.context
        if ctx is None or ctx.state is ContextState.CLOSED:
            logger.info("Audio context closed, rebuilding graph")
            try:
                self.context = self._new_context()
                self._wire()
            except Exception as e:
                raise ContextError(f"could not rebuild audio graph: {e}") from e
            ctx = self.context

        if ctx.state is ContextState.SUSPENDED:
            await ctx.resume()
        return ctx.state is ContextState.RUNNING

    async def play(self) -> None:
        media = self.media
        if media is None or not media.is_ready:
            raise DecodeNotReady("audio is not decoded yet")
        if not self.policy.allows_playback(muted=media.muted):
            raise BlockedByPolicy(f"autoplay rejected by policy={self.policy.mode} (muted={media.muted})")
        media.play()

    def pause(self) -> None:
        if self.media is not None:
            self.media.pause()

    def set_muted(self, muted: bool) -> None:
        media = self.media
        if media is None:
            return
        if not muted and not media.paused and not self.policy.allows_playback(muted=False):
            # как в браузере: unmute без жеста останавливает воспроизведение
            media.pause()
            raise BlockedByPolicy("unmuting requires a user gesture")
        media.muted = bool(muted)

    def note_user_activation(self) -> None:
        self.policy.activate()

    def teardown(self) -> None:
        task = self._load_task
        self._load_task = None
        if task is not None and not task.done():
            task.cancel()

        media = self.media
        self.media = None
        self.handle = None
        if media is not None:
            # release() ставит paused без события: gate сам переходит в CLOSED
            media.release()
        if self.context is not None:
            self.context.disconnect()
        self.analyser = None

    async def shutdown(self) -> None:
        self.teardown()
        ctx = self.context
        self.context = None
        if ctx is not None:
            await ctx.close()

    # -------------------- sampling --------------------

    @property
    def sample_rate(self) -> int:
        if self.context is not None:
            return self.context.sample_rate
        return int(self.cfg.sample_rate)

    @property
    def context_state(self) -> Optional[ContextState]:
        return None if self.context is None else self.context.state

    @property
    def context_running(self) -> bool:
        return self.context_state is ContextState.RUNNING

    @property
    def is_paused(self) -> bool:
        return self.media is None or self.media.paused

    def read_frame(self) -> Optional[np.ndarray]:
        analyser = self.analyser
        if analyser is None:
            return None
        return analyser.get_byte_frequency_data()
