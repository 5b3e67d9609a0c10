# pulse_dsp/audio/context.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

import numpy as np

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

from ..dsp.analyser import AnalyserNode
from ..errors import ContextClosed, ContextError
from .media import MediaElement

logger = logging.getLogger(__name__)

AUTOPLAY_MODES = ("allow", "muted-only", "gesture")

StreamFactory = Callable[..., Any]
StateListener = Callable[[str], None]


class ContextState(str, Enum):
    SUSPENDED = "suspended"
    RUNNING = "running"
    CLOSED = "closed"


@dataclass
class AutoplayPolicy:
    """
    Политика автозапуска.

    mode:
      allow      - звук разрешён сразу (десктоп)
      muted-only - без жеста разрешено только muted воспроизведение, контекст не стартует
      gesture    - без жеста нельзя ничего

    user_activated: "липкий" флаг, ставится первым пользовательским жестом.
    """

    mode: str = "allow"
    user_activated: bool = False

    def __post_init__(self) -> None:
        if self.mode not in AUTOPLAY_MODES:
            raise ValueError(f"Unknown autoplay policy: {self.mode}")

    def allows_playback(self, muted: bool) -> bool:
        if self.mode == "allow" or self.user_activated:
            return True
        return self.mode == "muted-only" and muted

    def allows_context_start(self) -> bool:
        return self.mode == "allow" or self.user_activated

    def activate(self) -> None:
        self.user_activated = True


def _default_stream_factory(**kwargs) -> Any:
    if sd is None:
        raise ContextError("sounddevice is not available")
    return sd.OutputStream(**kwargs)


class AudioContext:
    """
    Граф: MediaElement -> AnalyserNode -> destination (sounddevice.OutputStream).

    Состояния: suspended -> running -> (suspended) -> closed.
    - resume(): стартует stream, если политика позволяет
    - stream callback (PortAudio thread) -> render()
    - если stream остановился сам (устройство пропало и т.п.) -> platform suspend
    """

    def __init__(
        self,
        sample_rate: int = 48000,
        channels: int = 2,
        block: int = 512,
        policy: Optional[AutoplayPolicy] = None,
        stream_factory: Optional[StreamFactory] = None,
    ) -> None:
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.block = int(block)
        self.policy = policy or AutoplayPolicy()
        self._stream_factory = stream_factory or _default_stream_factory

        self.state = ContextState.SUSPENDED
        self._stream: Optional[Any] = None
        self._stopping = False

        self._media: Optional[MediaElement] = None
        self._analyser: Optional[AnalyserNode] = None

        self._listeners: List[StateListener] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # -------------------- graph --------------------

    def create_analyser(self, **kwargs) -> AnalyserNode:
        return AnalyserNode(**kwargs)

    def connect(self, media: Optional[MediaElement], analyser: Optional[AnalyserNode]) -> None:
        self._media = media
        self._analyser = analyser

    def disconnect(self) -> None:
        self._media = None
        self._analyser = None

    @property
    def analyser(self) -> Optional[AnalyserNode]:
        return self._analyser

    # -------------------- state --------------------

    def add_listener(self, cb: StateListener) -> None:
        self._listeners.append(cb)

    def _set_state(self, state: ContextState) -> None:
        if self.state is state:
            return
        self.state = state
        logger.info("Audio context -> %s", state.value)
        for cb in list(self._listeners):
            cb("statechange")

    async def resume(self) -> bool:
        if self.state is ContextState.CLOSED:
            raise ContextClosed("audio context is closed")
        if self.state is ContextState.RUNNING:
            return True
        if not self.policy.allows_context_start():
            logger.info("Audio context resume needs a user gesture (policy=%s)", self.policy.mode)
            return False

        self._loop = asyncio.get_running_loop()
        await asyncio.to_thread(self._start_stream)
        self._set_state(ContextState.RUNNING)
        return True

    async def suspend(self) -> None:
        if self.state is not ContextState.RUNNING:
            return
        await asyncio.to_thread(self._stop_stream)
        self._set_state(ContextState.SUSPENDED)

    async def close(self) -> None:
        if self.state is ContextState.CLOSED:
            return
        await asyncio.to_thread(self._close_stream)
        self.disconnect()
        self._set_state(ContextState.CLOSED)

    def platform_suspend(self) -> None:
        """Контекст остановлен платформой (не нами). Только из потока event loop."""
        if self.state is not ContextState.RUNNING:
            return
        self._stop_stream()
        self._set_state(ContextState.SUSPENDED)

    # -------------------- stream I/O --------------------

    def _start_stream(self) -> None:
        try:
            if self._stream is None:
                self._stream = self._stream_factory(
                    samplerate=self.sample_rate,
                    channels=self.channels,
                    dtype="float32",
                    blocksize=self.block,
                    callback=self._callback,
                    finished_callback=self._finished_callback,
                )
            self._stopping = False
            self._stream.start()
        except ContextError:
            raise
        except Exception as e:
            self._close_stream()
            raise ContextError(f"could not start audio output: {e}") from e

    def _stop_stream(self) -> None:
        st = self._stream
        if st is None:
            return
        self._stopping = True
        try:
            st.stop()
        except Exception as e:
            logger.warning("Audio output stop failed: %r", e)

    def _close_stream(self) -> None:
        st = self._stream
        self._stream = None
        if st is None:
            return
        self._stopping = True
        try:
            st.stop()
        except Exception:
            pass
        try:
            st.close()
        except Exception:
            pass

    def _finished_callback(self) -> None:
        # PortAudio thread
        if self._stopping:
            return
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self.platform_suspend)

    def _callback(self, outdata, frames, time_info, status) -> None:
        # audio callback: NEVER block, NEVER allocate heavy stuff
        try:
            outdata[:] = self.render(frames)
        except Exception:
            outdata.fill(0)

    def render(self, frames: int) -> np.ndarray:
        """Один render quantum: media -> analyser -> destination."""
        media = self._media
        if media is None:
            block = np.zeros((int(frames), self.channels), dtype=np.float32)
        else:
            block = media.read(frames)
        analyser = self._analyser
        if analyser is not None:
            analyser.push(block.mean(axis=1))
        return block
