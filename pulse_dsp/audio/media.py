# pulse_dsp/audio/media.py
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, Dict, List, Optional

import numpy as np

from . import fetch
from ..errors import DecodeNotReady, SourceError

logger = logging.getLogger(__name__)

MediaListener = Callable[[str], None]

HAVE_NOTHING = 0
HAVE_ENOUGH_DATA = 4


class MediaElement:
    """
    Декодируемый аудио-элемент (аналог <audio>):
    - load(): fetch + decode (soundfile) в thread-пуле
    - read(): вызывается из audio callback, отдаёт (frames, channels) с учётом volume/muted/loop
    - play()/pause() + события play/pause/ended/loadeddata/error

    ВАЖНО: события из audio thread (ended) маршалятся в event loop через
    call_soon_threadsafe, listeners всегда вызываются в потоке event loop.
    """

    def __init__(
        self,
        src: str,
        sample_rate: int = 48000,
        channels: int = 2,
        loop: bool = True,
        volume: float = 0.8,
        muted: bool = False,
    ) -> None:
        self.src = src
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.loop = bool(loop)
        self.volume = float(volume)
        self.muted = bool(muted)

        self.paused = True
        self.ended = False
        self.ready_state = HAVE_NOTHING
        self.error: Optional[BaseException] = None

        self._data: Optional[np.ndarray] = None
        self._pos = 0  # frames
        self._pos_lock = threading.Lock()

        self._listeners: Dict[str, List[MediaListener]] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # -------------------- events --------------------

    def add_listener(self, event: str, cb: MediaListener) -> None:
        self._listeners.setdefault(event, []).append(cb)

    def remove_listener(self, event: str, cb: MediaListener) -> None:
        cbs = self._listeners.get(event, [])
        if cb in cbs:
            cbs.remove(cb)

    def _dispatch(self, event: str) -> None:
        for cb in list(self._listeners.get(event, [])):
            cb(event)

    def _dispatch_threadsafe(self, event: str) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._dispatch, event)

    # -------------------- loading --------------------

    @property
    def is_ready(self) -> bool:
        return self._data is not None

    @property
    def duration(self) -> float:
        if self._data is None or self.sample_rate <= 0:
            return 0.0
        return float(self._data.shape[0]) / float(self.sample_rate)

    @property
    def current_time(self) -> float:
        return float(self._pos) / float(self.sample_rate) if self.sample_rate > 0 else 0.0

    async def load(self, timeout: float = 30.0) -> None:
        """
        fetch -> decode -> resample к rate контекста -> stereo.
        Ошибки (SourceError) пробрасываются и дублируются событием "error".
        """
        self._loop = asyncio.get_running_loop()
        try:
            raw = await fetch.fetch_bytes(self.src, timeout=timeout)
            data, sr = await asyncio.to_thread(fetch.decode, raw)
            if sr != self.sample_rate:
                data = await asyncio.to_thread(fetch.resample, data, sr, self.sample_rate)
            data = fetch.to_channels(data, self.channels)
        except SourceError as e:
            self.error = e
            logger.error("Audio loading error for %s: %s", self.src, e)
            self._dispatch("error")
            raise

        self._data = data
        self.ready_state = HAVE_ENOUGH_DATA
        logger.info(
            "Audio loaded %s: duration=%.2fs sr=%d (source sr=%d) ch=%d",
            self.src, self.duration, self.sample_rate, sr, self.channels,
        )
        self._dispatch("loadeddata")

    # -------------------- transport --------------------

    def play(self) -> None:
        if self._data is None:
            raise DecodeNotReady(f"{self.src} is not decoded yet")
        if not self.paused:
            return
        if self.ended:
            self.seek(0.0)
            self.ended = False
        self.paused = False
        self._dispatch("play")

    def pause(self) -> None:
        if self.paused:
            return
        self.paused = True
        self._dispatch("pause")

    def seek(self, seconds: float) -> None:
        with self._pos_lock:
            frames = 0 if self._data is None else int(self._data.shape[0])
            self._pos = max(0, min(int(float(seconds) * self.sample_rate), frames))

    def release(self) -> None:
        """Освобождает decode pipeline (после teardown элемент не играет)."""
        self.paused = True
        with self._pos_lock:
            self._data = None
            self._pos = 0
        self.ready_state = HAVE_NOTHING
        self._listeners.clear()

    # -------------------- audio thread --------------------

    def read(self, frames: int) -> np.ndarray:
        """
        Audio callback: NEVER block, при паузе/отсутствии данных -> нули.
        """
        out = np.zeros((int(frames), self.channels), dtype=np.float32)
        data = self._data
        if data is None or self.paused or frames <= 0:
            return out

        n = int(data.shape[0])
        ended = False
        with self._pos_lock:
            pos = self._pos
            written = 0
            while written < frames and n > 0:
                if pos >= n:
                    if not self.loop:
                        ended = True
                        break
                    pos = 0
                take = min(frames - written, n - pos)
                out[written:written + take] = data[pos:pos + take]
                pos += take
                written += take
            self._pos = pos

        gain = 0.0 if self.muted else float(self.volume)
        if gain != 1.0:
            out *= gain

        if ended:
            self.ended = True
            self.paused = True
            self._dispatch_threadsafe("ended")
        return out
