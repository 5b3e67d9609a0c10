# pulse_dsp/sampler.py
from __future__ import annotations

import numpy as np

from .audio.source import AudioSourceManager
from .dsp.core import BandExtractor
from .dsp.smoothing import SmoothingFilter
from .gate import PlaybackGate
from .state import AudioSignal


class SpectrumSampler:
    """
    Один tick на кадр рендера (вызывается внешним frame loop, своего таймера нет).

    Активируется при первом RUNNING и НЕ останавливается на pause/suspend:
    значения плавно затухают до нуля. Останавливается только на teardown.
    """

    def __init__(
        self,
        source: AudioSourceManager,
        gate: PlaybackGate,
        extractor: BandExtractor,
        smoothing: SmoothingFilter,
    ) -> None:
        self.source = source
        self.gate = gate
        self.extractor = extractor
        self.smoothing = smoothing
        self.active = False

    def start(self) -> None:
        self.active = True

    def stop(self) -> None:
        self.active = False

    def _frame(self) -> np.ndarray:
        frame = self.source.read_frame()
        if frame is None:
            # граф уже разобран: тишина
            return np.zeros(int(self.source.cfg.fft_size) // 2, dtype=np.uint8)
        return frame

    def tick(self) -> AudioSignal | None:
        if not self.active:
            return None

        playing = self.gate.is_playing
        levels = self.extractor.extract(self._frame(), self.source.sample_rate)
        sm = self.smoothing.update(levels, active=playing)

        return AudioSignal(
            volume=sm["volume"],
            frequency=levels.frequency if playing else 0.0,
            bass=sm["bass"],
            mid=sm["mid"],
            treble=sm["treble"],
            is_playing=playing,
        )
