# pulse_dsp/dsp/smoothing.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, Mapping, Tuple

from .core import BandLevels

CHANNELS = ("volume", "bass", "mid", "treble")

# ниже этого при decay сбрасываем в 0 (иначе denormals и "вечный хвост")
DECAY_FLOOR = 1e-4


@dataclass
class ChannelSmoothing:
    value: float = 0.0
    factor: float = 0.8


@dataclass
class SmoothingState:
    volume: ChannelSmoothing = field(default_factory=lambda: ChannelSmoothing(factor=0.8))
    bass: ChannelSmoothing = field(default_factory=lambda: ChannelSmoothing(factor=0.85))
    mid: ChannelSmoothing = field(default_factory=lambda: ChannelSmoothing(factor=0.7))
    treble: ChannelSmoothing = field(default_factory=lambda: ChannelSmoothing(factor=0.6))

    def channels(self) -> Iterator[Tuple[str, ChannelSmoothing]]:
        for name in CHANNELS:
            yield name, getattr(self, name)

    def values(self) -> Dict[str, float]:
        return {name: ch.value for name, ch in self.channels()}


class SmoothingFilter:
    """
    EMA по каналам volume/bass/mid/treble:
        smoothed' = smoothed * factor + raw * (1 - factor)

    Если источник не играет (active=False) или raw volume < silence_threshold,
    вместо EMA применяется чистый decay:
        smoothed' = smoothed * decay_factor
    -> плавное затухание в 0 без "щелчка" в визуале.
    """

    def __init__(
        self,
        factors: Mapping[str, float] | None = None,
        decay_factor: float = 0.92,
        silence_threshold: float = 0.01,
    ):
        self.state = SmoothingState()
        self.decay_factor = 0.92
        self.silence_threshold = 0.01
        self.configure(factors=factors, decay_factor=decay_factor, silence_threshold=silence_threshold)

    def configure(
        self,
        factors: Mapping[str, float] | None = None,
        decay_factor: float | None = None,
        silence_threshold: float | None = None,
    ) -> None:
        """Всё или ничего: при любой ошибке фильтр не меняется."""
        checked: Dict[str, float] = {}
        for name, f in (factors or {}).items():
            if name not in CHANNELS:
                raise ValueError(f"Unknown smoothing channel: {name}")
            f = float(f)
            if not 0.0 <= f < 1.0:
                raise ValueError(f"{name} smoothing factor must be in [0, 1), got {f}")
            checked[name] = f

        d = None
        if decay_factor is not None:
            d = float(decay_factor)
            if not 0.0 < d < 1.0:
                raise ValueError(f"decay_factor must be in (0, 1), got {d}")

        threshold = None if silence_threshold is None else max(0.0, float(silence_threshold))

        for name, f in checked.items():
            getattr(self.state, name).factor = f
        if d is not None:
            self.decay_factor = d
        if threshold is not None:
            self.silence_threshold = threshold

    def update(self, levels: BandLevels, active: bool = True) -> Dict[str, float]:
        if not active or levels.volume < self.silence_threshold:
            return self.decay()

        for name, ch in self.state.channels():
            raw = float(getattr(levels, name))
            v = ch.value * ch.factor + raw * (1.0 - ch.factor)
            ch.value = min(1.0, max(0.0, v))
        return self.state.values()

    def decay(self) -> Dict[str, float]:
        for _, ch in self.state.channels():
            v = ch.value * self.decay_factor
            ch.value = v if v >= DECAY_FLOOR else 0.0
        return self.state.values()

    def reset(self) -> None:
        for _, ch in self.state.channels():
            ch.value = 0.0

    @property
    def values(self) -> Dict[str, float]:
        return self.state.values()
