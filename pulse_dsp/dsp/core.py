# pulse_dsp/dsp/core.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np


@dataclass
class BandParams:
    bass_range: Tuple[int, int] = (0, 10)
    mid_range: Tuple[int, int] = (10, 40)
    treble_range: Tuple[int, int] = (40, 128)

    # byte spectrum: 0..255
    max_sample_value: float = 255.0


@dataclass(frozen=True)
class BandLevels:
    """Сырые (несглаженные) значения одного кадра."""

    volume: float = 0.0
    bass: float = 0.0
    mid: float = 0.0
    treble: float = 0.0
    frequency: float = 0.0  # kHz


def _clip01(x: float) -> float:
    return float(min(1.0, max(0.0, x)))


def rms_volume(frame: np.ndarray, max_value: float = 255.0) -> float:
    """sqrt(mean(x^2)) / max_value"""
    x = np.asarray(frame, dtype=np.float64)
    if x.size == 0 or max_value <= 0:
        return 0.0
    return _clip01(float(np.sqrt(np.mean(x * x))) / float(max_value))


def band_energy(frame: np.ndarray, start: int, end: int, max_value: float = 255.0) -> float:
    """
    Среднее по [start, end), нормированное на max_value.

    Делим на номинальную ширину полосы (end - start), даже если кадр короче:
    недостающие бины считаются нулями.
    """
    count = int(end) - int(start)
    if count <= 0 or max_value <= 0:
        return 0.0
    x = np.asarray(frame, dtype=np.float64)
    a = max(0, int(start))
    b = min(int(end), int(x.size))
    total = float(np.sum(x[a:b])) if b > a else 0.0
    return _clip01(total / count / float(max_value))


def dominant_frequency(frame: np.ndarray, sample_rate: float) -> float:
    """
    Индекс максимального бина -> (k / N) * (sample_rate / 2), в kHz.
    При равных максимумах берётся первый; пустой/нулевой кадр -> 0.
    """
    x = np.asarray(frame)
    n = int(x.size)
    if n == 0:
        return 0.0
    k = int(np.argmax(x))
    hz = (k / float(n)) * (float(sample_rate) / 2.0)
    return max(0.0, hz / 1000.0)


def extract_bands(frame: np.ndarray, sample_rate: float, params: BandParams | None = None) -> BandLevels:
    p = params or BandParams()
    mx = float(p.max_sample_value)
    return BandLevels(
        volume=rms_volume(frame, mx),
        bass=band_energy(frame, p.bass_range[0], p.bass_range[1], mx),
        mid=band_energy(frame, p.mid_range[0], p.mid_range[1], mx),
        treble=band_energy(frame, p.treble_range[0], p.treble_range[1], mx),
        frequency=dominant_frequency(frame, sample_rate),
    )


class BandExtractor:
    """
    Stateless обёртка над extract_bands с фиксированными параметрами.
    Полосы заданы индексами бинов, а не частотами.
    """

    def __init__(self, params: BandParams | None = None):
        self.params = params or BandParams()

    def set_params(self, **kwargs) -> None:
        for k, v in kwargs.items():
            if hasattr(self.params, k):
                setattr(self.params, k, v)

    def extract(self, frame: np.ndarray, sample_rate: float) -> BandLevels:
        return extract_bands(frame, sample_rate, self.params)
