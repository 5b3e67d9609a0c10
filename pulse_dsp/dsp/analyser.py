# pulse_dsp/dsp/analyser.py
from __future__ import annotations

import threading

import numpy as np


class AnalyserNode:
    """
    Спектральный анализатор в стиле WebAudio AnalyserNode.

    - push(): пишет mono samples из audio callback (PortAudio thread)
    - get_byte_frequency_data(): вызывается из frame loop, берёт snapshot
      последних fft_size сэмплов под коротким lock (это и есть граница синхронизации)

    Pipeline snapshot -> bytes:
      blackman window -> |rfft| / N -> time smoothing (smoothing_time_constant)
      -> dB -> [min_decibels, max_decibels] -> 0..255
    """

    def __init__(
        self,
        fft_size: int = 256,
        smoothing_time_constant: float = 0.8,
        min_decibels: float = -100.0,
        max_decibels: float = -30.0,
    ) -> None:
        n = int(fft_size)
        if n < 32 or (n & (n - 1)) != 0:
            raise ValueError(f"fft_size must be a power of two >= 32, got {fft_size}")
        if not 0.0 <= float(smoothing_time_constant) <= 1.0:
            raise ValueError("smoothing_time_constant must be in [0, 1]")
        if float(max_decibels) <= float(min_decibels):
            raise ValueError("max_decibels must be greater than min_decibels")

        self.fft_size = n
        self.smoothing_time_constant = float(smoothing_time_constant)
        self.min_decibels = float(min_decibels)
        self.max_decibels = float(max_decibels)

        i = np.arange(n, dtype=np.float64)
        a = 0.16
        self._window = (
            (1.0 - a) / 2.0
            - 0.5 * np.cos(2.0 * np.pi * i / n)
            + (a / 2.0) * np.cos(4.0 * np.pi * i / n)
        )

        self._buf = np.zeros(n, dtype=np.float32)
        self._w = 0  # write cursor (monotonic)
        self._lock = threading.Lock()

        self._smoothed = np.zeros(self.frequency_bin_count, dtype=np.float64)

    @property
    def frequency_bin_count(self) -> int:
        return self.fft_size // 2

    def push(self, samples: np.ndarray) -> None:
        """
        Audio thread: NEVER block долго, только копия в ring buffer.
        """
        x = np.asarray(samples, dtype=np.float32).reshape(-1)
        n = int(x.size)
        if n <= 0:
            return
        cap = self.fft_size
        if n >= cap:
            x = x[-cap:]
            n = cap

        with self._lock:
            w0 = self._w % cap
            first = min(n, cap - w0)
            self._buf[w0:w0 + first] = x[:first]
            remain = n - first
            if remain > 0:
                self._buf[0:remain] = x[first:first + remain]
            self._w += n

    def snapshot(self) -> np.ndarray:
        """Последние fft_size сэмплов в хронологическом порядке."""
        with self._lock:
            w0 = self._w % self.fft_size
            return np.concatenate((self._buf[w0:], self._buf[:w0])).astype(np.float64)

    def get_float_frequency_data(self) -> np.ndarray:
        x = self.snapshot() * self._window
        spec = np.abs(np.fft.rfft(x))[: self.frequency_bin_count] / float(self.fft_size)

        tau = self.smoothing_time_constant
        sm = tau * self._smoothed + (1.0 - tau) * spec
        sm[~np.isfinite(sm)] = 0.0
        self._smoothed = sm

        with np.errstate(divide="ignore"):
            return 20.0 * np.log10(sm)

    def get_byte_frequency_data(self) -> np.ndarray:
        db = self.get_float_frequency_data()
        scale = 255.0 / (self.max_decibels - self.min_decibels)
        scaled = np.floor((db - self.min_decibels) * scale)
        scaled[~np.isfinite(scaled)] = 0.0
        return np.clip(scaled, 0, 255).astype(np.uint8)

    def reset(self) -> None:
        with self._lock:
            self._buf.fill(0)
            self._w = 0
        self._smoothed = np.zeros(self.frequency_bin_count, dtype=np.float64)
