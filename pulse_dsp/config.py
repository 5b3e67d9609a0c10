# pulse_dsp/config.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass
class AnalyzerConfig:
    # frame loop
    fps: int = 60
    status_log_interval: float = 5.0

    # output stream (audio context)
    sample_rate: int = 48000
    block: int = 512
    channels: int = 2

    # analyser node (hardware-side smoothing, NOT the SmoothingFilter)
    fft_size: int = 256
    smoothing_time_constant: float = 0.8
    min_decibels: float = -100.0
    max_decibels: float = -30.0

    # band index ranges [start, end) over the byte spectrum.
    # Fixed bins, not derived from sample rate: simplification, not a filter bank.
    bass_range: Tuple[int, int] = (0, 10)
    mid_range: Tuple[int, int] = (10, 40)
    treble_range: Tuple[int, int] = (40, 128)
    max_sample_value: float = 255.0

    # SmoothingFilter (EMA per channel)
    volume_smoothing: float = 0.8
    bass_smoothing: float = 0.85
    mid_smoothing: float = 0.7
    treble_smoothing: float = 0.6
    decay_factor: float = 0.92
    silence_threshold: float = 0.01

    # media element
    loop: bool = True
    initial_volume: float = 0.8
    load_timeout: float = 3.0
    probe_timeout: float = 5.0

    # "muted-first" | "unmuted"
    autoplay_strategy: str = "muted-first"

    def smoothing_factors(self) -> dict:
        return {
            "volume": self.volume_smoothing,
            "bass": self.bass_smoothing,
            "mid": self.mid_smoothing,
            "treble": self.treble_smoothing,
        }


@dataclass
class ServerConfig:
    # HTTP + WS (telemetry/control/gesture)
    host: str = "0.0.0.0"
    port: int = 8000
    ws_endpoint: str = "/ws"

    # "allow" | "muted-only" | "gesture"
    autoplay_policy: str = "allow"

    source_url: Optional[str] = None
