"""
Test doubles and small builders shared across the suite.

No test touches a real audio device: AudioContext gets a FakeStream
factory instead of sounddevice.OutputStream, and audio files are small
WAVs written into tmp_path with soundfile.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List

import numpy as np
import soundfile as sf

from pulse_dsp.config import AnalyzerConfig
from pulse_dsp.state import PlaybackState

SR = 48000
FFT_SIZE = 256
# bin 20 at 48 kHz / 256 -> 3750 Hz, exactly on a bin
BIN20_HZ = 20 * SR / FFT_SIZE


class FakeStream:
    """Stands in for sounddevice.OutputStream; the test drives render() itself."""

    def __init__(self, fail_start: bool = False, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.fail_start = fail_start
        self.active = False
        self.closed = False
        self.starts = 0

    def start(self) -> None:
        if self.fail_start:
            raise RuntimeError("device unavailable")
        self.active = True
        self.starts += 1

    def stop(self) -> None:
        self.active = False

    def close(self) -> None:
        self.active = False
        self.closed = True


class StreamFactory:
    """Records every stream it builds. ``fail`` makes new streams refuse to start."""

    def __init__(self) -> None:
        self.streams: List[FakeStream] = []
        self.fail = False

    def __call__(self, **kwargs: Any) -> FakeStream:
        st = FakeStream(fail_start=self.fail, **kwargs)
        self.streams.append(st)
        return st


def write_wav(
    path,
    seconds: float = 0.5,
    sr: int = SR,
    freq: float = BIN20_HZ,
    amplitude: float = 0.5,
    channels: int = 1,
    constant: float | None = None,
) -> str:
    n = int(round(seconds * sr))
    if constant is not None:
        mono = np.full(n, constant, dtype=np.float32)
    else:
        t = np.arange(n, dtype=np.float64) / sr
        mono = (amplitude * np.sin(2.0 * np.pi * freq * t)).astype(np.float32)
    data = np.repeat(mono[:, None], channels, axis=1)
    sf.write(str(path), data, sr, subtype="FLOAT")
    return str(path)


def make_config(**overrides: Any) -> AnalyzerConfig:
    defaults: Dict[str, Any] = {"load_timeout": 2.0, "fps": 100}
    defaults.update(overrides)
    return AnalyzerConfig(**defaults)


async def wait_for_state(gate, state: PlaybackState, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while gate.state is not state:
        if loop.time() > deadline:
            raise AssertionError(f"gate stuck in {gate.state.value}, expected {state.value}")
        await asyncio.sleep(0.005)
