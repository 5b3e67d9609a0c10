from __future__ import annotations

from typing import Any

import pytest

from pulse_dsp.audio.context import AutoplayPolicy
from pulse_dsp.engine import AudioEngine
from tests.helpers import BIN20_HZ, StreamFactory, make_config, write_wav


@pytest.fixture
def stream_factory() -> StreamFactory:
    return StreamFactory()


@pytest.fixture
def sine_wav(tmp_path) -> str:
    return write_wav(tmp_path / "sine.wav")


@pytest.fixture
def other_wav(tmp_path) -> str:
    return write_wav(tmp_path / "other.wav", freq=2 * BIN20_HZ)


@pytest.fixture
def garbage_file(tmp_path) -> str:
    p = tmp_path / "not_audio.mp3"
    p.write_bytes(b"definitely not an audio stream" * 16)
    return str(p)


@pytest.fixture
def make_engine(stream_factory):
    """AudioEngine with fake output streams and the given autoplay policy."""

    def _make(mode: str = "allow", **cfg: Any) -> AudioEngine:
        return AudioEngine(
            make_config(**cfg),
            policy=AutoplayPolicy(mode=mode),
            stream_factory=stream_factory,
        )

    return _make
