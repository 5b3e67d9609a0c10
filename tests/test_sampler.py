"""Tests for pulse_dsp/sampler.py with stubbed source and gate."""

from __future__ import annotations

import numpy as np
import pytest

from pulse_dsp.config import AnalyzerConfig
from pulse_dsp.dsp.core import BandExtractor, extract_bands
from pulse_dsp.dsp.smoothing import SmoothingFilter
from pulse_dsp.sampler import SpectrumSampler


class StubSource:
    def __init__(self, frame=None):
        self.cfg = AnalyzerConfig()
        self.sample_rate = 48000
        self.frame = frame

    def read_frame(self):
        return self.frame


class StubGate:
    def __init__(self, playing=True):
        self.is_playing = playing


def _frame():
    return np.array([10] * 10 + [50] * 30 + [5] * 88, dtype=np.uint8)


def _sampler(frame=None, playing=True):
    source = StubSource(frame)
    gate = StubGate(playing)
    sampler = SpectrumSampler(source, gate, BandExtractor(), SmoothingFilter())
    return sampler, source, gate


def test_inactive_sampler_produces_nothing():
    sampler, _, _ = _sampler(_frame())
    assert sampler.tick() is None


def test_converges_to_raw_levels_while_playing():
    sampler, _, _ = _sampler(_frame())
    sampler.start()
    for _ in range(300):
        sig = sampler.tick()

    raw = extract_bands(_frame(), 48000)
    assert sig.is_playing
    assert sig.volume == pytest.approx(raw.volume, abs=1e-6)
    assert sig.bass == pytest.approx(raw.bass, abs=1e-6)
    assert sig.mid == pytest.approx(raw.mid, abs=1e-6)
    assert sig.treble == pytest.approx(raw.treble, abs=1e-6)
    assert sig.frequency == pytest.approx(raw.frequency)


def test_not_playing_decays_and_reports_no_frequency():
    sampler, _, gate = _sampler(_frame())
    sampler.start()
    for _ in range(30):
        sampler.tick()

    gate.is_playing = False
    prev = sampler.tick()
    assert not prev.is_playing
    assert prev.frequency == 0.0
    for _ in range(50):
        cur = sampler.tick()
        assert cur.volume < prev.volume
        assert cur.bass < prev.bass
        prev = cur


def test_torn_down_graph_reads_as_silence():
    sampler, source, _ = _sampler(_frame())
    sampler.start()
    for _ in range(10):
        sampler.tick()
    before = sampler.smoothing.values["volume"]

    source.frame = None
    sig = sampler.tick()
    assert sig.volume == pytest.approx(before * 0.92)
    assert sig.frequency == 0.0


def test_stop_ends_ticks():
    sampler, _, _ = _sampler(_frame())
    sampler.start()
    assert sampler.tick() is not None
    sampler.stop()
    assert sampler.tick() is None


def test_values_in_range_for_random_frames():
    rng = np.random.default_rng(3)
    sampler, source, gate = _sampler()
    sampler.start()
    for i in range(200):
        source.frame = rng.integers(0, 256, size=128, dtype=np.uint8)
        gate.is_playing = i % 7 != 0
        sig = sampler.tick()
        for v in (sig.volume, sig.bass, sig.mid, sig.treble):
            assert 0.0 <= v <= 1.0
        assert sig.frequency >= 0.0
