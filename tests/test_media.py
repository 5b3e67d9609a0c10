"""Tests for pulse_dsp/audio/media.py."""

from __future__ import annotations

import asyncio

import numpy as np
import pytest

from pulse_dsp.audio.media import HAVE_ENOUGH_DATA, HAVE_NOTHING, MediaElement
from pulse_dsp.errors import DecodeFailed, DecodeNotReady, SourceUnreachable

from tests.helpers import write_wav


def _recorder(media: MediaElement, *events: str):
    seen = []
    for ev in events:
        media.add_listener(ev, seen.append)
    return seen


def test_play_before_load_is_not_ready():
    media = MediaElement("/nowhere.wav")
    with pytest.raises(DecodeNotReady):
        media.play()
    assert media.paused


def test_read_without_data_is_silence():
    media = MediaElement("/nowhere.wav", channels=2)
    out = media.read(64)
    assert out.shape == (64, 2)
    assert not out.any()


@pytest.mark.asyncio
async def test_load_dispatches_loadeddata(sine_wav):
    media = MediaElement(sine_wav)
    seen = _recorder(media, "loadeddata", "error")
    await media.load()
    assert seen == ["loadeddata"]
    assert media.is_ready
    assert media.ready_state == HAVE_ENOUGH_DATA
    assert media.duration == pytest.approx(0.5, abs=1e-3)


@pytest.mark.asyncio
async def test_load_resamples_to_context_rate(tmp_path):
    path = write_wav(tmp_path / "cd.wav", seconds=0.5, sr=44100)
    media = MediaElement(path, sample_rate=48000, channels=2)
    await media.load()
    assert media.duration == pytest.approx(0.5, abs=2e-3)
    assert media.read(1).shape == (1, 2)


@pytest.mark.asyncio
async def test_load_missing_file_dispatches_error(tmp_path):
    media = MediaElement(str(tmp_path / "missing.wav"))
    seen = _recorder(media, "loadeddata", "error")
    with pytest.raises(SourceUnreachable):
        await media.load()
    assert seen == ["error"]
    assert isinstance(media.error, SourceUnreachable)


@pytest.mark.asyncio
async def test_load_garbage_is_decode_failure(garbage_file):
    media = MediaElement(garbage_file)
    with pytest.raises(DecodeFailed):
        await media.load()
    assert not media.is_ready


@pytest.mark.asyncio
async def test_volume_and_mute_gain(tmp_path):
    path = write_wav(tmp_path / "dc.wav", constant=0.5)
    media = MediaElement(path, volume=0.8)
    await media.load()
    media.play()

    assert np.allclose(media.read(32), 0.4)
    media.muted = True
    assert not media.read(32).any()
    media.muted = False
    media.volume = 1.0
    assert np.allclose(media.read(32), 0.5)


@pytest.mark.asyncio
async def test_paused_reads_silence_and_keeps_position(tmp_path):
    path = write_wav(tmp_path / "dc.wav", constant=0.5)
    media = MediaElement(path)
    await media.load()
    media.play()
    media.read(100)
    media.pause()
    assert not media.read(100).any()
    assert media.current_time == pytest.approx(100 / 48000)


@pytest.mark.asyncio
async def test_loop_wraps_around(tmp_path):
    # 480 frames, read 1000 -> wraps twice, never ends
    path = write_wav(tmp_path / "short.wav", seconds=0.01, constant=0.25)
    media = MediaElement(path, volume=1.0, loop=True)
    seen = _recorder(media, "ended")
    await media.load()
    media.play()

    out = media.read(1000)
    assert np.allclose(out, 0.25)
    await asyncio.sleep(0)
    assert seen == []
    assert not media.paused


@pytest.mark.asyncio
async def test_no_loop_ends_and_pauses(tmp_path):
    path = write_wav(tmp_path / "short.wav", seconds=0.01, constant=0.25)
    media = MediaElement(path, volume=1.0, loop=False)
    seen = _recorder(media, "ended")
    await media.load()
    media.play()

    out = media.read(1000)
    assert np.allclose(out[:480], 0.25)
    assert not out[480:].any()
    assert media.ended and media.paused

    # "ended" goes through the event loop
    await asyncio.sleep(0)
    assert seen == ["ended"]

    # play() after the end restarts from zero
    media.play()
    assert media.current_time == 0.0
    assert not media.ended


@pytest.mark.asyncio
async def test_play_pause_events_fire_once(sine_wav):
    media = MediaElement(sine_wav)
    seen = _recorder(media, "play", "pause")
    await media.load()
    media.play()
    media.play()
    media.pause()
    media.pause()
    assert seen == ["play", "pause"]


@pytest.mark.asyncio
async def test_release_is_silent(sine_wav):
    media = MediaElement(sine_wav)
    seen = _recorder(media, "play", "pause")
    await media.load()
    media.play()
    media.release()
    assert seen == ["play"]
    assert media.paused
    assert media.ready_state == HAVE_NOTHING
    assert not media.read(16).any()
