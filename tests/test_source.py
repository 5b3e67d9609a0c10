"""Tests for pulse_dsp/audio/source.py (AudioSourceManager)."""

from __future__ import annotations

import asyncio

import pytest

from pulse_dsp.audio.context import AutoplayPolicy, ContextState
from pulse_dsp.audio.media import MediaElement
from pulse_dsp.audio.source import AudioSourceManager
from pulse_dsp.errors import BlockedByPolicy, DecodeFailed, DecodeNotReady, SourceUnreachable

from tests.helpers import make_config


def _manager(stream_factory, mode: str = "allow", **cfg) -> AudioSourceManager:
    return AudioSourceManager(make_config(**cfg), policy=AutoplayPolicy(mode), stream_factory=stream_factory)


@pytest.mark.asyncio
async def test_initialize_builds_graph(sine_wav, stream_factory):
    mgr = _manager(stream_factory)
    handle = await mgr.initialize(sine_wav)

    assert handle.url == sine_wav
    assert handle.sample_rate == 48000
    assert handle.frequency_bin_count == 128
    assert handle.probe.ok
    assert mgr.media.is_ready
    assert mgr.analyser is mgr.context.analyser
    # context is not started by initialize
    assert mgr.context_state is ContextState.SUSPENDED
    assert stream_factory.streams == []


@pytest.mark.asyncio
async def test_missing_file_is_unreachable(tmp_path, stream_factory):
    mgr = _manager(stream_factory)
    with pytest.raises(SourceUnreachable):
        await mgr.initialize(str(tmp_path / "gone.mp3"))
    assert mgr.media is None


@pytest.mark.asyncio
async def test_garbage_is_decode_failure(garbage_file, stream_factory):
    mgr = _manager(stream_factory)
    with pytest.raises(DecodeFailed):
        await mgr.initialize(garbage_file)
    assert mgr.media is None
    assert mgr.analyser is None


@pytest.mark.asyncio
async def test_slow_decode_proceeds_optimistically(sine_wav, stream_factory, monkeypatch):
    original = MediaElement.load

    async def slow_load(self, timeout=30.0):
        await asyncio.sleep(0.2)
        await original(self, timeout)

    monkeypatch.setattr(MediaElement, "load", slow_load)

    mgr = _manager(stream_factory, load_timeout=0.02)
    handle = await mgr.initialize(sine_wav)
    assert handle.url == sine_wav
    with pytest.raises(DecodeNotReady):
        await mgr.play()

    # the load keeps going in the background
    for _ in range(100):
        if mgr.media.is_ready:
            break
        await asyncio.sleep(0.01)
    assert mgr.media.is_ready
    await mgr.play()
    assert not mgr.is_paused
    await mgr.shutdown()


@pytest.mark.asyncio
async def test_play_needs_a_source(stream_factory):
    mgr = _manager(stream_factory)
    with pytest.raises(DecodeNotReady):
        await mgr.play()


@pytest.mark.asyncio
async def test_gesture_policy_blocks_play(sine_wav, stream_factory):
    mgr = _manager(stream_factory, mode="gesture")
    await mgr.initialize(sine_wav)
    mgr.set_muted(True)
    with pytest.raises(BlockedByPolicy):
        await mgr.play()
    assert mgr.is_paused

    mgr.note_user_activation()
    await mgr.play()
    assert not mgr.is_paused


@pytest.mark.asyncio
async def test_unmute_without_gesture_pauses(sine_wav, stream_factory):
    mgr = _manager(stream_factory, mode="muted-only")
    await mgr.initialize(sine_wav)
    mgr.set_muted(True)
    await mgr.play()
    assert not mgr.is_paused

    with pytest.raises(BlockedByPolicy):
        mgr.set_muted(False)
    assert mgr.is_paused
    assert mgr.media.muted


@pytest.mark.asyncio
async def test_events_are_forwarded(sine_wav, stream_factory):
    mgr = _manager(stream_factory)
    seen = []
    mgr.set_event_handler(seen.append)
    await mgr.initialize(sine_wav)
    await mgr.play()
    await mgr.ensure_context_active()
    mgr.pause()
    assert seen == ["loadeddata", "play", "statechange", "pause"]


@pytest.mark.asyncio
async def test_ensure_context_rebuilds_closed_graph(sine_wav, stream_factory):
    mgr = _manager(stream_factory)
    await mgr.initialize(sine_wav)
    old_ctx = mgr.context
    await old_ctx.close()

    assert await mgr.ensure_context_active() is True
    assert mgr.context is not old_ctx
    assert mgr.context_running
    assert mgr.analyser is mgr.context.analyser


@pytest.mark.asyncio
async def test_ensure_context_false_without_gesture(sine_wav, stream_factory):
    mgr = _manager(stream_factory, mode="gesture")
    await mgr.initialize(sine_wav)
    assert await mgr.ensure_context_active() is False
    mgr.note_user_activation()
    assert await mgr.ensure_context_active() is True


@pytest.mark.asyncio
async def test_teardown_keeps_context_warm(sine_wav, stream_factory):
    mgr = _manager(stream_factory)
    seen = []
    mgr.set_event_handler(seen.append)
    await mgr.initialize(sine_wav)
    await mgr.play()
    await mgr.ensure_context_active()
    ctx = mgr.context
    media = mgr.media
    seen.clear()

    mgr.teardown()
    assert mgr.media is None and mgr.analyser is None and mgr.handle is None
    assert media.paused and not media.is_ready
    assert mgr.context is ctx
    assert ctx.state is ContextState.RUNNING
    assert mgr.read_frame() is None
    # no pause event on teardown
    assert seen == []


@pytest.mark.asyncio
async def test_reinitialize_reuses_context(sine_wav, other_wav, stream_factory):
    mgr = _manager(stream_factory)
    await mgr.initialize(sine_wav)
    await mgr.ensure_context_active()
    ctx = mgr.context
    first_media = mgr.media

    handle = await mgr.initialize(other_wav)
    assert handle.url == other_wav
    assert mgr.context is ctx
    assert mgr.media is not first_media
    assert len(stream_factory.streams) == 1


@pytest.mark.asyncio
async def test_shutdown_closes_context(sine_wav, stream_factory):
    mgr = _manager(stream_factory)
    await mgr.initialize(sine_wav)
    await mgr.ensure_context_active()
    ctx = mgr.context
    await mgr.shutdown()
    assert mgr.context is None
    assert ctx.state is ContextState.CLOSED
    assert stream_factory.streams[0].closed


@pytest.mark.asyncio
async def test_read_frame_sees_rendered_audio(sine_wav, stream_factory):
    mgr = _manager(stream_factory)
    await mgr.initialize(sine_wav)
    await mgr.play()
    await mgr.ensure_context_active()

    mgr.context.render(256)
    frame = mgr.read_frame()
    assert frame.shape == (128,)
    assert int(frame.argmax()) == 20
