# pulse_dsp/gate.py
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, FrozenSet, Optional

from .audio.source import AudioSourceManager, SourceHandle
from .errors import BlockedByPolicy, ContextError, DecodeNotReady, InvalidTransition, PlaybackError
from .gesture import GESTURE_KINDS, GestureSource, LocalGestureSource
from .state import PlaybackState

logger = logging.getLogger(__name__)

S = PlaybackState

AUTOPLAY_STRATEGIES = ("muted-first", "unmuted")

_TRANSITIONS: Dict[PlaybackState, FrozenSet[PlaybackState]] = {
    S.UNINITIALIZED: frozenset({S.STARTING, S.CLOSED}),
    S.STARTING: frozenset({S.RUNNING, S.AWAITING_USER_GESTURE, S.SUSPENDED, S.CLOSED}),
    S.AWAITING_USER_GESTURE: frozenset({S.RUNNING, S.SUSPENDED, S.CLOSED}),
    S.RUNNING: frozenset({S.PAUSED, S.SUSPENDED, S.CLOSED}),
    S.PAUSED: frozenset({S.RUNNING, S.SUSPENDED, S.AWAITING_USER_GESTURE, S.CLOSED}),
    S.SUSPENDED: frozenset({S.RUNNING, S.PAUSED, S.AWAITING_USER_GESTURE, S.CLOSED}),
    S.CLOSED: frozenset({S.STARTING}),
}

StateObserver = Callable[[PlaybackState], None]


class PlaybackGate:
    """
    State machine: autoplay policy + user gesture + lifecycle контекста.

    Uninitialized -> Starting -> Running | AwaitingUserGesture
    AwaitingUserGesture -> Running (первый успешный жест, listeners снимаются)
    Running <-> Paused, * -> Suspended (платформа), * -> Closed (teardown)

    ВАЖНО:
    - is_playing == (state == RUNNING), а не media.paused:
      suspended контекст не звучит, даже если элемент "играет".
    - BlockedByPolicy / suspended контекст не пробрасываются наверх,
      а превращаются в переходы.
    """

    def __init__(
        self,
        source: AudioSourceManager,
        gestures: GestureSource | None = None,
        strategy: str = "muted-first",
        on_change: StateObserver | None = None,
    ) -> None:
        if strategy not in AUTOPLAY_STRATEGIES:
            raise ValueError(f"Unknown autoplay strategy: {strategy}")
        self.source = source
        self.gestures: GestureSource = gestures if gestures is not None else LocalGestureSource()
        self.strategy = strategy
        self._on_change = on_change

        self.state = S.UNINITIALIZED
        self._gestures_armed = False
        self._unlocking = False
        self._recover_task: Optional[asyncio.Task] = None
        self._autoplay_pending = False
        self._autoplay_task: Optional[asyncio.Task] = None

        source.set_event_handler(self.handle_event)

    # -------------------- observable --------------------

    @property
    def is_playing(self) -> bool:
        return self.state is S.RUNNING

    @property
    def awaiting_gesture(self) -> bool:
        return self.state is S.AWAITING_USER_GESTURE

    def set_observer(self, cb: StateObserver | None) -> None:
        self._on_change = cb

    def _transition(self, new: PlaybackState) -> None:
        old = self.state
        if old is new:
            return
        if new not in _TRANSITIONS[old]:
            raise InvalidTransition(f"{old.value} -> {new.value}")
        self.state = new
        logger.info("Playback %s -> %s", old.value, new.value)
        if self._on_change is not None:
            self._on_change(new)

    # -------------------- startup --------------------

    async def start(self, url: str) -> SourceHandle:
        if self.state not in (S.UNINITIALIZED, S.CLOSED):
            raise InvalidTransition(f"start() from {self.state.value}")

        # SourceError пробрасывается, состояние не меняется
        handle = await self.source.initialize(url)
        self._transition(S.STARTING)
        await self._run_autoplay()
        return handle

    async def _run_autoplay(self) -> None:
        """
        Одна попытка autoplay из STARTING.

        DecodeNotReady - это не запрет политики: остаёмся в STARTING,
        попытка повторяется на событии loadeddata.
        """
        try:
            if self.strategy == "muted-first":
                started = await self._autoplay_muted_first()
            else:
                started = await self._autoplay_unmuted()
        except DecodeNotReady as e:
            logger.info("Autoplay deferred until audio is decoded: %s", e)
            self._autoplay_pending = True
            return
        except ContextError as e:
            logger.warning("Audio context unavailable during autoplay: %s", e)
            started = False

        if self.state is not S.STARTING:
            # teardown во время autoplay
            return
        if started:
            self._transition(S.RUNNING)
        else:
            self._await_gesture()

    async def _autoplay_muted_first(self) -> bool:
        self.source.set_muted(True)
        try:
            await self.source.play()
        except BlockedByPolicy as e:
            logger.info("Muted autoplay prevented: %s", e)
            return False

        if not await self.source.ensure_context_active():
            logger.info("Muted autoplay started, audio context needs a user gesture")
            return False

        try:
            self.source.set_muted(False)
        except BlockedByPolicy as e:
            logger.info("Unmute prevented: %s", e)
            return False
        return True

    async def _autoplay_unmuted(self) -> bool:
        active = await self.source.ensure_context_active()
        self.source.set_muted(False)
        try:
            await self.source.play()
        except BlockedByPolicy as e:
            logger.info("Auto-play prevented: %s", e)
            return False
        return active

    # -------------------- gesture unlock --------------------

    def _await_gesture(self) -> None:
        self._transition(S.AWAITING_USER_GESTURE)
        if not self._gestures_armed:
            self.gestures.subscribe(GESTURE_KINDS, self._on_gesture)
            self._gestures_armed = True
        logger.info("Waiting for a user gesture to start audio")

    def _release_gestures(self) -> None:
        if self._gestures_armed:
            self.gestures.unsubscribe(self._on_gesture)
            self._gestures_armed = False

    async def _on_gesture(self, kind: str) -> None:
        if self.state is not S.AWAITING_USER_GESTURE or self._unlocking:
            return

        logger.info("User interaction detected: %s", kind)
        self._unlocking = True
        try:
            self.source.note_user_activation()
            if not await self.source.ensure_context_active():
                logger.warning("Audio context still suspended after %s", kind)
                return
            self.source.set_muted(False)
            await self.source.play()
        except (PlaybackError, ContextError) as e:
            # listeners остаются: следующий жест попробует снова
            logger.warning("Failed to start audio after %s: %s", kind, e)
            return
        finally:
            self._unlocking = False

        if self.state is not S.AWAITING_USER_GESTURE:
            return
        self._release_gestures()
        self._transition(S.RUNNING)
        logger.info("Audio started after user interaction (%s)", kind)

    # -------------------- transport --------------------

    def pause(self) -> None:
        if self.state is not S.RUNNING:
            return
        self.source.pause()
        # media "pause" event уже перевёл нас в PAUSED
        if self.state is S.RUNNING:
            self._transition(S.PAUSED)

    async def resume(self) -> bool:
        if self.state not in (S.PAUSED, S.SUSPENDED):
            return self.is_playing
        try:
            active = await self.source.ensure_context_active()
            await self.source.play()
        except BlockedByPolicy as e:
            logger.info("Resume prevented: %s", e)
            self._await_gesture()
            return False
        except DecodeNotReady as e:
            logger.warning("Resume failed: %s", e)
            return False
        except ContextError as e:
            # устройство вывода недоступно: состояние не меняем
            logger.warning("Resume failed, audio context unavailable: %s", e)
            return False

        if not active:
            self._await_gesture()
            return False
        if self.state in (S.PAUSED, S.SUSPENDED):
            self._transition(S.RUNNING)
        return self.is_playing

    # -------------------- source events --------------------

    def handle_event(self, name: str) -> None:
        """Named events от AudioSourceManager (всегда в потоке event loop)."""
        st = self.state
        if st in (S.CLOSED, S.UNINITIALIZED):
            return

        if name in ("pause", "ended"):
            if st in (S.RUNNING, S.SUSPENDED):
                self._transition(S.PAUSED)

        elif name == "play":
            if st in (S.PAUSED, S.SUSPENDED) and self.source.context_running:
                self._transition(S.RUNNING)

        elif name == "statechange":
            if not self.source.context_running:
                if st in (S.RUNNING, S.PAUSED):
                    # платформа сама остановила контекст (не явная пауза)
                    self._transition(S.SUSPENDED)
                    self._schedule_recovery()
            elif st is S.SUSPENDED and not self.source.is_paused:
                self._transition(S.RUNNING)

        elif name == "error":
            media = self.source.media
            logger.error("Audio element error: %s", None if media is None else media.error)
            if st is S.STARTING:
                self._autoplay_pending = False

        elif name == "loadeddata":
            logger.debug("Audio element loaded data")
            if self._autoplay_pending and st is S.STARTING:
                self._autoplay_pending = False
                self._autoplay_task = asyncio.get_running_loop().create_task(
                    self._run_autoplay(), name="pulse.autoplay_retry"
                )

    def _schedule_recovery(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if self._recover_task is None or self._recover_task.done():
            self._recover_task = loop.create_task(self._recover(), name="pulse.context_recover")

    async def _recover(self) -> None:
        try:
            active = await self.source.ensure_context_active()
        except ContextError as e:
            logger.error("Audio context recovery failed: %s", e)
            return

        if self.state is not S.SUSPENDED:
            return
        if not active:
            self._await_gesture()
        elif not self.source.is_paused:
            self._transition(S.RUNNING)
        else:
            self._transition(S.PAUSED)

    # -------------------- teardown --------------------

    def teardown(self) -> None:
        self._release_gestures()
        self._autoplay_pending = False
        for task in (self._recover_task, self._autoplay_task):
            if task is not None and not task.done():
                task.cancel()
        self._recover_task = None
        self._autoplay_task = None
        self.source.teardown()
        self._transition(S.CLOSED)
