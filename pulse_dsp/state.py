# pulse_dsp/state.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional


# Callback для телеметрии:
# AudioEngine дергает его для отправки событий наружу (WS)
EventCallback = Callable[[Dict[str, Any]], None]


class PlaybackState(str, Enum):
    UNINITIALIZED = "uninitialized"
    AWAITING_USER_GESTURE = "awaiting_user_gesture"
    STARTING = "starting"
    RUNNING = "running"
    PAUSED = "paused"
    SUSPENDED = "suspended"
    CLOSED = "closed"


@dataclass(frozen=True)
class AudioSignal:
    """
    Публикуемое состояние для рендерера (read-only для всех потребителей).

    volume/bass/mid/treble: 0..1 (сглаженные)
    frequency: доминантная частота, kHz
    is_playing: True только когда gate в RUNNING
    """

    volume: float = 0.0
    frequency: float = 0.0
    bass: float = 0.0
    mid: float = 0.0
    treble: float = 0.0
    is_playing: bool = False

    def to_payload(self) -> Dict[str, Any]:
        # wire contract с рендерером (НЕ ЛОМАТЬ)
        return {
            "volume": float(self.volume),
            "frequency": float(self.frequency),
            "bass": float(self.bass),
            "mid": float(self.mid),
            "treble": float(self.treble),
            "isPlaying": bool(self.is_playing),
        }


SILENT = AudioSignal()


@dataclass
class RuntimeState:
    """
    Runtime state анализатора.

    ВАЖНО:
    - Это НЕ UI-state
    - Только текущая сессия (один source_url)
    """

    source_url: Optional[str] = None
    playback: PlaybackState = PlaybackState.UNINITIALIZED

    # sampler активен с первого RUNNING и до teardown
    sampling: bool = False
    ticks: int = 0

    shutting_down: bool = False
