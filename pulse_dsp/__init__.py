# pulse_dsp/__init__.py
from .config import AnalyzerConfig, ServerConfig
from .engine import AudioEngine
from .state import AudioSignal, PlaybackState

__all__ = [
    "AnalyzerConfig",
    "ServerConfig",
    "AudioEngine",
    "AudioSignal",
    "PlaybackState",
]
