# pulse_dsp/audio/__init__.py
from .context import AudioContext, AutoplayPolicy, ContextState
from .media import MediaElement
from .source import AudioSourceManager, SourceHandle

__all__ = [
    "AudioContext",
    "AutoplayPolicy",
    "ContextState",
    "MediaElement",
    "AudioSourceManager",
    "SourceHandle",
]
