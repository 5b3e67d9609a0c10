# pulse_dsp/dsp/__init__.py
from .analyser import AnalyserNode
from .core import BandExtractor, BandLevels, BandParams, extract_bands
from .smoothing import SmoothingFilter, SmoothingState

__all__ = [
    "AnalyserNode",
    "BandExtractor",
    "BandLevels",
    "BandParams",
    "extract_bands",
    "SmoothingFilter",
    "SmoothingState",
]
