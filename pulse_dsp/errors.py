# pulse_dsp/errors.py
from __future__ import annotations


class SourceError(RuntimeError):
    """Resource cannot be loaded or decoded. Reported to the initializing caller."""

    code = "SOURCE_ERROR"


class SourceUnreachable(SourceError):
    code = "SOURCE_UNREACHABLE"


class DecodeFailed(SourceError):
    code = "DECODE_FAILED"


class PlaybackError(RuntimeError):
    code = "PLAYBACK_ERROR"


class BlockedByPolicy(PlaybackError):
    """Expected: autoplay policy refused. Drives the gate into awaiting a gesture."""

    code = "BLOCKED_BY_POLICY"


class DecodeNotReady(PlaybackError):
    code = "DECODE_NOT_READY"


class ContextError(RuntimeError):
    code = "CONTEXT_ERROR"


class ContextClosed(ContextError):
    code = "CONTEXT_CLOSED"


class ContextSuspended(ContextError):
    code = "CONTEXT_SUSPENDED"


class InvalidTransition(RuntimeError):
    pass
