# pulse_dsp/gesture.py
from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, Protocol, Union

# Жесты, которые снимают autoplay-блокировку
GESTURE_KINDS = ("click", "keydown", "touchstart", "mousedown", "pointerdown")

GestureHandler = Callable[[str], Union[None, Awaitable[None]]]


class GestureSource(Protocol):
    """Источник пользовательских жестов (аналог document-level listeners)."""

    def subscribe(self, kinds: Iterable[str], handler: GestureHandler) -> None: ...

    def unsubscribe(self, handler: GestureHandler) -> None: ...


class LocalGestureSource:
    """
    In-process источник жестов.
    dispatch() дергают HTTP/WS слой (POST /gesture, {"type": "gesture"}) или тесты.

    subscribe() идемпотентен: повторная подписка того же handler заменяет kinds.
    """

    def __init__(self) -> None:
        self._handlers: Dict[GestureHandler, FrozenSet[str]] = {}

    def subscribe(self, kinds: Iterable[str], handler: GestureHandler) -> None:
        self._handlers[handler] = frozenset(kinds)

    def unsubscribe(self, handler: GestureHandler) -> None:
        self._handlers.pop(handler, None)

    @property
    def has_listeners(self) -> bool:
        return bool(self._handlers)

    async def dispatch(self, kind: str) -> bool:
        """Возвращает True, если жест кто-то слушал."""
        consumed = False
        for handler, kinds in list(self._handlers.items()):
            if kind not in kinds:
                continue
            consumed = True
            out: Any = handler(kind)
            if inspect.isawaitable(out):
                await out
        return consumed
