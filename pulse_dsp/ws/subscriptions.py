# pulse_dsp/ws/subscriptions.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Set

from aiohttp import web


@dataclass
class Subscriptions:
    """
    Хранит подписки WS-клиентов на стримы данных.

    stream_name -> set(ws_connections)

    Стримы:
      - "audio_signal"
      - "audio_status"
    """

    by_stream: Dict[str, Set[web.WebSocketResponse]] = field(default_factory=dict)

    def add(self, stream: str, ws: web.WebSocketResponse) -> None:
        self.by_stream.setdefault(stream, set()).add(ws)

    def add_many(self, streams: Iterable[str], ws: web.WebSocketResponse) -> None:
        for s in streams:
            self.add(str(s), ws)

    def remove(self, stream: str, ws: web.WebSocketResponse) -> None:
        subs = self.by_stream.get(stream)
        if subs is None:
            return
        subs.discard(ws)
        if not subs:
            del self.by_stream[stream]

    def remove_ws(self, ws: web.WebSocketResponse) -> None:
        for stream in list(self.by_stream.keys()):
            self.remove(stream, ws)

    def get(self, stream: str) -> Set[web.WebSocketResponse]:
        return self.by_stream.get(stream, set())
