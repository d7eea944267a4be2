"""In-memory implementation of RealtimeBrokerPort.

Single-process only. Used for local dev, tests and as the fallback when
Redis is unavailable; keeps the last published envelopes so callers can
inspect what went out.
"""
from __future__ import annotations

from collections import deque
from typing import Deque

from application.ports.realtime import Envelope, RealtimeBrokerPort


class InMemoryRealtimeBroker(RealtimeBrokerPort):
    def __init__(self, history_size: int = 1000) -> None:
        self.published: Deque[Envelope] = deque(maxlen=history_size)

    async def publish(self, room: str, envelope: Envelope) -> None:  # type: ignore[override]
        if envelope.room is None:
            envelope = envelope.model_copy(update={"room": room})
        self.published.append(envelope)

    async def aclose(self) -> None:  # type: ignore[override]
        self.published.clear()
