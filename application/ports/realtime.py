"""
Realtime port and message DTOs (contracts-first).

Order events are published through this port after each committed
transition so dashboards and other processes can react without polling
the orders table.
"""
from __future__ import annotations

from typing import Any, Protocol
from pydantic import BaseModel, Field
from datetime import datetime, timezone


ORDER_EVENTS_ROOM = "orders"


def _utc_now_z() -> str:
    ts = datetime.now(timezone.utc)
    s = ts.isoformat()
    return s.replace("+00:00", "Z")


class Envelope(BaseModel):
    """Unified message envelope passed around the system.

    Fields:
      - type: semantic message type (OrderPlaced/OrderTransitioned/...)
      - room: channel the message was published to
      - data: payload (JSON-serializable)
      - ts: server-generated UTC timestamp (ISO8601 with Z)
      - sender_id: optional user id of the actor
    """

    type: str
    room: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    ts: str = Field(default_factory=_utc_now_z)
    sender_id: str | None = None


class RealtimeBrokerPort(Protocol):
    """Abstraction for cross-process broadcast of committed order events.

    Implementations may be in-memory (single process) or Redis pub/sub.
    """

    async def publish(self, room: str, envelope: Envelope) -> None: ...

    async def aclose(self) -> None: ...  # pragma: no cover - optional


__all__ = ["Envelope", "RealtimeBrokerPort", "ORDER_EVENTS_ROOM"]
