"""Redis Pub/Sub based RealtimeBrokerPort implementation.

Reuses the shared RedisClient from infrastructure.external.cache. Publishes
to per-room channels `events:room:{room}`; consumers in other processes
pattern-subscribe `events:room:*` to see every committed order transition.
"""
from __future__ import annotations

from typing import Optional

from application.ports.realtime import Envelope, RealtimeBrokerPort
from infrastructure.external.cache import get_redis_client, RedisClient


class RedisRealtimeBroker(RealtimeBrokerPort):
    def __init__(self, client: Optional[RedisClient] = None) -> None:
        self._client: Optional[RedisClient] = client

    @staticmethod
    def _room_channel(room: str) -> str:
        return f"events:room:{room}"

    async def _ensure_client(self) -> RedisClient:
        if self._client is None:
            self._client = await get_redis_client()
        return self._client

    async def publish(self, room: str, envelope: Envelope) -> None:  # type: ignore[override]
        client = await self._ensure_client()
        if envelope.room is None:
            envelope = envelope.model_copy(update={"room": room})
        # RedisClient handles JSON serialization internally
        await client.publish(self._room_channel(room), envelope.model_dump(mode="json"))

    async def aclose(self) -> None:  # type: ignore[override]
        # the shared client is closed by shutdown_redis_client()
        self._client = None
