"""
订单事件发布 - 在事务提交之后把领域事件广播到订单事件频道
"""
from __future__ import annotations

import asyncio
from typing import Iterable, Optional

from application.ports.realtime import Envelope, RealtimeBrokerPort, ORDER_EVENTS_ROOM
from core.logging_config import get_logger
from domain.order.events import OrderEvent


logger = get_logger(__name__)


class OrderEventPublisher:
    """
    发布失败或超时只记录日志：订单状态已经提交，不能因广播失败而回滚。

    每个事件的发布耗时受 timeout_seconds 约束，broker 卡住时不会拖住调用方。
    """

    def __init__(
        self,
        broker: Optional[RealtimeBrokerPort],
        *,
        room: str = ORDER_EVENTS_ROOM,
        timeout_seconds: float = 2.0,
    ):
        self._broker = broker
        self._room = room
        self._timeout = timeout_seconds

    async def publish(self, events: Iterable[OrderEvent]) -> int:
        published = 0
        for event in events:
            if self._broker is None:
                logger.debug("order_event_skipped_no_broker", event_type=event.event_type, order_id=event.order_id)
                continue
            envelope = Envelope(
                type=event.event_type,
                room=self._room,
                data=event.to_dict(),
                sender_id=event.user_id,
            )
            try:
                await asyncio.wait_for(self._broker.publish(self._room, envelope), timeout=self._timeout)
                published += 1
            except asyncio.TimeoutError:
                logger.warning(
                    "order_event_publish_timeout",
                    event_type=event.event_type,
                    order_id=event.order_id,
                    timeout=self._timeout,
                )
            except Exception as exc:
                logger.warning(
                    "order_event_publish_failed",
                    event_type=event.event_type,
                    order_id=event.order_id,
                    error=str(exc),
                )
        return published
