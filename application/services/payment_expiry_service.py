"""
支付超时清理 - 把超过支付截止时间仍未支付的订单驱动到 cancelled/expired

可与自身以及支付回调并发运行：每一笔都走状态机的 CAS，
输掉竞争的一方得到无害冲突。
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, List, Optional

from application.dtos.orders import ExpireUnpaidResult
from application.services.order_events import OrderEventPublisher
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.service import OrderStateMachine
from domain.order.state_machine import Trigger


logger = get_logger(__name__)


class PaymentExpiryService:
    """支付超时清理服务"""

    def __init__(
        self,
        *,
        uow_factory: Callable[..., AbstractUnitOfWork],
        events: Optional[OrderEventPublisher] = None,
        batch_size: int = 500,
        cas_max_attempts: int = 3,
    ) -> None:
        self._uow_factory = uow_factory
        self._events = events or OrderEventPublisher(None)
        self._batch_size = batch_size
        self._cas_max_attempts = cas_max_attempts

    async def expire_unpaid(self, now: Optional[datetime] = None) -> ExpireUnpaidResult:
        now = now or datetime.now(timezone.utc)

        async with self._uow_factory(readonly=True) as uow:
            candidates = await uow.order_repository.list_expired_unpaid(now, limit=self._batch_size)

        if not candidates:
            logger.info("expiry_sweep_nothing_to_do")
            return ExpireUnpaidResult(message="No expired orders found")

        expired: List[str] = []
        failed = 0
        for order in candidates:
            try:
                # 每笔订单单独一个事务，单笔失败不影响其它订单
                async with self._uow_factory() as uow:
                    machine = OrderStateMachine(uow.order_repository, max_attempts=self._cas_max_attempts)
                    outcome = await machine.apply(order.id, Trigger.DEADLINE_PASSED, now=now)
                    events = machine.clear_events()
            except Exception as exc:
                failed += 1
                logger.error(
                    "expiry_sweep_order_failed",
                    order_id=order.id,
                    order_number=order.order_number,
                    error=str(exc),
                    exc_info=True,
                )
                continue

            if outcome.applied:
                expired.append(order.order_number)
                await self._events.publish(events)
            else:
                logger.info(
                    "expiry_sweep_order_skipped",
                    order_id=order.id,
                    reason=outcome.conflict.reason if outcome.conflict else None,
                )

        logger.info(
            "expiry_sweep_finished",
            candidates=len(candidates),
            expired_count=len(expired),
            failed_count=failed,
        )
        return ExpireUnpaidResult(
            message=f"Expired {len(expired)} orders",
            expired_count=len(expired),
            expired_order_numbers=expired,
            failed_count=failed,
        )
