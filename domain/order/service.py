"""
订单领域服务 - 通过 CAS 把状态机的迁移结果落库
"""
from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from domain.common.exceptions import OrderNotFoundException
from .entity import Order, PaymentStatus
from .events import OrderTransitioned
from .repository import OrderRepository
from .state_machine import Conflict, OrderChange, OrderState, Trigger, transition


_ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_number(now: Optional[datetime] = None) -> str:
    """生成订单号：ORD-YYYYMMDD-XXXXXX"""
    now = now or datetime.now(timezone.utc)
    suffix = "".join(secrets.choice(_ORDER_NUMBER_ALPHABET) for _ in range(6))
    return f"ORD-{now:%Y%m%d}-{suffix}"


@dataclass
class TransitionOutcome:
    """一次 apply 的结果：applied 为 False 时 conflict 说明原因（无害）"""

    order: Order
    trigger: Trigger
    change: Optional[OrderChange] = None
    conflict: Optional[Conflict] = None
    attempts: int = 1

    @property
    def applied(self) -> bool:
        return self.change is not None

    @property
    def newly_paid(self) -> bool:
        return self.change is not None and self.change.newly_paid


class OrderStateMachine:
    """
    订单状态机领域服务

    职责：
    1. 读取订单并用纯函数 transition 计算迁移
    2. 以 id + status + payment_status 为条件原子写入
    3. 读到旧数据时重新读取并重新计算（有限次数）
    4. 产生领域事件，由应用层在提交后发布
    """

    def __init__(self, order_repository: OrderRepository, *, max_attempts: int = 3):
        self.order_repository = order_repository
        self.max_attempts = max(1, max_attempts)
        self.events: List = []  # 领域事件收集

    async def apply(
        self,
        order_id: str,
        trigger: Trigger,
        *,
        now: Optional[datetime] = None,
        payment_method: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> TransitionOutcome:
        now = now or datetime.now(timezone.utc)
        order: Optional[Order] = None
        for attempt in range(1, self.max_attempts + 1):
            order = await self.order_repository.get_by_id(order_id)
            if order is None:
                raise OrderNotFoundException(order_id)

            result = transition(order, trigger, now, payment_method=payment_method, reason=reason)
            if isinstance(result, Conflict):
                return TransitionOutcome(order=order, trigger=trigger, conflict=result, attempts=attempt)

            swapped = await self.order_repository.compare_and_swap(order.id, result.expected, result.fields)
            if swapped:
                updated = order.with_changes(result.fields)
                self._record(updated, result)
                return TransitionOutcome(order=updated, trigger=trigger, change=result, attempts=attempt)

        # 多次 CAS 都失败：当前行一直被并发修改，按无害冲突返回
        latest = await self.order_repository.get_by_id(order_id) or order
        conflict = Conflict(trigger, OrderState.of(latest), "concurrent update, attempts exhausted")
        return TransitionOutcome(order=latest, trigger=trigger, conflict=conflict, attempts=self.max_attempts)

    def _record(self, order: Order, change: OrderChange) -> None:
        self.events.append(OrderTransitioned(
            order_id=order.id,
            order_number=order.order_number,
            user_id=order.user_id,
            trigger=change.trigger.value,
            from_status=change.expected.status.value,
            to_status=change.new_state.status.value,
            from_payment_status=change.expected.payment_status.value,
            to_payment_status=change.new_state.payment_status.value,
        ))

    def clear_events(self) -> List:
        """清空并返回领域事件"""
        events = self.events.copy()
        self.events.clear()
        return events


def is_paid(order: Order) -> bool:
    return order.payment_status == PaymentStatus.PAID
