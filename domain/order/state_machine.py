"""
订单状态机 - 以数据形式定义的合法迁移表 + 纯函数 transition

所有合法路径都可以从 ``TRANSITIONS`` 中枚举。``transition`` 不访问存储，
非法迁移也不抛异常：返回 ``OrderChange``（需要原子写入的完整字段集）
或 ``Conflict`` 标记，调用方将其视为无害的 no-op。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from .entity import Order, OrderStatus, PaymentStatus, TERMINAL_ORDER_STATUSES


EXPIRED_DEADLINE_REASON = "Batas waktu pembayaran telah habis"
PAYMENT_FAILED_REASON = "Pembayaran ditolak atau dibatalkan"
PAYMENT_EXPIRED_REASON = "Pembayaran kedaluwarsa"
ADMIN_CANCEL_REASON = "Dibatalkan oleh admin"


class Trigger(str, Enum):
    """驱动订单状态变化的触发器"""
    PAYMENT_CAPTURED = "payment_captured"        # 网关: capture/settlement
    PAYMENT_PENDING = "payment_pending"          # 网关: pending
    PAYMENT_FAILED = "payment_failed"            # 网关: deny/cancel
    PAYMENT_EXPIRED = "payment_expired"          # 网关: expire
    DEADLINE_PASSED = "deadline_passed"          # 过期清理任务
    ADMIN_CANCEL = "admin_cancel"                # 管理员批准取消
    ADMIN_SHIP = "admin_ship"
    ADMIN_COMPLETE = "admin_complete"
    REQUEST_CANCELLATION = "request_cancellation"  # 用户申请取消
    REJECT_CANCELLATION = "reject_cancellation"    # 管理员驳回取消申请


@dataclass(frozen=True)
class TransitionRule:
    allowed_statuses: frozenset
    new_status: Optional[OrderStatus]
    new_payment_status: Optional[PaymentStatus]  # None 表示保持不变
    required_payment_status: Optional[PaymentStatus] = None


_AWAITING = frozenset({OrderStatus.AWAITING_PAYMENT})
_CANCELLABLE = frozenset({OrderStatus.AWAITING_PAYMENT, OrderStatus.PROCESSING})

TRANSITIONS: dict[Trigger, TransitionRule] = {
    Trigger.PAYMENT_CAPTURED: TransitionRule(_AWAITING, OrderStatus.PROCESSING, PaymentStatus.PAID),
    Trigger.PAYMENT_PENDING: TransitionRule(_AWAITING, OrderStatus.AWAITING_PAYMENT, PaymentStatus.PENDING),
    Trigger.PAYMENT_FAILED: TransitionRule(_AWAITING, OrderStatus.CANCELLED, PaymentStatus.FAILED),
    Trigger.PAYMENT_EXPIRED: TransitionRule(_AWAITING, OrderStatus.CANCELLED, PaymentStatus.EXPIRED),
    Trigger.DEADLINE_PASSED: TransitionRule(
        _AWAITING, OrderStatus.CANCELLED, PaymentStatus.EXPIRED,
        required_payment_status=PaymentStatus.PENDING,
    ),
    Trigger.ADMIN_CANCEL: TransitionRule(_CANCELLABLE, OrderStatus.CANCELLED, None),
    Trigger.ADMIN_SHIP: TransitionRule(frozenset({OrderStatus.PROCESSING}), OrderStatus.SHIPPED, PaymentStatus.PAID),
    Trigger.ADMIN_COMPLETE: TransitionRule(frozenset({OrderStatus.SHIPPED}), OrderStatus.COMPLETED, PaymentStatus.PAID),
    # 仅记录取消申请，status/payment_status 不变
    Trigger.REQUEST_CANCELLATION: TransitionRule(_CANCELLABLE, None, None),
    Trigger.REJECT_CANCELLATION: TransitionRule(_CANCELLABLE, None, None),
}


@dataclass(frozen=True)
class OrderState:
    """订单行的 CAS 比较键"""
    status: OrderStatus
    payment_status: PaymentStatus
    # 取消申请标记也参与比较，避免并发申请/驳回互相覆盖
    cancellation_requested: bool = False

    @classmethod
    def of(cls, order: Order) -> "OrderState":
        return cls(
            status=order.status,
            payment_status=order.payment_status,
            cancellation_requested=order.cancellation_requested,
        )


@dataclass(frozen=True)
class OrderChange:
    """合法迁移：期望状态、新状态以及需要写入的全部字段"""
    trigger: Trigger
    expected: OrderState
    new_state: OrderState
    fields: dict = field(default_factory=dict)

    @property
    def newly_paid(self) -> bool:
        return (
            self.expected.payment_status != PaymentStatus.PAID
            and self.new_state.payment_status == PaymentStatus.PAID
        )


@dataclass(frozen=True)
class Conflict:
    """触发器不适用于当前状态（无害冲突）"""
    trigger: Trigger
    state: OrderState
    reason: str


TransitionResult = Union[OrderChange, Conflict]


def transition(
    order: Order,
    trigger: Trigger,
    now: datetime,
    *,
    payment_method: Optional[str] = None,
    reason: Optional[str] = None,
) -> TransitionResult:
    """在不产生副作用的前提下计算 trigger 对 order 的迁移结果"""
    current = OrderState.of(order)
    rule = TRANSITIONS[trigger]

    if current.status in TERMINAL_ORDER_STATUSES:
        return Conflict(trigger, current, f"order is {current.status.value}")
    if current.status not in rule.allowed_statuses:
        return Conflict(trigger, current, f"not allowed from {current.status.value}")
    if rule.required_payment_status is not None and current.payment_status != rule.required_payment_status:
        return Conflict(trigger, current, f"payment is {current.payment_status.value}")

    if trigger == Trigger.PAYMENT_PENDING and current.payment_status == PaymentStatus.PENDING:
        return Conflict(trigger, current, "already pending")
    if trigger == Trigger.DEADLINE_PASSED and not order.is_payment_overdue(now):
        return Conflict(trigger, current, "payment deadline not passed")
    if trigger == Trigger.REQUEST_CANCELLATION and order.cancellation_requested:
        return Conflict(trigger, current, "cancellation already requested")
    if trigger == Trigger.REJECT_CANCELLATION and not order.cancellation_requested:
        return Conflict(trigger, current, "no cancellation request")

    fields = _side_effects(order, trigger, now, payment_method=payment_method, reason=reason)
    new_state = OrderState(
        status=rule.new_status or current.status,
        payment_status=rule.new_payment_status or current.payment_status,
        cancellation_requested=fields.get("cancellation_requested", current.cancellation_requested),
    )
    fields["status"] = new_state.status
    fields["payment_status"] = new_state.payment_status
    fields["updated_at"] = now
    return OrderChange(trigger=trigger, expected=current, new_state=new_state, fields=fields)


def _side_effects(
    order: Order,
    trigger: Trigger,
    now: datetime,
    *,
    payment_method: Optional[str],
    reason: Optional[str],
) -> dict:
    fields: dict = {}
    if payment_method and trigger in (
        Trigger.PAYMENT_CAPTURED,
        Trigger.PAYMENT_PENDING,
        Trigger.PAYMENT_FAILED,
        Trigger.PAYMENT_EXPIRED,
    ):
        fields["payment_method"] = payment_method

    if trigger == Trigger.PAYMENT_CAPTURED:
        fields["paid_at"] = now
    elif trigger == Trigger.PAYMENT_FAILED:
        fields.update(cancelled_at=now, cancellation_reason=reason or PAYMENT_FAILED_REASON)
    elif trigger == Trigger.PAYMENT_EXPIRED:
        fields.update(cancelled_at=now, cancellation_reason=reason or PAYMENT_EXPIRED_REASON)
    elif trigger == Trigger.DEADLINE_PASSED:
        fields.update(cancelled_at=now, cancellation_reason=EXPIRED_DEADLINE_REASON)
    elif trigger == Trigger.ADMIN_CANCEL:
        fields.update(
            cancelled_at=now,
            cancellation_reason=reason or order.cancellation_request_reason or ADMIN_CANCEL_REASON,
            cancellation_requested=False,
        )
    elif trigger == Trigger.ADMIN_SHIP:
        fields["shipped_at"] = now
    elif trigger == Trigger.ADMIN_COMPLETE:
        fields["completed_at"] = now
    elif trigger == Trigger.REQUEST_CANCELLATION:
        fields.update(
            cancellation_requested=True,
            cancellation_request_reason=reason,
            cancellation_request_date=now,
        )
    elif trigger == Trigger.REJECT_CANCELLATION:
        fields.update(
            cancellation_requested=False,
            cancellation_request_reason=None,
            cancellation_request_date=None,
        )
    return fields
