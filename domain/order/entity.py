"""
订单领域实体 - 订单聚合根与商品快照
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from domain.common.exceptions import DomainValidationException


class OrderStatus(str, Enum):
    """订单状态"""
    AWAITING_PAYMENT = "awaiting_payment"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """支付状态"""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    EXPIRED = "expired"


TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """统一转换为 UTC（naive 时间视为 UTC）"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class OrderItem:
    """下单时的商品快照

    创建后不再修改，商品价格之后的变动不影响已下订单。
    """

    line_index: int
    product_id: Optional[str]
    product_name: str
    price: Decimal
    quantity: int
    subtotal: Decimal
    variant_name: Optional[str] = None
    product_image: Optional[str] = None
    discount_percentage: Optional[Decimal] = None
    order_id: Optional[str] = None

    def __post_init__(self):
        if self.quantity <= 0:
            raise DomainValidationException(
                f"Item quantity must be positive: {self.quantity}",
                field="quantity",
            )
        if self.price < 0:
            raise DomainValidationException(
                f"Item price must not be negative: {self.price}",
                field="price",
            )


@dataclass
class Order:
    """
    订单聚合根

    不变式：
    1. payment_status == paid 时 paid_at 必有值，且 status 属于
       processing/shipped/completed（管理员批准取消已支付订单除外）
    2. status == cancelled 时 cancelled_at 必有值；cancelled 与 completed 为终态
    3. 只能通过订单状态机写入
    """

    id: str
    order_number: str
    user_id: Optional[str]
    subtotal: Decimal
    shipping_cost: Decimal
    total_amount: Decimal
    status: OrderStatus = OrderStatus.AWAITING_PAYMENT
    payment_status: PaymentStatus = PaymentStatus.PENDING
    discount_amount: Decimal = field(default_factory=lambda: Decimal("0"))
    voucher_id: Optional[str] = None
    payment_method: Optional[str] = None
    payment_deadline: Optional[datetime] = None

    paid_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    cancellation_requested: bool = False
    cancellation_request_reason: Optional[str] = None
    cancellation_request_date: Optional[datetime] = None

    # 收货信息快照
    recipient_name: Optional[str] = None
    recipient_phone: Optional[str] = None
    shipping_address: Optional[str] = None
    shipping_method: Optional[str] = None
    notes: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: List[OrderItem] = field(default_factory=list)

    def __post_init__(self):
        self.status = OrderStatus(self.status)
        self.payment_status = PaymentStatus(self.payment_status)
        self._validate_amounts()
        self._normalize_timestamps()

    def _validate_amounts(self) -> None:
        if self.subtotal < 0 or self.shipping_cost < 0 or self.discount_amount < 0:
            raise DomainValidationException("Order amounts must not be negative", field="subtotal")
        if self.discount_amount > self.subtotal:
            raise DomainValidationException(
                f"Discount {self.discount_amount} exceeds subtotal {self.subtotal}",
                field="discount_amount",
            )

    def _normalize_timestamps(self) -> None:
        for name in (
            "payment_deadline",
            "paid_at",
            "shipped_at",
            "completed_at",
            "cancelled_at",
            "cancellation_request_date",
            "created_at",
            "updated_at",
        ):
            setattr(self, name, _ensure_utc(getattr(self, name)))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ORDER_STATUSES

    def is_payment_overdue(self, now: datetime) -> bool:
        return (
            self.status == OrderStatus.AWAITING_PAYMENT
            and self.payment_status == PaymentStatus.PENDING
            and self.payment_deadline is not None
            and self.payment_deadline < _ensure_utc(now)
        )

    def with_changes(self, changes: dict) -> "Order":
        """返回应用了变更字段的副本（CAS 写入成功后使用）"""
        return replace(self, **changes)
