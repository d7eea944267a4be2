"""
Order DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict
from pydantic.types import condecimal

from domain.order.entity import Order, OrderItem


class PlaceOrderItem(BaseModel):
    """Product snapshot supplied by the checkout flow (catalog is external)."""

    product_id: Optional[str] = None
    product_name: str = Field(min_length=1, max_length=255)
    variant_name: Optional[str] = None
    product_image: Optional[str] = None
    price: condecimal(ge=0, max_digits=14, decimal_places=2)  # type: ignore[valid-type]
    quantity: int = Field(gt=0, le=1000)
    discount_percentage: Optional[condecimal(ge=0, le=100)] = None  # type: ignore[valid-type]


class PlaceOrderRequest(BaseModel):
    items: List[PlaceOrderItem] = Field(min_length=1)
    shipping_cost: condecimal(ge=0, max_digits=14, decimal_places=2) = Decimal("0")  # type: ignore[valid-type]
    voucher_code: Optional[str] = None
    payment_method: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_phone: Optional[str] = None
    shipping_address: Optional[str] = None
    shipping_method: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class CancellationRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class AdminCancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line_index: int
    product_id: Optional[str] = None
    product_name: str
    variant_name: Optional[str] = None
    product_image: Optional[str] = None
    price: Decimal
    quantity: int
    subtotal: Decimal
    discount_percentage: Optional[Decimal] = None

    @classmethod
    def from_entity(cls, item: OrderItem) -> "OrderItemOut":
        return cls.model_validate(item)


class OrderOut(BaseModel):
    id: str
    order_number: str
    user_id: Optional[str] = None
    status: str
    payment_status: str
    payment_method: Optional[str] = None
    subtotal: Decimal
    discount_amount: Decimal
    shipping_cost: Decimal
    total_amount: Decimal
    voucher_id: Optional[str] = None
    payment_deadline: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancellation_requested: bool = False
    cancellation_request_reason: Optional[str] = None
    cancellation_request_date: Optional[datetime] = None
    recipient_name: Optional[str] = None
    recipient_phone: Optional[str] = None
    shipping_address: Optional[str] = None
    shipping_method: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: List[OrderItemOut] = Field(default_factory=list)

    @classmethod
    def from_entity(cls, order: Order) -> "OrderOut":
        return cls(
            id=order.id,
            order_number=order.order_number,
            user_id=order.user_id,
            status=order.status.value,
            payment_status=order.payment_status.value,
            payment_method=order.payment_method,
            subtotal=order.subtotal,
            discount_amount=order.discount_amount,
            shipping_cost=order.shipping_cost,
            total_amount=order.total_amount,
            voucher_id=order.voucher_id,
            payment_deadline=order.payment_deadline,
            paid_at=order.paid_at,
            shipped_at=order.shipped_at,
            completed_at=order.completed_at,
            cancelled_at=order.cancelled_at,
            cancellation_reason=order.cancellation_reason,
            cancellation_requested=order.cancellation_requested,
            cancellation_request_reason=order.cancellation_request_reason,
            cancellation_request_date=order.cancellation_request_date,
            recipient_name=order.recipient_name,
            recipient_phone=order.recipient_phone,
            shipping_address=order.shipping_address,
            shipping_method=order.shipping_method,
            notes=order.notes,
            created_at=order.created_at,
            updated_at=order.updated_at,
            items=[OrderItemOut.from_entity(i) for i in order.items],
        )


class TransitionResultOut(BaseModel):
    """Outcome of an admin/customer transition request."""

    applied: bool
    order: OrderOut
    conflict: Optional[str] = None


class ExpireUnpaidResult(BaseModel):
    success: bool = True
    message: str = ""
    expired_count: int = 0
    expired_order_numbers: List[str] = Field(default_factory=list)
    failed_count: int = 0
