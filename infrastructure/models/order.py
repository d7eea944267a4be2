"""
订单数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Boolean, Column, Integer, String, Numeric, DateTime, Text,
    Index, ForeignKey, PrimaryKeyConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


class OrderModel(Base):
    """
    订单数据库模型

    所有状态变更都通过条件 UPDATE（status + payment_status）完成，
    业务规则在 domain.order.state_machine 中
    """
    __tablename__ = "orders"

    id = Column(String(64), primary_key=True)
    order_number = Column(String(32), unique=True, nullable=False, comment="订单号 ORD-YYYYMMDD-XXXXXX")
    user_id = Column(String(64), nullable=True, index=True, comment="下单用户ID")

    # 金额信息
    subtotal = Column(Numeric(precision=15, scale=2), nullable=False, comment="商品小计")
    discount_amount = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="优惠金额")
    shipping_cost = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="运费")
    total_amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="应付金额")
    voucher_id = Column(String(64), ForeignKey("vouchers.id"), nullable=True, comment="使用的优惠券")

    # 状态
    status = Column(
        String(32),
        nullable=False,
        default="awaiting_payment",
        comment="订单状态: awaiting_payment/processing/shipped/completed/cancelled"
    )
    payment_status = Column(
        String(32),
        nullable=False,
        default="pending",
        comment="支付状态: pending/paid/failed/expired"
    )
    payment_method = Column(String(50), nullable=True, comment="支付方式")
    payment_deadline = Column(DateTime(timezone=True), nullable=True, comment="支付截止时间")

    # 状态时间
    paid_at = Column(DateTime(timezone=True), nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # 用户取消申请
    cancellation_requested = Column(Boolean, nullable=False, default=False)
    cancellation_request_reason = Column(Text, nullable=True)
    cancellation_request_date = Column(DateTime(timezone=True), nullable=True)

    # 收货信息快照
    recipient_name = Column(String(100), nullable=True)
    recipient_phone = Column(String(32), nullable=True)
    shipping_address = Column(Text, nullable=True)
    shipping_method = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        lazy="selectin",
        order_by="OrderItemModel.line_index",
    )

    __table_args__ = (
        # 过期清理扫描
        Index("ix_orders_sweep", "status", "payment_status", "payment_deadline"),
        Index("ix_orders_user_created", "user_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<OrderModel(id='{self.id}', order_number='{self.order_number}', "
            f"status='{self.status}', payment_status='{self.payment_status}')>"
        )


class OrderItemModel(Base):
    """订单商品快照，创建后不再修改"""
    __tablename__ = "order_items"

    order_id = Column(String(64), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    line_index = Column(Integer, nullable=False)

    product_id = Column(String(64), nullable=True)
    product_name = Column(String(255), nullable=False)
    variant_name = Column(String(255), nullable=True)
    product_image = Column(String(500), nullable=True)
    price = Column(Numeric(precision=15, scale=2), nullable=False)
    discount_percentage = Column(Numeric(precision=5, scale=2), nullable=True)
    quantity = Column(Integer, nullable=False)
    subtotal = Column(Numeric(precision=15, scale=2), nullable=False)

    order = relationship("OrderModel", back_populates="items")

    __table_args__ = (
        PrimaryKeyConstraint("order_id", "line_index", name="pk_order_items"),
    )
