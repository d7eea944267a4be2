"""
订单仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import select, update, exists
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import DomainValidationException
from domain.order.entity import Order, OrderItem, OrderStatus, PaymentStatus
from domain.order.repository import OrderRepository
from domain.order.state_machine import OrderState
from infrastructure.models.order import OrderModel, OrderItemModel


logger = get_logger(__name__)


def _dec(value) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体"""
        return Order(
            id=model.id,
            order_number=model.order_number,
            user_id=model.user_id,
            subtotal=_dec(model.subtotal),
            discount_amount=_dec(model.discount_amount) or Decimal("0"),
            shipping_cost=_dec(model.shipping_cost),
            total_amount=_dec(model.total_amount),
            voucher_id=model.voucher_id,
            status=OrderStatus(model.status),
            payment_status=PaymentStatus(model.payment_status),
            payment_method=model.payment_method,
            payment_deadline=model.payment_deadline,
            paid_at=model.paid_at,
            shipped_at=model.shipped_at,
            completed_at=model.completed_at,
            cancelled_at=model.cancelled_at,
            cancellation_reason=model.cancellation_reason,
            cancellation_requested=bool(model.cancellation_requested),
            cancellation_request_reason=model.cancellation_request_reason,
            cancellation_request_date=model.cancellation_request_date,
            recipient_name=model.recipient_name,
            recipient_phone=model.recipient_phone,
            shipping_address=model.shipping_address,
            shipping_method=model.shipping_method,
            notes=model.notes,
            created_at=model.created_at,
            updated_at=model.updated_at,
            items=[self._item_to_entity(i) for i in model.items],
        )

    @staticmethod
    def _item_to_entity(model: OrderItemModel) -> OrderItem:
        return OrderItem(
            line_index=model.line_index,
            order_id=model.order_id,
            product_id=model.product_id,
            product_name=model.product_name,
            variant_name=model.variant_name,
            product_image=model.product_image,
            price=_dec(model.price),
            discount_percentage=_dec(model.discount_percentage),
            quantity=model.quantity,
            subtotal=_dec(model.subtotal),
        )

    def _to_model(self, entity: Order) -> OrderModel:
        """将领域实体转换为数据库模型"""
        return OrderModel(
            id=entity.id,
            order_number=entity.order_number,
            user_id=entity.user_id,
            subtotal=entity.subtotal,
            discount_amount=entity.discount_amount,
            shipping_cost=entity.shipping_cost,
            total_amount=entity.total_amount,
            voucher_id=entity.voucher_id,
            status=entity.status.value,
            payment_status=entity.payment_status.value,
            payment_method=entity.payment_method,
            payment_deadline=entity.payment_deadline,
            cancellation_requested=entity.cancellation_requested,
            recipient_name=entity.recipient_name,
            recipient_phone=entity.recipient_phone,
            shipping_address=entity.shipping_address,
            shipping_method=entity.shipping_method,
            notes=entity.notes,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
            items=[
                OrderItemModel(
                    line_index=item.line_index,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    variant_name=item.variant_name,
                    product_image=item.product_image,
                    price=item.price,
                    discount_percentage=item.discount_percentage,
                    quantity=item.quantity,
                    subtotal=item.subtotal,
                )
                for item in entity.items
            ],
        )

    async def create(self, order: Order) -> Order:
        """创建订单（商品快照随订单一起 flush）"""
        db_order = self._to_model(order)
        self.session.add(db_order)
        try:
            await self.session.flush()
        except IntegrityError as e:
            logger.warning("order_create_conflict", order_number=order.order_number, error=str(e.orig))
            raise DomainValidationException(
                f"Order {order.order_number} could not be created",
                field="order_number",
            ) from e
        logger.info("order_created", order_id=db_order.id, order_number=db_order.order_number)
        return await self.get_by_id(db_order.id)

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        """根据ID获取订单；populate_existing 保证 CAS 重试时读到最新数据"""
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .execution_options(populate_existing=True)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def get_by_order_number(self, order_number: str) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.order_number == order_number)
            .execution_options(populate_existing=True)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def exists_by_order_number(self, order_number: str) -> bool:
        result = await self.session.execute(
            select(exists().where(OrderModel.order_number == order_number))
        )
        return bool(result.scalar())

    async def compare_and_swap(self, order_id: str, expected: OrderState, changes: dict) -> bool:
        """UPDATE orders SET ... WHERE id=? AND status=? AND payment_status=? AND cancellation_requested=?"""
        values = {
            key: (value.value if isinstance(value, Enum) else value)
            for key, value in changes.items()
        }
        result = await self.session.execute(
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.status == expected.status.value,
                OrderModel.payment_status == expected.payment_status.value,
                OrderModel.cancellation_requested == expected.cancellation_requested,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount > 0:
            logger.debug("order_cas_applied", order_id=order_id, status=values.get("status"))
            return True
        logger.info(
            "order_cas_stale",
            order_id=order_id,
            expected_status=expected.status.value,
            expected_payment_status=expected.payment_status.value,
        )
        return False

    async def list_expired_unpaid(self, now: datetime, limit: int = 500) -> List[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(
                OrderModel.status == OrderStatus.AWAITING_PAYMENT.value,
                OrderModel.payment_status == PaymentStatus.PENDING.value,
                OrderModel.payment_deadline.is_not(None),
                OrderModel.payment_deadline < now,
            )
            .order_by(OrderModel.payment_deadline.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
