"""
订单应用服务（application/services）- 下单、查询、后台状态操作、支付状态查询
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Iterable, Optional

from application.dtos.auth import Principal
from application.dtos.orders import OrderOut, PlaceOrderRequest, TransitionResultOut
from application.dtos.payments import PaymentStatusCheckResult
from application.ports.notifications import InvoiceRequest
from application.ports.payment_gateway import PaymentGateway
from application.services.notification_service import InvoiceNotifier
from application.services.order_events import OrderEventPublisher
from application.services.payment_webhook_service import map_gateway_status
from core.exceptions import ForbiddenException
from core.logging_config import get_logger
from domain.common.exceptions import (
    DomainValidationException,
    OrderAccessDeniedException,
    OrderNotFoundException,
    OrderTransitionConflictException,
    VoucherRejectedException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order, OrderItem
from domain.order.events import OrderPlaced
from domain.order.service import OrderStateMachine, TransitionOutcome, generate_order_number, is_paid
from domain.order.state_machine import Trigger
from domain.voucher.entity import REJECTION_MESSAGES, VoucherRejection, VoucherUsage
from domain.voucher.service import VoucherValidator, round_money


logger = get_logger(__name__)

_ORDER_NUMBER_ATTEMPTS = 5


class OrderApplicationService:
    """订单应用服务 - 处理应用层逻辑"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        events: Optional[OrderEventPublisher] = None,
        gateway: Optional[PaymentGateway] = None,
        notifier: Optional[InvoiceNotifier] = None,
        payment_window_hours: int = 24,
        cas_max_attempts: int = 3,
        manual_payment_methods: Iterable[str] = ("manual_transfer", "cod"),
    ) -> None:
        self._uow_factory = uow_factory
        self._events = events or OrderEventPublisher(None)
        self._gateway = gateway
        self._notifier = notifier
        self._payment_window = timedelta(hours=payment_window_hours)
        self._cas_max_attempts = cas_max_attempts
        self._manual_methods = frozenset(m.lower() for m in manual_payment_methods)

    # ---- 下单 ----
    async def place_order(self, principal: Principal, req: PlaceOrderRequest) -> OrderOut:
        """
        创建订单

        业务规则：
        1. 金额全部在服务端重算，折扣不信任客户端
        2. 订单、商品快照、优惠券核销在同一事务内完成
        3. 优惠券名额通过条件自增抢占，抢不到则整单拒绝
        """
        now = datetime.now(timezone.utc)
        order_id = uuid.uuid4().hex
        items = [
            OrderItem(
                line_index=index,
                product_id=item.product_id,
                product_name=item.product_name,
                variant_name=item.variant_name,
                product_image=item.product_image,
                price=round_money(item.price),
                quantity=item.quantity,
                subtotal=round_money(Decimal(item.price) * item.quantity),
                discount_percentage=item.discount_percentage,
                order_id=order_id,
            )
            for index, item in enumerate(req.items)
        ]
        subtotal = round_money(sum((i.subtotal for i in items), Decimal("0")))
        shipping_cost = round_money(req.shipping_cost)

        async with self._uow_factory() as uow:
            quote = None
            if req.voucher_code:
                validator = VoucherValidator(uow.voucher_repository, uow.member_tier_repository)
                quote = await validator.validate(req.voucher_code, subtotal, user_id=principal.user_id, now=now)
            discount = quote.discount if quote else Decimal("0.00")

            order = Order(
                id=order_id,
                order_number=await self._next_order_number(uow, now),
                user_id=principal.user_id,
                subtotal=subtotal,
                discount_amount=discount,
                shipping_cost=shipping_cost,
                total_amount=round_money(subtotal - discount + shipping_cost),
                voucher_id=quote.voucher.id if quote else None,
                payment_method=req.payment_method,
                payment_deadline=now + self._payment_window,
                recipient_name=req.recipient_name,
                recipient_phone=req.recipient_phone,
                shipping_address=req.shipping_address,
                shipping_method=req.shipping_method,
                notes=req.notes,
                created_at=now,
                updated_at=now,
                items=items,
            )
            created = await uow.order_repository.create(order)

            if quote is not None:
                if not await uow.voucher_repository.try_increment_usage(quote.voucher.id):
                    # 并发下单抢走了最后一个名额，异常退出时整单回滚
                    raise VoucherRejectedException(
                        VoucherRejection.USAGE_EXHAUSTED.value,
                        REJECTION_MESSAGES[VoucherRejection.USAGE_EXHAUSTED],
                        code=quote.voucher.code,
                    )
                await uow.voucher_repository.add_usage(VoucherUsage(
                    voucher_id=quote.voucher.id,
                    user_id=principal.user_id,
                    order_id=created.id,
                    discount_amount=discount,
                    created_at=now,
                ))

        logger.info(
            "order_placed",
            order_id=created.id,
            order_number=created.order_number,
            total_amount=str(created.total_amount),
            voucher_id=created.voucher_id,
        )
        await self._events.publish([OrderPlaced(
            order_id=created.id,
            order_number=created.order_number,
            user_id=created.user_id,
            total_amount=str(created.total_amount),
            voucher_id=created.voucher_id,
        )])
        return OrderOut.from_entity(created)

    async def _next_order_number(self, uow: AbstractUnitOfWork, now: datetime) -> str:
        for _ in range(_ORDER_NUMBER_ATTEMPTS):
            candidate = generate_order_number(now)
            if not await uow.order_repository.exists_by_order_number(candidate):
                return candidate
        raise DomainValidationException("Could not allocate a unique order number", field="order_number")

    # ---- 查询 ----
    async def get_order(self, principal: Principal, order_id: str) -> OrderOut:
        order = await self._load_for(principal, order_id)
        return OrderOut.from_entity(order)

    async def _load_for(self, principal: Principal, order_id: str) -> Order:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundException(order_id)
        if not principal.can_access(order.user_id):
            raise OrderAccessDeniedException(order_id)
        return order

    # ---- 后台 / 用户状态操作 ----
    async def ship(self, principal: Principal, order_id: str) -> TransitionResultOut:
        self._require_admin(principal)
        return await self._transition(principal, order_id, Trigger.ADMIN_SHIP)

    async def complete(self, principal: Principal, order_id: str) -> TransitionResultOut:
        self._require_admin(principal)
        return await self._transition(principal, order_id, Trigger.ADMIN_COMPLETE)

    async def approve_cancellation(
        self, principal: Principal, order_id: str, reason: Optional[str] = None
    ) -> TransitionResultOut:
        """批准取消；已支付订单取消后 payment_status 保持 paid，退款在系统外处理"""
        self._require_admin(principal)
        return await self._transition(principal, order_id, Trigger.ADMIN_CANCEL, reason=reason)

    async def reject_cancellation(self, principal: Principal, order_id: str) -> TransitionResultOut:
        self._require_admin(principal)
        return await self._transition(principal, order_id, Trigger.REJECT_CANCELLATION)

    async def request_cancellation(self, principal: Principal, order_id: str, reason: str) -> TransitionResultOut:
        await self._load_for(principal, order_id)
        return await self._transition(principal, order_id, Trigger.REQUEST_CANCELLATION, reason=reason)

    @staticmethod
    def _require_admin(principal: Principal) -> None:
        if not principal.is_admin:
            raise ForbiddenException()

    async def _transition(
        self,
        principal: Principal,
        order_id: str,
        trigger: Trigger,
        *,
        reason: Optional[str] = None,
    ) -> TransitionResultOut:
        outcome = await self._apply(order_id, trigger, reason=reason)
        if not outcome.applied:
            # 管理端/用户端的冲突是操作错误，需要明确告知
            raise OrderTransitionConflictException(
                order_id, trigger.value, outcome.conflict.reason if outcome.conflict else "conflict"
            )
        logger.info(
            "order_transition_applied",
            order_id=order_id,
            trigger=trigger.value,
            actor=principal.user_id,
            status=outcome.order.status.value,
            payment_status=outcome.order.payment_status.value,
        )
        return TransitionResultOut(applied=True, order=OrderOut.from_entity(outcome.order))

    async def _apply(
        self,
        order_id: str,
        trigger: Trigger,
        *,
        reason: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> TransitionOutcome:
        async with self._uow_factory() as uow:
            machine = OrderStateMachine(uow.order_repository, max_attempts=self._cas_max_attempts)
            outcome = await machine.apply(order_id, trigger, reason=reason, payment_method=payment_method)
            events = machine.clear_events()
        # 已提交：先排发票，再做 broker I/O
        if outcome.newly_paid:
            self._schedule_invoice(outcome)
        await self._events.publish(events)
        return outcome

    def _schedule_invoice(self, outcome: TransitionOutcome) -> None:
        if self._notifier is None or outcome.order.paid_at is None:
            return
        self._notifier.schedule(InvoiceRequest(
            order_id=outcome.order.id,
            order_number=outcome.order.order_number,
            paid_at=outcome.order.paid_at,
            user_id=outcome.order.user_id,
        ))

    # ---- 主动查询支付状态 ----
    async def check_payment_status(self, principal: Principal, order_id: str) -> PaymentStatusCheckResult:
        """
        向网关查询交易状态并按回调同样的映射推进订单

        已支付、线下支付方式、已终结的订单直接返回当前状态，不调用网关；
        网关返回 404（交易不存在）时同样返回当前状态。
        """
        order = await self._load_for(principal, order_id)
        if (
            self._gateway is None
            or is_paid(order)
            or order.is_terminal
            or (order.payment_method or "").lower() in self._manual_methods
        ):
            return self._status_result(order)

        gateway_status = await self._gateway.get_transaction_status(order.id)
        if not gateway_status.found or not gateway_status.transaction_status:
            logger.info("payment_status_not_found_at_gateway", order_id=order.id)
            return self._status_result(order)

        trigger = map_gateway_status(
            self._gateway.provider, gateway_status.transaction_status, gateway_status.fraud_status
        )
        if trigger is None:
            return self._status_result(order, gateway_status.transaction_status)

        outcome = await self._apply(order.id, trigger, payment_method=gateway_status.payment_type)
        logger.info(
            "payment_status_checked",
            order_id=order.id,
            gateway_status=gateway_status.transaction_status,
            applied=outcome.applied,
        )
        return self._status_result(outcome.order, gateway_status.transaction_status, changed=outcome.applied)

    @staticmethod
    def _status_result(order: Order, gateway_status: Optional[str] = None, *, changed: bool = False) -> PaymentStatusCheckResult:
        return PaymentStatusCheckResult(
            order_id=order.id,
            order_number=order.order_number,
            status=order.status.value,
            payment_status=order.payment_status.value,
            paid_at=order.paid_at.isoformat() if order.paid_at else None,
            gateway_status=gateway_status,
            changed=changed,
        )
