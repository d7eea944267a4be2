"""
支付回调应用服务 - 限流、验签、状态映射，然后交给订单状态机

处理顺序：
1. 按来源地址限流
2. 验证签名（常量时间比较）
3. 网关测试事件直接确认
4. 网关状态 -> 状态机触发器，未知状态确认后忽略
5. 按 (order_id, status_code, gross_amount) 去重，然后通过状态机 CAS 写入
6. 仅在“新近支付成功”时异步发送发票（先于事件广播）
7. 广播订单事件，单个事件发布有超时上限
"""
from __future__ import annotations

from typing import Callable, Optional

from application.dtos.payments import PaymentNotification, WebhookResult
from application.ports.notifications import InvoiceRequest
from application.ports.payment_gateway import PaymentGateway
from application.ports.rate_limiter import IdempotencyStorePort, RateLimiterPort
from application.services.notification_service import InvoiceNotifier
from application.services.order_events import OrderEventPublisher
from core.exceptions import RateLimitException
from core.logging_config import get_logger
from domain.common.exceptions import WebhookSignatureException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.events import OrderEvent
from domain.order.service import OrderStateMachine, TransitionOutcome
from domain.order.state_machine import Trigger
from shared.codes.payment_codes import GATEWAY_STATUS_TO_TRIGGER


logger = get_logger(__name__)


def map_gateway_status(provider: str, transaction_status: str, fraud_status: Optional[str] = None) -> Optional[Trigger]:
    """网关状态映射为触发器；返回 None 表示不处理（如 refund/authorize）"""
    status = (transaction_status or "").lower()
    # capture 但风控为 challenge 时资金尚未确认，按 pending 处理
    if status == "capture" and (fraud_status or "").lower() == "challenge":
        return Trigger.PAYMENT_PENDING
    name = GATEWAY_STATUS_TO_TRIGGER.get(provider, {}).get(status)
    return Trigger(name) if name else None


def outcome_to_result(order_id: str, outcome: TransitionOutcome) -> WebhookResult:
    return WebhookResult(
        outcome="applied" if outcome.applied else "conflict",
        order_id=order_id,
        order_status=outcome.order.status.value,
        payment_status=outcome.order.payment_status.value,
        detail=outcome.conflict.reason if outcome.conflict else None,
    )


class PaymentWebhookService:
    """支付回调处理"""

    def __init__(
        self,
        *,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        rate_limiter: RateLimiterPort,
        idempotency: IdempotencyStorePort,
        notifier: Optional[InvoiceNotifier] = None,
        events: Optional[OrderEventPublisher] = None,
        test_order_prefix: str = "payment_notif_test_",
        dedupe_ttl_seconds: int = 24 * 3600,
        cas_max_attempts: int = 3,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._rate_limiter = rate_limiter
        self._idempotency = idempotency
        self._notifier = notifier
        self._events = events or OrderEventPublisher(None)
        self._test_prefix = test_order_prefix
        self._dedupe_ttl = dedupe_ttl_seconds
        self._cas_max_attempts = cas_max_attempts

    async def handle(self, notification: PaymentNotification, *, source: str) -> WebhookResult:
        provider = self._gateway.provider

        decision = await self._rate_limiter.hit(f"webhook:{provider}:{source}")
        if not decision.allowed:
            logger.warning("webhook_rate_limited", provider=provider, source=source, retry_after=decision.retry_after)
            raise RateLimitException(retry_after=decision.retry_after or None)

        try:
            self._gateway.verify_notification(notification)
        except WebhookSignatureException:
            # 审计日志：记录来源，绝不记录签名本身
            logger.warning(
                "webhook_signature_invalid",
                provider=provider,
                source=source,
                order_id=notification.order_id,
                status_code=notification.status_code,
            )
            raise

        if self._test_prefix and notification.order_id.startswith(self._test_prefix):
            logger.info("webhook_test_event_acknowledged", provider=provider, order_id=notification.order_id)
            return WebhookResult(outcome="test_event", order_id=notification.order_id)

        trigger = map_gateway_status(provider, notification.transaction_status, notification.fraud_status)
        if trigger is None:
            logger.info(
                "webhook_status_ignored",
                provider=provider,
                order_id=notification.order_id,
                transaction_status=notification.transaction_status,
            )
            return WebhookResult(outcome="ignored", order_id=notification.order_id, detail=notification.transaction_status)

        dedupe_key = f"webhook:{provider}:{notification.dedupe_key}"
        if not await self._idempotency.claim(dedupe_key, self._dedupe_ttl):
            logger.info("webhook_duplicate_ignored", provider=provider, order_id=notification.order_id)
            return WebhookResult(outcome="duplicate", order_id=notification.order_id)

        try:
            outcome, events = await self._apply(notification, trigger)
        except BaseException:
            # 事务未提交（含超时取消）时释放去重标记，让网关重试能再次进入
            await self._idempotency.release(dedupe_key)
            raise

        # 事务已提交：此后即使被取消也保留去重标记。
        # 发票先于任何 broker I/O 排入后台，广播卡住也不会丢发票
        if outcome.newly_paid:
            self._schedule_invoice(outcome)
        await self._events.publish(events)
        return outcome_to_result(notification.order_id, outcome)

    async def _apply(
        self, notification: PaymentNotification, trigger: Trigger
    ) -> tuple[TransitionOutcome, list[OrderEvent]]:
        async with self._uow_factory() as uow:
            machine = OrderStateMachine(uow.order_repository, max_attempts=self._cas_max_attempts)
            outcome = await machine.apply(
                notification.order_id,
                trigger,
                payment_method=notification.payment_type,
            )
            events = machine.clear_events()

        if outcome.applied:
            logger.info(
                "order_transition_applied",
                order_id=notification.order_id,
                trigger=trigger.value,
                status=outcome.order.status.value,
                payment_status=outcome.order.payment_status.value,
                attempts=outcome.attempts,
            )
        else:
            logger.info(
                "order_transition_conflict",
                order_id=notification.order_id,
                trigger=trigger.value,
                reason=outcome.conflict.reason if outcome.conflict else None,
            )
        return outcome, events

    def _schedule_invoice(self, outcome: TransitionOutcome) -> None:
        if self._notifier is None or outcome.order.paid_at is None:
            return
        self._notifier.schedule(InvoiceRequest(
            order_id=outcome.order.id,
            order_number=outcome.order.order_number,
            paid_at=outcome.order.paid_at,
            user_id=outcome.order.user_id,
        ))
