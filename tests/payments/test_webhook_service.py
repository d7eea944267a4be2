import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from application.services.notification_service import InvoiceNotifier
from application.services.order_events import OrderEventPublisher
from application.services.payment_webhook_service import PaymentWebhookService, map_gateway_status
from core.exceptions import RateLimitException
from domain.common.exceptions import OrderNotFoundException, WebhookSignatureException
from domain.order.entity import OrderStatus, PaymentStatus
from domain.order.state_machine import Trigger
from infrastructure.rate_limit import InMemoryIdempotencyStore, InMemorySlidingWindowRateLimiter
from infrastructure.realtime.brokers import InMemoryRealtimeBroker
from tests.fakes import (
    AllowAllRateLimiter,
    InMemoryStore,
    RecordingDispatcher,
    StubGateway,
    make_order,
    signed_notification,
    uow_factory,
)


def _service(store, *, rate_limiter=None, dispatcher=None, broker=None, yield_on_read=False, publish_timeout=2.0):
    idempotency = InMemoryIdempotencyStore()
    notifier = InvoiceNotifier(dispatcher or RecordingDispatcher(), idempotency, timeout_seconds=1)
    service = PaymentWebhookService(
        uow_factory=uow_factory(store, yield_on_read=yield_on_read),
        gateway=StubGateway(),
        rate_limiter=rate_limiter or AllowAllRateLimiter(),
        idempotency=idempotency,
        notifier=notifier,
        events=OrderEventPublisher(broker, timeout_seconds=publish_timeout),
    )
    return service, notifier


def test_status_mapping():
    assert map_gateway_status("midtrans", "settlement") == Trigger.PAYMENT_CAPTURED
    assert map_gateway_status("midtrans", "capture", "accept") == Trigger.PAYMENT_CAPTURED
    assert map_gateway_status("midtrans", "capture", "challenge") == Trigger.PAYMENT_PENDING
    assert map_gateway_status("midtrans", "deny") == Trigger.PAYMENT_FAILED
    assert map_gateway_status("midtrans", "cancel") == Trigger.PAYMENT_FAILED
    assert map_gateway_status("midtrans", "expire") == Trigger.PAYMENT_EXPIRED
    assert map_gateway_status("midtrans", "refund") is None
    assert map_gateway_status("unknown", "settlement") is None


@pytest.mark.asyncio
async def test_settlement_marks_order_paid_and_sends_one_invoice():
    store = InMemoryStore()
    store.orders["order-1"] = make_order("order-1")
    dispatcher = RecordingDispatcher()
    broker = InMemoryRealtimeBroker()
    service, notifier = _service(store, dispatcher=dispatcher, broker=broker)

    result = await service.handle(signed_notification("order-1", "settlement"), source="10.0.0.1")
    await notifier.drain()

    assert result.outcome == "applied"
    order = store.orders["order-1"]
    assert order.status == OrderStatus.PROCESSING
    assert order.payment_status == PaymentStatus.PAID
    assert order.paid_at is not None
    assert order.payment_method == "bank_transfer"
    assert [r.order_id for r in dispatcher.requests] == ["order-1"]
    assert broker.published[-1].data["to_status"] == "processing"


@pytest.mark.asyncio
async def test_replayed_notification_is_idempotent():
    store = InMemoryStore()
    store.orders["order-1"] = make_order("order-1")
    dispatcher = RecordingDispatcher()
    service, notifier = _service(store, dispatcher=dispatcher)
    notification = signed_notification("order-1", "settlement")

    first = await service.handle(notification, source="10.0.0.1")
    second = await service.handle(notification, source="10.0.0.1")
    await notifier.drain()
    paid_at = store.orders["order-1"].paid_at

    assert first.outcome == "applied"
    assert second.outcome == "duplicate"
    assert store.orders["order-1"].paid_at == paid_at
    assert len(dispatcher.requests) == 1


@pytest.mark.asyncio
async def test_capture_after_settlement_is_a_harmless_conflict():
    store = InMemoryStore()
    store.orders["order-1"] = make_order("order-1")
    dispatcher = RecordingDispatcher()
    service, notifier = _service(store, dispatcher=dispatcher)

    await service.handle(signed_notification("order-1", "settlement"), source="10.0.0.1")
    result = await service.handle(
        signed_notification("order-1", "capture", fraud_status="accept", status_code="201"),
        source="10.0.0.1",
    )
    await notifier.drain()

    assert result.outcome == "conflict"
    assert result.payment_status == "paid"
    assert len(dispatcher.requests) == 1


@pytest.mark.asyncio
async def test_any_single_character_change_fails_signature():
    store = InMemoryStore()
    store.orders["order-1"] = make_order("order-1")
    service, _ = _service(store)
    good = signed_notification("order-1", "settlement")

    for i in (0, len(good.signature_key) // 2, len(good.signature_key) - 1):
        flipped = "0" if good.signature_key[i] != "0" else "1"
        tampered = good.model_copy(update={"signature_key": good.signature_key[:i] + flipped + good.signature_key[i + 1:]})
        with pytest.raises(WebhookSignatureException):
            await service.handle(tampered, source="10.0.0.1")

    with pytest.raises(WebhookSignatureException):
        await service.handle(good.model_copy(update={"gross_amount": "150001.00"}), source="10.0.0.1")
    assert store.orders["order-1"].status == OrderStatus.AWAITING_PAYMENT
    assert store.cas_calls == 0


@pytest.mark.asyncio
async def test_test_notifications_are_acknowledged_without_side_effects():
    store = InMemoryStore()
    service, _ = _service(store)
    result = await service.handle(signed_notification("payment_notif_test_123", "settlement"), source="10.0.0.1")
    assert result.outcome == "test_event"
    assert store.cas_calls == 0


@pytest.mark.asyncio
async def test_unknown_status_is_ignored():
    store = InMemoryStore()
    store.orders["order-1"] = make_order("order-1")
    service, _ = _service(store)
    result = await service.handle(signed_notification("order-1", "refund"), source="10.0.0.1")
    assert result.outcome == "ignored"
    assert store.cas_calls == 0


@pytest.mark.asyncio
async def test_challenge_keeps_order_pending():
    store = InMemoryStore()
    store.orders["order-1"] = make_order("order-1")
    service, _ = _service(store)
    result = await service.handle(
        signed_notification("order-1", "capture", fraud_status="challenge"), source="10.0.0.1"
    )
    assert result.outcome == "conflict"
    assert store.orders["order-1"].payment_status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_expire_notification_cancels_order():
    store = InMemoryStore()
    store.orders["order-1"] = make_order("order-1")
    service, _ = _service(store)
    result = await service.handle(signed_notification("order-1", "expire", status_code="407"), source="10.0.0.1")
    assert result.outcome == "applied"
    order = store.orders["order-1"]
    assert (order.status, order.payment_status) == (OrderStatus.CANCELLED, PaymentStatus.EXPIRED)
    assert order.cancelled_at is not None


@pytest.mark.asyncio
async def test_unknown_order_releases_dedupe_claim():
    store = InMemoryStore()
    service, _ = _service(store)
    notification = signed_notification("missing", "settlement")

    with pytest.raises(OrderNotFoundException):
        await service.handle(notification, source="10.0.0.1")
    # a retry is processed again instead of being reported as a duplicate
    with pytest.raises(OrderNotFoundException):
        await service.handle(notification, source="10.0.0.1")


@pytest.mark.asyncio
async def test_rate_limit_runs_before_signature_check():
    store = InMemoryStore()
    limiter = InMemorySlidingWindowRateLimiter(2, 60)
    service, _ = _service(store, rate_limiter=limiter)
    bad = signed_notification("order-1", "settlement").model_copy(update={"signature_key": "0" * 128})

    for _ in range(2):
        with pytest.raises(WebhookSignatureException):
            await service.handle(bad, source="10.0.0.9")
    with pytest.raises(RateLimitException) as exc:
        await service.handle(bad, source="10.0.0.9")
    assert exc.value.retry_after >= 1

    # other sources have their own budget
    with pytest.raises(WebhookSignatureException):
        await service.handle(bad, source="10.0.0.10")


@pytest.mark.asyncio
async def test_invoice_failure_does_not_affect_committed_payment():
    store = InMemoryStore()
    store.orders["order-1"] = make_order("order-1")
    service, notifier = _service(store, dispatcher=RecordingDispatcher(fail=True))

    result = await service.handle(signed_notification("order-1", "settlement"), source="10.0.0.1")
    await notifier.drain()

    assert result.outcome == "applied"
    assert store.orders["order-1"].payment_status == PaymentStatus.PAID


@pytest.mark.asyncio
async def test_paid_notification_racing_the_sweeper():
    from application.services.payment_expiry_service import PaymentExpiryService

    store = InMemoryStore()
    store.orders["order-1"] = make_order("order-1", deadline=datetime.now(timezone.utc) - timedelta(seconds=1))
    dispatcher = RecordingDispatcher()
    service, notifier = _service(store, dispatcher=dispatcher, yield_on_read=True)
    sweeper = PaymentExpiryService(uow_factory=uow_factory(store, yield_on_read=True))

    webhook, sweep = await asyncio.gather(
        service.handle(signed_notification("order-1", "settlement"), source="10.0.0.1"),
        sweeper.expire_unpaid(),
    )
    await notifier.drain()

    final = store.orders["order-1"]
    if webhook.outcome == "applied":
        assert sweep.expired_count == 0
        assert final.payment_status == PaymentStatus.PAID
        assert len(dispatcher.requests) == 1
    else:
        assert sweep.expired_count == 1
        assert final.payment_status == PaymentStatus.EXPIRED
        assert dispatcher.requests == []


class _StalledBroker:
    """Broker whose publish never completes (stuck pub/sub connection)."""

    def __init__(self):
        self.attempts = 0

    async def publish(self, room, envelope):
        self.attempts += 1
        await asyncio.sleep(3600)

    async def aclose(self):
        return None


@pytest.mark.asyncio
async def test_invoice_survives_timeout_after_commit():
    store = InMemoryStore()
    store.orders["order-1"] = make_order("order-1")
    dispatcher = RecordingDispatcher()
    service, notifier = _service(store, dispatcher=dispatcher, broker=_StalledBroker(), publish_timeout=60)
    notification = signed_notification("order-1", "settlement")

    # the route gives up while the committed transition is still broadcasting
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(service.handle(notification, source="10.0.0.1"), timeout=0.1)
    assert store.orders["order-1"].payment_status == PaymentStatus.PAID

    redelivery = await service.handle(notification, source="10.0.0.1")
    await notifier.drain(timeout=1)

    assert redelivery.outcome == "duplicate"
    assert [r.order_id for r in dispatcher.requests] == ["order-1"]


@pytest.mark.asyncio
async def test_stalled_broker_is_bounded_by_publish_timeout():
    store = InMemoryStore()
    store.orders["order-1"] = make_order("order-1")
    broker = _StalledBroker()
    dispatcher = RecordingDispatcher()
    service, notifier = _service(store, dispatcher=dispatcher, broker=broker, publish_timeout=0.05)

    result = await asyncio.wait_for(
        service.handle(signed_notification("order-1", "settlement"), source="10.0.0.1"), timeout=1
    )
    await notifier.drain(timeout=1)

    assert result.outcome == "applied"
    assert broker.attempts == 1
    assert len(dispatcher.requests) == 1
