import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from application.services.order_events import OrderEventPublisher
from application.services.payment_expiry_service import PaymentExpiryService
from domain.order.entity import OrderStatus, PaymentStatus
from domain.order.service import OrderStateMachine
from domain.order.state_machine import EXPIRED_DEADLINE_REASON, Trigger
from infrastructure.realtime.brokers import InMemoryRealtimeBroker
from tests.fakes import FakeUnitOfWork, InMemoryStore, make_order, uow_factory


NOW = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_sweep_expires_only_overdue_pending_orders():
    store = InMemoryStore()
    store.orders["late"] = make_order("late", deadline=NOW - timedelta(minutes=5))
    store.orders["fresh"] = make_order("fresh", deadline=NOW + timedelta(hours=1))
    store.orders["paid"] = make_order(
        "paid",
        status=OrderStatus.PROCESSING,
        payment_status=PaymentStatus.PAID,
        paid_at=NOW - timedelta(hours=2),
        deadline=NOW - timedelta(hours=1),
    )
    broker = InMemoryRealtimeBroker()
    service = PaymentExpiryService(uow_factory=uow_factory(store), events=OrderEventPublisher(broker))

    result = await service.expire_unpaid(NOW)

    assert result.expired_count == 1
    assert result.expired_order_numbers == [store.orders["late"].order_number]
    late = store.orders["late"]
    assert late.status == OrderStatus.CANCELLED
    assert late.payment_status == PaymentStatus.EXPIRED
    assert late.cancelled_at == NOW
    assert late.cancellation_reason == EXPIRED_DEADLINE_REASON
    assert store.orders["fresh"].status == OrderStatus.AWAITING_PAYMENT
    assert store.orders["paid"].payment_status == PaymentStatus.PAID
    assert [e.data["trigger"] for e in broker.published] == ["deadline_passed"]


@pytest.mark.asyncio
async def test_sweep_with_nothing_due():
    store = InMemoryStore()
    result = await PaymentExpiryService(uow_factory=uow_factory(store)).expire_unpaid(NOW)
    assert result.success
    assert result.expired_count == 0


@pytest.mark.asyncio
async def test_second_sweep_is_a_no_op():
    store = InMemoryStore()
    store.orders["late"] = make_order("late", deadline=NOW - timedelta(minutes=5))
    service = PaymentExpiryService(uow_factory=uow_factory(store))

    assert (await service.expire_unpaid(NOW)).expired_count == 1
    assert (await service.expire_unpaid(NOW)).expired_count == 0


@pytest.mark.asyncio
async def test_payment_and_expiry_race_has_exactly_one_winner():
    store = InMemoryStore()
    store.orders["order-1"] = make_order("order-1", deadline=NOW - timedelta(seconds=1))

    async def _apply(trigger):
        async with FakeUnitOfWork(store, yield_on_read=True) as uow:
            return await OrderStateMachine(uow.order_repository).apply("order-1", trigger, now=NOW)

    paid, expired = await asyncio.gather(
        _apply(Trigger.PAYMENT_CAPTURED),
        _apply(Trigger.DEADLINE_PASSED),
    )

    assert sorted([paid.applied, expired.applied]) == [False, True]
    final = store.orders["order-1"]
    if paid.applied:
        assert (final.status, final.payment_status) == (OrderStatus.PROCESSING, PaymentStatus.PAID)
        assert final.cancelled_at is None
    else:
        assert (final.status, final.payment_status) == (OrderStatus.CANCELLED, PaymentStatus.EXPIRED)
        assert final.paid_at is None


@pytest.mark.asyncio
async def test_state_machine_retries_after_stale_read():
    store = InMemoryStore()
    store.orders["order-1"] = make_order("order-1")
    real = store.orders["order-1"]

    uow = FakeUnitOfWork(store)
    reads = []
    original_get = uow.order_repository.get_by_id

    async def _get(order_id):
        reads.append(order_id)
        if len(reads) == 1:
            # another writer flips the cancellation flag right after our first read
            store.orders[order_id] = real.with_changes({"cancellation_requested": True})
            return real
        return await original_get(order_id)

    uow.order_repository.get_by_id = _get
    async with uow:
        outcome = await OrderStateMachine(uow.order_repository).apply("order-1", Trigger.PAYMENT_CAPTURED, now=NOW)

    assert outcome.applied
    assert outcome.attempts == 2
    assert store.orders["order-1"].payment_status == PaymentStatus.PAID
