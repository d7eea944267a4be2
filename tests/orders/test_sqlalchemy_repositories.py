from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from application.dtos.auth import Principal
from application.dtos.orders import PlaceOrderRequest
from application.services.order_service import OrderApplicationService
from domain.common.exceptions import VoucherRejectedException
from domain.order.entity import OrderStatus, PaymentStatus
from domain.order.service import OrderStateMachine
from domain.order.state_machine import OrderState, Trigger
from infrastructure.database import build_engine
from infrastructure.models import Base, MemberProgressModel, VoucherModel, VoucherUsageModel
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork
from tests.fakes import make_order


async def _database(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)

    def uow_factory(readonly: bool = False) -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory, readonly=readonly)

    return engine, session_factory, uow_factory


def _request(code=None):
    return PlaceOrderRequest.model_validate({
        "items": [{"product_id": "p-1", "product_name": "Kaos", "price": "200000", "quantity": 1}],
        "voucher_code": code,
    })


@pytest.mark.asyncio
async def test_compare_and_swap_only_matches_expected_state(tmp_path):
    engine, _, uow_factory = await _database(tmp_path)
    try:
        async with uow_factory() as uow:
            await uow.order_repository.create(make_order("order-1"))

        pending = OrderState(OrderStatus.AWAITING_PAYMENT, PaymentStatus.PENDING)
        async with uow_factory() as uow:
            stale = OrderState(OrderStatus.PROCESSING, PaymentStatus.PAID)
            assert not await uow.order_repository.compare_and_swap("order-1", stale, {"status": OrderStatus.SHIPPED})
            assert await uow.order_repository.compare_and_swap(
                "order-1", pending, {"status": OrderStatus.CANCELLED, "payment_status": PaymentStatus.FAILED}
            )

        async with uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_id("order-1")
            assert (order.status, order.payment_status) == (OrderStatus.CANCELLED, PaymentStatus.FAILED)
            assert [i.line_index for i in order.items] == [0]
            assert order.total_amount == Decimal("150000.00")
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_state_machine_and_expiry_query(tmp_path):
    engine, _, uow_factory = await _database(tmp_path)
    now = datetime.now(timezone.utc)
    try:
        async with uow_factory() as uow:
            await uow.order_repository.create(make_order("late", deadline=now - timedelta(minutes=1)))
            await uow.order_repository.create(make_order("fresh", deadline=now + timedelta(hours=1)))

        async with uow_factory(readonly=True) as uow:
            due = await uow.order_repository.list_expired_unpaid(now)
        assert [o.id for o in due] == ["late"]

        async with uow_factory() as uow:
            machine = OrderStateMachine(uow.order_repository)
            outcome = await machine.apply("late", Trigger.DEADLINE_PASSED, now=now)
        assert outcome.applied
        assert [e.to_payment_status for e in machine.clear_events()] == ["expired"]

        async with uow_factory() as uow:
            again = await OrderStateMachine(uow.order_repository).apply("late", Trigger.PAYMENT_CAPTURED, now=now)
        assert not again.applied
        assert again.order.cancelled_at is not None
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_last_voucher_slot_is_redeemed_once(tmp_path):
    engine, session_factory, uow_factory = await _database(tmp_path)
    try:
        async with session_factory() as session:
            session.add(VoucherModel(
                id="v-1",
                code="SAVE10",
                discount_type="percentage",
                discount_value=Decimal("10"),
                max_discount=Decimal("50000"),
                usage_limit=1,
                allowed_tiers=["gold"],
            ))
            session.add(MemberProgressModel(user_id="user-1", current_tier="gold"))
            session.add(MemberProgressModel(user_id="user-2", current_tier="gold"))
            await session.commit()

        service = OrderApplicationService(uow_factory)
        order = await service.place_order(Principal(user_id="user-1"), _request("save10"))
        assert order.discount_amount == Decimal("20000.00")
        assert order.total_amount == Decimal("180000.00")

        with pytest.raises(VoucherRejectedException) as exc:
            await service.place_order(Principal(user_id="user-2"), _request("SAVE10"))
        assert exc.value.reason == "usage_exhausted"

        async with uow_factory() as uow:
            assert not await uow.voucher_repository.try_increment_usage("v-1")

        async with session_factory() as session:
            voucher = await session.get(VoucherModel, "v-1")
            usages = await session.scalar(select(func.count(VoucherUsageModel.id)))
        assert voucher.usage_count == 1
        assert usages == 1
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_zero_usage_limit_is_unlimited(tmp_path):
    engine, session_factory, uow_factory = await _database(tmp_path)
    try:
        async with session_factory() as session:
            session.add(VoucherModel(
                id="v-0",
                code="OPEN",
                discount_type="fixed",
                discount_value=Decimal("5000"),
                usage_limit=0,
            ))
            await session.commit()

        for _ in range(2):
            async with uow_factory() as uow:
                assert await uow.voucher_repository.try_increment_usage("v-0")

        async with session_factory() as session:
            assert (await session.get(VoucherModel, "v-0")).usage_count == 2
    finally:
        await engine.dispose()
