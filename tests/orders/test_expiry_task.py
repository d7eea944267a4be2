import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import settings
from domain.order.entity import OrderStatus, PaymentStatus
from infrastructure.database import build_engine
from infrastructure.models import Base
from infrastructure.tasks import celery_app
from infrastructure.tasks.tasks.orders import expire_unpaid_orders
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork
from tests.fakes import make_order


async def _seed(database_url: str) -> None:
    engine = build_engine(database_url)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)
        now = datetime.now(timezone.utc)
        async with SQLAlchemyUnitOfWork(session_factory) as uow:
            await uow.order_repository.create(make_order("late", deadline=now - timedelta(minutes=5)))
            await uow.order_repository.create(make_order("fresh", deadline=now + timedelta(hours=1)))
    finally:
        await engine.dispose()


async def _statuses(database_url: str) -> dict:
    engine = build_engine(database_url)
    try:
        session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)
        async with SQLAlchemyUnitOfWork(session_factory, readonly=True) as uow:
            orders = [await uow.order_repository.get_by_id(i) for i in ("late", "fresh")]
    finally:
        await engine.dispose()
    return {o.id: (o.status, o.payment_status) for o in orders}


def test_expire_unpaid_task_runs_in_its_own_event_loop(tmp_path, monkeypatch):
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'tasks.db'}"
    monkeypatch.setattr(settings.database, "url", database_url)
    monkeypatch.setattr(settings.redis, "url", None)
    monkeypatch.setattr(celery_app.conf, "task_always_eager", True)
    asyncio.run(_seed(database_url))

    # two runs, two fresh loops; nothing may leak between them
    first = expire_unpaid_orders.delay().get(timeout=10)
    second = expire_unpaid_orders.delay().get(timeout=10)

    assert first["expired_count"] == 1
    assert second["expired_count"] == 0
    statuses = asyncio.run(_statuses(database_url))
    assert statuses["late"] == (OrderStatus.CANCELLED, PaymentStatus.EXPIRED)
    assert statuses["fresh"] == (OrderStatus.AWAITING_PAYMENT, PaymentStatus.PENDING)
