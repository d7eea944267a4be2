"""Order maintenance tasks"""
from __future__ import annotations

import asyncio

from celery import shared_task

from ..utils.base_task import BaseTask
from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)


async def _expire_unpaid() -> dict:
    from application.services.order_events import OrderEventPublisher
    from application.services.payment_expiry_service import PaymentExpiryService
    from infrastructure.database import task_session_factory
    from infrastructure.realtime.brokers import select_broker
    from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

    broker = select_broker()
    try:
        # every run gets a fresh event loop, so connections must not outlive it
        async with task_session_factory() as session_factory:
            service = PaymentExpiryService(
                uow_factory=lambda readonly=False: SQLAlchemyUnitOfWork(session_factory, readonly=readonly),
                events=OrderEventPublisher(broker, timeout_seconds=settings.orders.event_publish_timeout_seconds),
                batch_size=settings.orders.expiry_sweep_batch_size,
                cas_max_attempts=settings.orders.cas_max_attempts,
            )
            result = await service.expire_unpaid()
    finally:
        await broker.aclose()
    return result.model_dump()


@shared_task(name="orders.expire_unpaid", bind=True, base=BaseTask, max_retries=0)
def expire_unpaid_orders(self) -> dict:
    """Cancel every awaiting-payment order whose payment deadline has passed.

    Safe to overlap with another run or with webhook processing: each order
    is moved through the compare-and-swap state machine.
    """
    result = asyncio.run(_expire_unpaid())
    logger.info("expire_unpaid_task_done", expired_count=result["expired_count"])
    return result
