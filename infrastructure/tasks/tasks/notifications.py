"""Notification delivery tasks"""
from __future__ import annotations

import asyncio
from datetime import datetime

from celery import shared_task

from ..utils.base_task import BaseTask
from application.ports.notifications import InvoiceRequest
from core.logging_config import get_logger
from core.settings import payment_settings

logger = get_logger(__name__)


@shared_task(
    name="notifications.send_invoice",
    bind=True,
    base=BaseTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def send_invoice(self, order_id: str, order_number: str, paid_at: str, user_id: str | None = None) -> None:
    """Deliver the invoice for a freshly paid order.

    Posts to the configured invoice sender when one is set, otherwise only
    logs the request.
    """
    cfg = payment_settings.invoice
    request = InvoiceRequest(
        order_id=order_id,
        order_number=order_number,
        paid_at=datetime.fromisoformat(paid_at),
        user_id=user_id,
    )
    if cfg.url and cfg.internal_secret:
        from infrastructure.external.notifications.http_dispatcher import HttpInvoiceDispatcher

        dispatcher = HttpInvoiceDispatcher(cfg.url, cfg.internal_secret, timeout_seconds=cfg.timeout_seconds)
    else:
        from infrastructure.external.notifications.log_dispatcher import LogInvoiceDispatcher

        dispatcher = LogInvoiceDispatcher()
    asyncio.run(dispatcher.dispatch_invoice(request))
