"""
Factory for invoice dispatchers, selected by ``PAYMENT__INVOICE__MODE``.
"""
from __future__ import annotations

from typing import Optional

from application.ports.notifications import InvoiceDispatcherPort
from core.settings import payment_settings


def get_invoice_dispatcher(mode: Optional[str] = None) -> InvoiceDispatcherPort:
    cfg = payment_settings.invoice
    name = (mode or cfg.mode).lower()
    if name == "celery":
        from .celery_dispatcher import CeleryInvoiceDispatcher
        return CeleryInvoiceDispatcher()
    if name == "http":
        if not cfg.url or not cfg.internal_secret:
            raise ValueError("PAYMENT__INVOICE__URL and PAYMENT__INVOICE__INTERNAL_SECRET are required for http mode")
        from .http_dispatcher import HttpInvoiceDispatcher
        return HttpInvoiceDispatcher(cfg.url, cfg.internal_secret, timeout_seconds=cfg.timeout_seconds)
    if name == "log":
        from .log_dispatcher import LogInvoiceDispatcher
        return LogInvoiceDispatcher()
    raise ValueError(f"Unsupported invoice dispatch mode: {name}")
