"""Invoice dispatcher that only logs; used when no sender is configured."""
from __future__ import annotations

from application.ports.notifications import InvoiceDispatcherPort, InvoiceRequest
from core.logging_config import get_logger


logger = get_logger(__name__)


class LogInvoiceDispatcher(InvoiceDispatcherPort):
    async def dispatch_invoice(self, request: InvoiceRequest) -> None:
        logger.info(
            "invoice_dispatch_logged",
            order_id=request.order_id,
            order_number=request.order_number,
            paid_at=request.paid_at.isoformat(),
        )
