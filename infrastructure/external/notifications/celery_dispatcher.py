"""Invoice dispatcher that hands delivery to the ``notifications.send_invoice`` task."""
from __future__ import annotations

import asyncio

from application.ports.notifications import InvoiceDispatcherPort, InvoiceRequest
from infrastructure.tasks.utils.dispatcher import TaskDispatcher


class CeleryInvoiceDispatcher(InvoiceDispatcherPort):
    def __init__(self, tasks: TaskDispatcher | None = None) -> None:
        self._tasks = tasks or TaskDispatcher()

    async def dispatch_invoice(self, request: InvoiceRequest) -> None:
        # send_task talks to the broker synchronously
        await asyncio.to_thread(
            self._tasks.send_invoice,
            request.order_id,
            request.order_number,
            request.paid_at.isoformat(),
            request.user_id,
        )
