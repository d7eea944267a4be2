"""
Notification dispatcher port.

Delivery itself (email/push) is an external collaborator; the application
only asks for an invoice to be sent once an order becomes paid.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol


@dataclass(frozen=True)
class InvoiceRequest:
    order_id: str
    order_number: str
    paid_at: datetime
    user_id: Optional[str] = None

    @property
    def dedupe_key(self) -> str:
        return f"{self.order_id}:{self.paid_at.isoformat()}"


class InvoiceDispatcherPort(Protocol):
    async def dispatch_invoice(self, request: InvoiceRequest) -> None: ...


__all__ = ["InvoiceRequest", "InvoiceDispatcherPort"]
