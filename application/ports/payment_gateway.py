"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from application.dtos.payments import GatewayTransactionStatus, PaymentNotification


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for the third-party payment provider.

    ``verify_notification`` raises ``WebhookSignatureException`` on mismatch
    and must compare in constant time.
    """

    provider: str

    def verify_notification(self, notification: PaymentNotification) -> None: ...

    async def get_transaction_status(self, order_id: str) -> GatewayTransactionStatus: ...
