"""
Midtrans payment client.

- Notification signature: SHA-512 hex of order_id + status_code + gross_amount + server_key
- Status API: GET {base}/v2/{order_id}/status with HTTP Basic auth (server_key as username)
"""
from __future__ import annotations

import hashlib
import hmac
from typing import Any, Optional

import httpx

from application.dtos.payments import GatewayTransactionStatus, PaymentNotification
from core.settings import payment_settings
from domain.common.exceptions import WebhookSignatureException
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import PaymentProviderError, PaymentRecoverableError


def compute_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    payload = f"{order_id}{status_code}{gross_amount}{server_key}".encode("utf-8")
    return hashlib.sha512(payload).hexdigest()


class MidtransClient(BasePaymentClient):
    provider = "midtrans"

    def __init__(
        self,
        *,
        server_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        cfg = payment_settings
        super().__init__(
            timeouts=timeouts or cfg.timeouts.model_dump(),
            retry=retry or {"max": cfg.retry.max, "base": cfg.retry.base_backoff},
            transport=transport,
        )
        self._server_key = server_key if server_key is not None else cfg.midtrans.server_key
        self._base_url = (base_url or cfg.midtrans.base_url).rstrip("/")

    def _require_key(self) -> str:
        if not self._server_key:
            raise PaymentProviderError("Midtrans server key not configured", provider=self.provider)
        return self._server_key

    def verify_notification(self, notification: PaymentNotification) -> None:
        expected = compute_signature(
            notification.order_id,
            notification.status_code,
            notification.gross_amount,
            self._require_key(),
        )
        supplied = (notification.signature_key or "").strip().lower()
        if not hmac.compare_digest(expected.encode("ascii"), supplied.encode("utf-8")):
            raise WebhookSignatureException(self.provider, order_id=notification.order_id)

    async def get_transaction_status(self, order_id: str) -> GatewayTransactionStatus:
        resp = await self._send(
            "GET",
            f"{self._base_url}/v2/{order_id}/status",
            auth=httpx.BasicAuth(self._require_key(), ""),
            headers={"Accept": "application/json"},
        )

        if resp.status_code >= 500:
            raise PaymentRecoverableError(
                "Midtrans unavailable", provider=self.provider, provider_code=str(resp.status_code)
            )
        if resp.status_code == 404:
            return GatewayTransactionStatus(order_id=order_id, found=False, status_code="404")
        if resp.status_code >= 400:
            raise PaymentProviderError(
                "Midtrans rejected status request", provider=self.provider, provider_code=str(resp.status_code)
            )

        data = resp.json()
        # Midtrans reports "transaction not found" as HTTP 200 with status_code "404"
        status_code = str(data.get("status_code") or "")
        if status_code == "404":
            return GatewayTransactionStatus(order_id=order_id, found=False, status_code=status_code)

        self._log("midtrans_status_fetched", order_id=order_id, transaction_status=data.get("transaction_status"))
        return GatewayTransactionStatus(
            order_id=order_id,
            transaction_status=(data.get("transaction_status") or "").lower() or None,
            status_code=status_code or None,
            gross_amount=data.get("gross_amount"),
            payment_type=data.get("payment_type"),
            fraud_status=data.get("fraud_status"),
        )
