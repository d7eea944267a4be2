"""
HTTP invoice dispatcher.

Posts ``{"orderId": ...}`` to the invoice sender endpoint. The request is
authenticated with ``x-internal-signature``: hex HMAC-SHA256 of the order id
keyed with the shared internal secret.
"""
from __future__ import annotations

import hashlib
import hmac
from typing import Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from application.ports.notifications import InvoiceDispatcherPort, InvoiceRequest
from core.logging_config import get_logger


logger = get_logger(__name__)

SIGNATURE_HEADER = "x-internal-signature"


def sign_order_id(order_id: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), order_id.encode("utf-8"), hashlib.sha256).hexdigest()


class HttpInvoiceDispatcher(InvoiceDispatcherPort):
    def __init__(
        self,
        url: str,
        secret: str,
        *,
        timeout_seconds: float = 10.0,
        max_retries: int = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._url = url
        self._secret = secret
        self._timeout = httpx.Timeout(timeout_seconds)
        self._max_retries = max_retries
        self._transport = transport

    async def dispatch_invoice(self, request: InvoiceRequest) -> None:
        body = {"orderId": request.order_id}
        headers = {SIGNATURE_HEADER: sign_order_id(request.order_id, self._secret)}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_retries + 1),
                wait=wait_exponential(multiplier=0.2, min=0.1, max=2.0),
                retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
                reraise=True,
            ):
                with attempt:
                    resp = await client.post(self._url, json=body, headers=headers)
        # 4xx/5xx surface as httpx.HTTPStatusError for the notifier to log
        resp.raise_for_status()
        logger.info("invoice_http_sent", order_id=request.order_id, status_code=resp.status_code)
