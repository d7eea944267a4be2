"""
Shared plumbing for gateway clients: one lazily created httpx client,
tenacity retries on transport failures, and provider-tagged logging.

Subclasses implement signature checks and status queries.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from application.dtos.payments import GatewayTransactionStatus, PaymentNotification
from core.logging_config import get_logger
from infrastructure.external.payments.exceptions import PaymentRecoverableError


logger = get_logger(__name__)

DEFAULT_TIMEOUTS = {"connect": 1.0, "read": 3.0, "write": 3.0, "total": 5.0}
TRANSPORT_ERRORS = (httpx.TimeoutException, httpx.TransportError)


class BasePaymentClient:
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        cfg = {**DEFAULT_TIMEOUTS, **(timeouts or {})}
        self._timeout = httpx.Timeout(
            cfg["total"], connect=cfg["connect"], read=cfg["read"], write=cfg["write"]
        )
        retry = retry or {}
        self._max_retries = int(retry.get("max", 2))
        self._backoff_base = float(retry.get("base", 0.2))
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            try:
                await self._http.aclose()
            finally:
                self._http = None

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a request, retrying transport failures; exhausted retries become PaymentRecoverableError."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_retries + 1),
                wait=wait_exponential(multiplier=self._backoff_base, min=0.1, max=2.0),
                retry=retry_if_exception_type(TRANSPORT_ERRORS),
                reraise=True,
            ):
                with attempt:
                    return await self._client().request(method, url, **kwargs)
        except TRANSPORT_ERRORS as exc:
            logger.warning("payment_gateway_unreachable", provider=self.provider, url=url, error=str(exc))
            raise PaymentRecoverableError(
                f"{self.provider} request failed", provider=self.provider, details={"error": str(exc)}
            ) from exc

    def verify_notification(self, notification: PaymentNotification) -> None:
        raise NotImplementedError

    async def get_transaction_status(self, order_id: str) -> GatewayTransactionStatus:
        raise NotImplementedError

    def _log(self, event: str, **kwargs) -> None:
        logger.info(event, provider=self.provider, **kwargs)
