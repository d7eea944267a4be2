"""
Payments API routes.

Exposes the gateway webhook and the buyer-initiated payment status check.
Keep this thin: signature checks, mapping and persistence live in the
application services.
"""
from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, Request

from api.middleware.request_id import ip_in_networks, parse_networks
from api.dependencies import get_current_principal, get_order_service, get_payment_webhook_service
from application.dtos.auth import Principal
from application.dtos.payments import PaymentNotification, PaymentStatusCheckResult, WebhookResult
from application.services.order_service import OrderApplicationService
from application.services.payment_webhook_service import PaymentWebhookService
from core.exceptions import ServiceUnavailableException
from core.response import success_response, Response as ApiResponse
from core.i18n import t
from core.logging_config import get_logger
from core.settings import payment_settings


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


def _source_address(request: Request) -> str:
    # resolved by RequestIDMiddleware; forwarding headers count only from TRUSTED_PROXIES
    return getattr(request.state, "client_ip", None) or (request.client.host if request.client else "unknown")


def _ip_permitted(remote_ip: str, allowlist: list[str]) -> bool:
    return ip_in_networks(remote_ip, parse_networks(tuple(allowlist)))


@router.post("/webhooks/midtrans", summary="Midtrans payment notification", response_model=ApiResponse[WebhookResult])
async def midtrans_webhook(
    notification: PaymentNotification,
    request: Request,
    service: PaymentWebhookService = Depends(get_payment_webhook_service),
):
    source = _source_address(request)

    # Optional IP allowlist; foreign callers are acknowledged without processing
    allowlist = payment_settings.webhook.ip_allowlist or []
    if allowlist and not _ip_permitted(source, allowlist):
        logger.warning("webhook_ip_not_allowed", source=source, order_id=notification.order_id)
        return success_response(
            data=WebhookResult(outcome="ignored", order_id=notification.order_id, detail="ip_not_allowed"),
            message=t("payments.webhook.ip_not_allowed", default="Source not allowed"),
        )

    try:
        result = await asyncio.wait_for(
            service.handle(notification, source=source),
            timeout=payment_settings.webhook.response_timeout_seconds,
        )
    except asyncio.TimeoutError:
        # 503 makes the gateway retry; the dedupe claim was released on cancellation
        logger.error("webhook_processing_timeout", order_id=notification.order_id, source=source)
        raise ServiceUnavailableException(
            "Payment notification processing timed out",
            details={"order_id": notification.order_id},
        )

    return success_response(data=result, message=t("payments.webhook.received", default="Notification received"))


@router.post(
    "/{order_id}/check",
    summary="Check payment status with the gateway",
    response_model=ApiResponse[PaymentStatusCheckResult],
)
async def check_payment_status(
    order_id: str,
    principal: Principal = Depends(get_current_principal),
    service: OrderApplicationService = Depends(get_order_service),
):
    """Query the gateway for the order's transaction and apply any state change.

    Only the order owner or an admin may check.
    """
    result = await service.check_payment_status(principal, order_id)
    return success_response(data=result, message=t("payments.status.checked", default="Payment status checked"))
