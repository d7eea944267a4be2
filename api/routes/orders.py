"""
Order API routes.
"""
from typing import Optional

from fastapi import APIRouter, Body, Depends, status

from api.dependencies import (
    get_current_principal,
    get_order_service,
    get_payment_expiry_service,
    require_admin,
)
from application.dtos.auth import Principal
from application.dtos.orders import (
    AdminCancelRequest,
    CancellationRequest,
    ExpireUnpaidResult,
    OrderOut,
    PlaceOrderRequest,
    TransitionResultOut,
)
from application.services.order_service import OrderApplicationService
from application.services.payment_expiry_service import PaymentExpiryService
from core.i18n import t
from core.response import success_response, Response as ApiResponse


router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post(
    "",
    summary="Place an order",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[OrderOut],
)
async def place_order(
    payload: PlaceOrderRequest,
    principal: Principal = Depends(get_current_principal),
    service: OrderApplicationService = Depends(get_order_service),
):
    """
    Create an order awaiting payment.

    Item subtotals and the voucher discount are recomputed server-side; the
    payment deadline is set from the configured payment window.
    """
    order = await service.place_order(principal, payload)
    return success_response(data=order, message=t("order.created", default="Order created"))


@router.post("/expire-unpaid", summary="Expire unpaid orders past their deadline", response_model=ApiResponse[ExpireUnpaidResult])
async def expire_unpaid(
    _admin: Principal = Depends(require_admin),
    service: PaymentExpiryService = Depends(get_payment_expiry_service),
):
    result = await service.expire_unpaid()
    return success_response(data=result, message=result.message)


@router.get("/{order_id}", summary="Get an order", response_model=ApiResponse[OrderOut])
async def get_order(
    order_id: str,
    principal: Principal = Depends(get_current_principal),
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.get_order(principal, order_id)
    return success_response(data=order)


@router.post("/{order_id}/cancellation", summary="Request cancellation", response_model=ApiResponse[TransitionResultOut])
async def request_cancellation(
    order_id: str,
    payload: CancellationRequest,
    principal: Principal = Depends(get_current_principal),
    service: OrderApplicationService = Depends(get_order_service),
):
    result = await service.request_cancellation(principal, order_id, payload.reason)
    return success_response(data=result, message=t("order.cancellation.requested", default="Cancellation requested"))


@router.post(
    "/{order_id}/cancellation/approve",
    summary="Approve cancellation (admin)",
    response_model=ApiResponse[TransitionResultOut],
)
async def approve_cancellation(
    order_id: str,
    payload: Optional[AdminCancelRequest] = Body(default=None),
    admin: Principal = Depends(require_admin),
    service: OrderApplicationService = Depends(get_order_service),
):
    reason = payload.reason if payload else None
    result = await service.approve_cancellation(admin, order_id, reason)
    return success_response(data=result, message=t("order.cancelled", default="Order cancelled"))


@router.post(
    "/{order_id}/cancellation/reject",
    summary="Reject cancellation request (admin)",
    response_model=ApiResponse[TransitionResultOut],
)
async def reject_cancellation(
    order_id: str,
    admin: Principal = Depends(require_admin),
    service: OrderApplicationService = Depends(get_order_service),
):
    result = await service.reject_cancellation(admin, order_id)
    return success_response(data=result, message=t("order.cancellation.rejected", default="Cancellation request rejected"))


@router.post("/{order_id}/ship", summary="Mark shipped (admin)", response_model=ApiResponse[TransitionResultOut])
async def ship_order(
    order_id: str,
    admin: Principal = Depends(require_admin),
    service: OrderApplicationService = Depends(get_order_service),
):
    result = await service.ship(admin, order_id)
    return success_response(data=result, message=t("order.shipped", default="Order shipped"))


@router.post("/{order_id}/complete", summary="Mark completed (admin)", response_model=ApiResponse[TransitionResultOut])
async def complete_order(
    order_id: str,
    admin: Principal = Depends(require_admin),
    service: OrderApplicationService = Depends(get_order_service),
):
    result = await service.complete(admin, order_id)
    return success_response(data=result, message=t("order.completed", default="Order completed"))
