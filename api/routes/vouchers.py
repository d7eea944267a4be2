"""
Voucher API routes.
"""
from typing import Optional

from fastapi import APIRouter, Depends

from api.dependencies import get_optional_principal, get_voucher_service
from application.dtos.auth import Principal
from application.dtos.vouchers import ApplyVoucherRequest, VoucherQuoteOut
from application.services.voucher_service import VoucherApplicationService
from core.i18n import t
from core.response import success_response, Response as ApiResponse


router = APIRouter(prefix="/vouchers", tags=["Vouchers"])


@router.post("/apply", summary="Validate a voucher and quote its discount", response_model=ApiResponse[VoucherQuoteOut])
async def apply_voucher(
    payload: ApplyVoucherRequest,
    principal: Optional[Principal] = Depends(get_optional_principal),
    service: VoucherApplicationService = Depends(get_voucher_service),
):
    """
    Validate a voucher code against a cart subtotal.

    - **code**: voucher code (case-insensitive)
    - **subtotal**: cart subtotal before shipping

    Rejections return 400 with `error.details.reason` set to the typed reason.
    """
    quote = await service.apply_voucher(payload, principal)
    return success_response(data=quote, message=t("voucher.applied", default="Voucher applied"))
