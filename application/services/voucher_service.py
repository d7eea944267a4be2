"""
优惠券应用服务 - 结账页试用优惠券（只读，不占用名额）
"""
from __future__ import annotations

from typing import Callable, Optional

from application.dtos.auth import Principal
from application.dtos.vouchers import ApplyVoucherRequest, VoucherQuoteOut
from core.logging_config import get_logger
from domain.common.exceptions import VoucherRejectedException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.voucher.service import VoucherValidator


logger = get_logger(__name__)


class VoucherApplicationService:
    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork]):
        self._uow_factory = uow_factory

    async def apply_voucher(self, req: ApplyVoucherRequest, principal: Optional[Principal] = None) -> VoucherQuoteOut:
        user_id = principal.user_id if principal else None
        async with self._uow_factory(readonly=True) as uow:
            validator = VoucherValidator(uow.voucher_repository, uow.member_tier_repository)
            try:
                quote = await validator.validate(req.code, req.subtotal, user_id=user_id)
            except VoucherRejectedException as exc:
                logger.info("voucher_rejected", code=req.code, reason=exc.reason, user_id=user_id)
                raise
        logger.info("voucher_applied", code=quote.voucher.code, discount=str(quote.discount), user_id=user_id)
        return VoucherQuoteOut.from_quote(quote)
