"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
        message_key: Optional[str] = None,
        format_params: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        self.message_key = message_key
        self.format_params = format_params
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
        message_key: str | None = None,
        format_params: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
            message_key=message_key or "validation.domain",
            format_params=format_params,
        )


class OrderNotFoundException(BusinessException):
    def __init__(self, order_id: Optional[str] = None):
        details = {"order_id": order_id} if order_id else None
        super().__init__(
            code=BusinessCode.ORDER_NOT_FOUND,
            message="Order not found",
            error_type="OrderNotFound",
            details=details,
            message_key="order.not_found",
        )


class OrderTransitionConflictException(BusinessException):
    """仅在管理端/用户端入口抛出；Webhook 与过期清理路径将同样的情况视为无害的 no-op"""

    def __init__(self, order_id: str, trigger: str, reason: str):
        super().__init__(
            code=BusinessCode.ORDER_STATE_CONFLICT,
            message=f"Order cannot transition via {trigger}: {reason}",
            error_type="OrderStateConflict",
            details={"order_id": order_id, "trigger": trigger, "reason": reason},
            message_key="order.transition.conflict",
            format_params={"trigger": trigger, "reason": reason},
        )


class OrderAccessDeniedException(BusinessException):
    def __init__(self, order_id: str):
        super().__init__(
            code=BusinessCode.FORBIDDEN,
            message="You do not have access to this order",
            error_type="OrderAccessDenied",
            details={"order_id": order_id},
            message_key="order.access_denied",
        )


class VoucherRejectedException(BusinessException):
    """优惠券校验未通过；reason 为类型化的拒绝原因"""

    def __init__(self, reason: str, message: str, *, code: Optional[str] = None, details: Optional[dict] = None):
        full_details = {"reason": reason}
        if code:
            full_details["code"] = code
        if details:
            full_details.update(details)
        super().__init__(
            code=BusinessCode.VOUCHER_REJECTED,
            message=message,
            error_type="VoucherRejected",
            details=full_details,
            field="code",
        )
        self.reason = reason


class NotificationDispatchException(BusinessException):
    """状态已提交后下游通知失败（仅记录日志，不回滚）"""

    def __init__(self, order_id: str, error: str):
        super().__init__(
            code=BusinessCode.DEPENDENCY_ERROR,
            message=f"Notification dispatch failed for order {order_id}",
            error_type="DependencyError",
            details={"order_id": order_id, "error": error},
            message_key="notification.dispatch_failed",
        )


class WebhookSignatureException(BusinessException):
    """支付网关回调签名校验失败"""

    def __init__(self, provider: str, order_id: Optional[str] = None):
        details = {"provider": provider}
        if order_id:
            details["order_id"] = order_id
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message="Invalid webhook signature",
            error_type="WebhookSignatureError",
            details=details,
            message_key="payment.signature.invalid",
        )
