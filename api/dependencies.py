"""
API依赖项 - 认证、授权与应用服务装配
"""
from typing import Any, Callable, Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from application.dtos.auth import Principal
from application.ports.payment_gateway import PaymentGateway
from application.services.notification_service import InvoiceNotifier
from application.services.order_events import OrderEventPublisher
from application.services.order_service import OrderApplicationService
from application.services.payment_expiry_service import PaymentExpiryService
from application.services.payment_webhook_service import PaymentWebhookService
from application.services.voucher_service import VoucherApplicationService
from core.config import settings
from core.exceptions import ForbiddenException, TokenInvalidException, UnauthorizedException
from core.settings import payment_settings
from infrastructure.external.notifications import get_invoice_dispatcher
from infrastructure.external.payments import get_payment_gateway
from infrastructure.rate_limit import InMemoryIdempotencyStore, InMemorySlidingWindowRateLimiter
from infrastructure.realtime.brokers import InMemoryRealtimeBroker
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)


# ---- 认证 ----

def decode_principal(token: str) -> Principal:
    """校验 JWT 并转换为调用方身份（本服务只校验，不签发）"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise TokenInvalidException("expired")
    except jwt.InvalidTokenError:
        raise TokenInvalidException("invalid")

    user_id = payload.get("sub")
    if not user_id:
        raise TokenInvalidException("missing_subject")

    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    if payload.get("role"):
        roles = [*roles, payload["role"]]
    is_admin = bool(payload.get("is_admin")) or any(r in settings.ADMIN_ROLES for r in roles)
    return Principal(user_id=str(user_id), is_admin=is_admin, email=payload.get("email"))


async def get_optional_principal(
    bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> Optional[Principal]:
    """匿名请求返回 None；携带了 Token 则必须有效"""
    if bearer_token is None or not bearer_token.credentials:
        return None
    return decode_principal(bearer_token.credentials)


async def get_current_principal(
    principal: Optional[Principal] = Depends(get_optional_principal),
) -> Principal:
    """获取当前登录用户"""
    if principal is None:
        raise UnauthorizedException("Authentication credentials were not provided")
    return principal


async def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    """获取当前管理员用户"""
    if not principal.is_admin:
        raise ForbiddenException()
    return principal


# ---- 组件（由 main.lifespan 放入 app.state；未初始化时退化为进程内实现）----

def _component(request: Request, name: str, factory: Callable[[], Any]) -> Any:
    value = getattr(request.app.state, name, None)
    if value is None:
        value = factory()
        setattr(request.app.state, name, value)
    return value


def get_event_publisher(request: Request) -> OrderEventPublisher:
    broker = _component(request, "order_event_broker", InMemoryRealtimeBroker)
    return OrderEventPublisher(broker, timeout_seconds=settings.orders.event_publish_timeout_seconds)


def get_gateway(request: Request) -> PaymentGateway:
    return _component(request, "payment_gateway", get_payment_gateway)


def get_invoice_notifier(request: Request) -> InvoiceNotifier:
    cfg = payment_settings.invoice
    idempotency = _component(request, "idempotency_store", InMemoryIdempotencyStore)
    return _component(
        request,
        "invoice_notifier",
        lambda: InvoiceNotifier(
            get_invoice_dispatcher(),
            idempotency,
            timeout_seconds=cfg.timeout_seconds,
            dedupe_ttl_seconds=cfg.dedupe_ttl_seconds,
        ),
    )


# ---- 应用服务 ----

async def get_voucher_service() -> VoucherApplicationService:
    return VoucherApplicationService(uow_factory=SQLAlchemyUnitOfWork)


async def get_order_service(
    events: OrderEventPublisher = Depends(get_event_publisher),
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: InvoiceNotifier = Depends(get_invoice_notifier),
) -> OrderApplicationService:
    return OrderApplicationService(
        uow_factory=SQLAlchemyUnitOfWork,
        events=events,
        gateway=gateway,
        notifier=notifier,
        payment_window_hours=settings.orders.payment_window_hours,
        cas_max_attempts=settings.orders.cas_max_attempts,
        manual_payment_methods=settings.orders.manual_payment_methods,
    )


async def get_payment_expiry_service(
    events: OrderEventPublisher = Depends(get_event_publisher),
) -> PaymentExpiryService:
    return PaymentExpiryService(
        uow_factory=SQLAlchemyUnitOfWork,
        events=events,
        batch_size=settings.orders.expiry_sweep_batch_size,
        cas_max_attempts=settings.orders.cas_max_attempts,
    )


async def get_payment_webhook_service(
    request: Request,
    events: OrderEventPublisher = Depends(get_event_publisher),
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: InvoiceNotifier = Depends(get_invoice_notifier),
) -> PaymentWebhookService:
    webhook = payment_settings.webhook
    rate_limiter = _component(
        request,
        "webhook_rate_limiter",
        lambda: InMemorySlidingWindowRateLimiter(webhook.rate_limit_per_minute, webhook.rate_limit_window_seconds),
    )
    idempotency = _component(request, "idempotency_store", InMemoryIdempotencyStore)
    return PaymentWebhookService(
        uow_factory=SQLAlchemyUnitOfWork,
        gateway=gateway,
        rate_limiter=rate_limiter,
        idempotency=idempotency,
        notifier=notifier,
        events=events,
        test_order_prefix=webhook.test_order_prefix,
        dedupe_ttl_seconds=webhook.dedupe_ttl_seconds,
        cas_max_attempts=settings.orders.cas_max_attempts,
    )
