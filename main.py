"""
FastAPI应用主入口
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from api.routes import orders as orders_routes
from api.routes import payments as payments_routes
from api.routes import vouchers as vouchers_routes
from api.middleware import RequestIDMiddleware, LoggingMiddleware
from api.middleware.locale import LocaleMiddleware
from application.services.notification_service import InvoiceNotifier
from core.config import settings
from core.exceptions import register_exception_handlers
from core.response import success_response
from core.settings import payment_settings
from core.i18n import t
from core.logging_config import get_logger, configure_logging
from infrastructure.database import create_tables, engine
from infrastructure.external.cache import (
    init_redis_client,
    shutdown_redis_client,
)
from infrastructure.external.notifications import get_invoice_dispatcher
from infrastructure.external.payments import get_payment_gateway
from infrastructure.rate_limit import (
    InMemoryIdempotencyStore,
    InMemorySlidingWindowRateLimiter,
    RedisFixedWindowRateLimiter,
    RedisIdempotencyStore,
)
from infrastructure.realtime.brokers import InMemoryRealtimeBroker, RedisRealtimeBroker


# 初始化日志：在入口处显式配置，避免模块导入时的副作用
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 启动时创建数据库表（仅开发环境）。生产应使用 Alembic 迁移
    if settings.DEBUG:
        await create_tables()
        logger.info("database_initialized", message="Database tables created (development)")
    else:
        logger.info(
            "database_migrations_required",
            message="No auto-create in production, use Alembic migrations (alembic upgrade head)"
        )

    webhook = payment_settings.webhook
    redis = None
    if settings.redis.url:
        try:
            redis = await init_redis_client()
            logger.info("redis_cache_initialized", message="Redis cache initialized")
        except Exception as exc:
            # 退化为进程内限流/去重与广播，单副本仍可正确运行
            logger.error("redis_cache_init_failed", error=str(exc))

    app.state.redis = redis
    if redis is not None:
        app.state.webhook_rate_limiter = RedisFixedWindowRateLimiter(
            redis, webhook.rate_limit_per_minute, webhook.rate_limit_window_seconds
        )
        app.state.idempotency_store = RedisIdempotencyStore(redis)
        app.state.order_event_broker = RedisRealtimeBroker(redis)
    else:
        app.state.webhook_rate_limiter = InMemorySlidingWindowRateLimiter(
            webhook.rate_limit_per_minute, webhook.rate_limit_window_seconds
        )
        app.state.idempotency_store = InMemoryIdempotencyStore()
        app.state.order_event_broker = InMemoryRealtimeBroker()
    logger.info("order_event_broker_selected", provider="redis" if redis is not None else "inmemory")

    app.state.payment_gateway = get_payment_gateway()
    app.state.invoice_notifier = InvoiceNotifier(
        get_invoice_dispatcher(),
        app.state.idempotency_store,
        timeout_seconds=payment_settings.invoice.timeout_seconds,
        dedupe_ttl_seconds=payment_settings.invoice.dedupe_ttl_seconds,
    )

    yield

    # 关闭时的清理工作：先等待未完成的发票发送
    await app.state.invoice_notifier.drain(timeout=payment_settings.invoice.timeout_seconds)
    await app.state.order_event_broker.aclose()
    close_gateway = getattr(app.state.payment_gateway, "aclose", None)
    if callable(close_gateway):
        await close_gateway()
    if redis is not None:
        await shutdown_redis_client()
        logger.info("redis_cache_shutdown", message="Redis cache shutdown")
    await engine.dispose()
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="订单生命周期与支付对账服务",
)

# 添加中间件（注意顺序：从下往上执行）
# 1. Request ID中间件（最先执行，为后续中间件提供request_id）
app.add_middleware(RequestIDMiddleware)

# 2. 日志中间件（依赖request_id）
app.add_middleware(LoggingMiddleware)

# 2.5 语言中间件（解析 locale）
app.add_middleware(LocaleMiddleware)

# 3. CORS中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册全局异常处理器
register_exception_handlers(app)


# 注册路由
app.include_router(orders_routes.router, prefix="/api/v1")
app.include_router(payments_routes.router, prefix="/api/v1")
app.include_router(vouchers_routes.router, prefix="/api/v1")


# 根路径
@app.get("/", tags=["Root"])
async def root():
    """API根路径"""
    return success_response(
        data={
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": "/docs",
            "redoc": "/redoc"
        },
        message=t("welcome", default="Welcome")
    )


# 健康检查
@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """健康检查端点；配置了 Redis 时附带其连通性"""
    data = {"status": "healthy"}
    redis = getattr(request.app.state, "redis", None)
    if redis is not None:
        data["redis"] = "up" if await redis.health_check() else "down"
    return success_response(data=data, message=t("health.ok", default="OK"))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
