"""
请求/响应日志中间件
记录订单与支付接口的请求、响应和耗时；支付回调额外记录通知摘要便于对账
"""
import json
import time
from typing import Any, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.logging_config import get_logger
from core.config import settings


logger = get_logger(__name__)

WEBHOOK_PATH_MARKER = "/payments/webhooks/"
# 回调摘要只保留这些字段，签名与金额之外的内容不落日志
WEBHOOK_SUMMARY_FIELDS = ("order_id", "transaction_status", "status_code", "fraud_status", "payment_type")


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    日志记录中间件

    功能：
    1. 记录请求信息（方法、路径、参数）
    2. 按状态码分级记录响应与耗时
    3. 支付回调无论是否开启请求体日志，都记录通知摘要
    """

    SKIP_PATHS = {"/", "/health", "/docs", "/redoc", "/openapi.json"}

    # 敏感字段，日志中需要脱敏
    SENSITIVE_FIELDS = {
        "password", "token", "secret", "access_token", "refresh_token", "authorization",
        "signature_key", "server_key", "internal_secret",
    }

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.enable_body_log_default: bool = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT
        self.max_body_log_bytes: int = settings.LOG_REQUEST_BODY_MAX_BYTES

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        request_info = await self._get_request_info(request)
        logger.info("request_started", **request_info)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=time.perf_counter() - start_time,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
                **request_info,
            )
            # 交给全局异常处理器
            raise

        duration = time.perf_counter() - start_time
        self._log_response(response, duration, request_info)
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    async def _get_request_info(self, request: Request) -> dict:
        info = {
            "method": request.method,
            "path": request.url.path,
        }
        if request.query_params:
            info["query_params"] = dict(request.query_params)

        if request.method in ("POST", "PUT", "PATCH"):
            if WEBHOOK_PATH_MARKER in request.url.path:
                summary = await self._webhook_summary(request)
                if summary:
                    info["notification"] = summary
            elif self._should_log_body(request):
                body = await self._read_json_body(request)
                if body is not None:
                    info["body"] = self._sanitize_data(body)

        user_agent = request.headers.get("User-Agent")
        if user_agent:
            info["user_agent"] = user_agent
        return info

    def _should_log_body(self, request: Request) -> bool:
        # 请求头 X-Log-Body: true/false 可覆盖默认值
        header = (request.headers.get("X-Log-Body") or "").lower()
        if header in {"true", "1", "yes"}:
            return True
        if header in {"false", "0", "no"}:
            return False
        return bool(self.enable_body_log_default and settings.DEBUG)

    async def _read_json_body(self, request: Request) -> Optional[Any]:
        """读取并截断 JSON 请求体；非 JSON 时返回截断文本"""
        body = await request.body()
        if not body:
            return None
        text = body[: self.max_body_log_bytes].decode("utf-8", errors="ignore")
        if "application/json" not in request.headers.get("content-type", "").lower():
            return text
        try:
            return json.loads(text)
        except ValueError:
            return text

    async def _webhook_summary(self, request: Request) -> Optional[dict]:
        body = await request.body()
        try:
            payload = json.loads(body or b"{}")
        except ValueError:
            return {"malformed": True}
        if not isinstance(payload, dict):
            return {"malformed": True}
        return {k: payload[k] for k in WEBHOOK_SUMMARY_FIELDS if k in payload}

    def _sanitize_data(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {
                k: ("***" if str(k).lower() in self.SENSITIVE_FIELDS else self._sanitize_data(v))
                for k, v in data.items()
            }
        if isinstance(data, list):
            return [self._sanitize_data(v) for v in data]
        return data

    def _log_response(self, response: Response, duration: float, request_info: dict):
        """根据状态码选择日志级别"""
        log_data = {"status_code": response.status_code, "duration": duration, **request_info}
        if response.status_code < 400:
            logger.info("request_completed", **log_data)
        elif response.status_code < 500:
            logger.warning("request_client_error", **log_data)
        else:
            logger.error("request_server_error", **log_data)
