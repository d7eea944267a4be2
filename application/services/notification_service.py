"""
发票通知编排 - 支付成功后触发发票发送（fire-and-forget）
"""
from __future__ import annotations

import asyncio
from typing import Optional, Set

from application.ports.notifications import InvoiceDispatcherPort, InvoiceRequest
from application.ports.rate_limiter import IdempotencyStorePort
from core.logging_config import get_logger
from domain.common.exceptions import NotificationDispatchException


logger = get_logger(__name__)


class InvoiceNotifier:
    """
    发票通知

    1. 以 order_id + paid_at 去重，同一笔支付最多发送一次
    2. 发送有超时上限，失败只记录为依赖错误，不影响已提交的订单状态
    3. 失败时释放去重标记，后续的状态查询仍可再次触发
    """

    def __init__(
        self,
        dispatcher: InvoiceDispatcherPort,
        idempotency: IdempotencyStorePort,
        *,
        timeout_seconds: float = 10.0,
        dedupe_ttl_seconds: int = 7 * 24 * 3600,
    ) -> None:
        self._dispatcher = dispatcher
        self._idempotency = idempotency
        self._timeout = timeout_seconds
        self._ttl = dedupe_ttl_seconds
        self._pending: Set[asyncio.Task] = set()

    def schedule(self, request: InvoiceRequest) -> asyncio.Task:
        """在后台发送，不阻塞调用方"""
        task = asyncio.create_task(self.send(request))
        # 保持强引用，防止任务被 GC
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def send(self, request: InvoiceRequest) -> bool:
        key = f"invoice:{request.dedupe_key}"
        if not await self._idempotency.claim(key, self._ttl):
            logger.info("invoice_dispatch_duplicate", order_id=request.order_id)
            return False
        try:
            await asyncio.wait_for(self._dispatcher.dispatch_invoice(request), timeout=self._timeout)
        except Exception as exc:
            await self._release_quietly(key)
            error = "timeout" if isinstance(exc, asyncio.TimeoutError) else str(exc)
            failure = NotificationDispatchException(request.order_id, error)
            logger.error(
                "invoice_dispatch_failed",
                order_id=request.order_id,
                code=int(failure.code),
                error=error,
            )
            return False
        logger.info("invoice_dispatched", order_id=request.order_id, order_number=request.order_number)
        return True

    async def drain(self, timeout: Optional[float] = None) -> None:
        """等待所有后台发送结束（关闭应用或测试时使用）"""
        if not self._pending:
            return
        await asyncio.wait(set(self._pending), timeout=timeout)

    async def _release_quietly(self, key: str) -> None:
        try:
            await self._idempotency.release(key)
        except Exception as exc:
            logger.warning("invoice_dedupe_release_failed", key=key, error=str(exc))
