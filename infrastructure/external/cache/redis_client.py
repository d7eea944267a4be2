"""
统一的Redis客户端 - 命名空间隔离、JSON序列化、计数器与发布

订单服务用到的能力：
- 幂等标记（SET NX EX）
- 限流计数器（INCR + EXPIRE）
- 订单事件广播（PUBLISH）
"""
from __future__ import annotations

import asyncio
import json
import socket
from typing import Any, Callable, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)


class RedisClient:
    """
    Redis客户端封装

    写操作失败时记录日志并向上抛出，由调用方决定是否降级；
    健康检查失败时返回 False。
    """

    def __init__(
        self,
        client: aioredis.Redis,
        namespace: str = "",
        serializer: Optional[Callable] = None,
    ):
        self._client = client
        self._namespace = namespace.strip(":")
        self._serializer = serializer or self._default_serializer

    # ============= 工具方法 =============

    def _format_key(self, key: str) -> str:
        """格式化键名，添加命名空间前缀"""
        if not self._namespace:
            return key
        return f"{self._namespace}:{key}"

    def _default_serializer(self, value: Any) -> str:
        if isinstance(value, (str, int, float)):
            return str(value)
        return json.dumps(value, default=str, ensure_ascii=False)

    # ============= String 操作 =============

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        nx: bool = False,  # 仅当key不存在时设置
    ) -> bool:
        """设置值；nx=True 且键已存在时返回 False"""
        formatted_key = self._format_key(key)
        expire = ttl if ttl is not None else settings.redis.default_ttl
        try:
            result = await self._client.set(
                formatted_key,
                self._serializer(value),
                ex=expire if expire and expire > 0 else None,
                nx=nx,
            )
        except RedisError as e:
            logger.error("redis_set_failed", key=formatted_key, error=str(e))
            raise
        return bool(result)

    async def incr(self, key: str, amount: int = 1, ttl: Optional[int] = None) -> int:
        """自增计数；首次创建时设置过期时间（固定窗口）"""
        formatted_key = self._format_key(key)
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.incrby(formatted_key, amount)
                if ttl and ttl > 0:
                    pipe.expire(formatted_key, ttl, nx=True)
                results = await pipe.execute()
        except RedisError as e:
            logger.error("redis_incr_failed", key=formatted_key, error=str(e))
            raise
        return int(results[0])

    async def ttl(self, key: str) -> int:
        """剩余过期秒数；-2 表示键不存在，-1 表示永不过期"""
        return int(await self._client.ttl(self._format_key(key)))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._client.delete(*[self._format_key(k) for k in keys]))

    # ============= 发布 =============

    async def publish(self, channel: str, message: Any) -> int:
        """发布消息到频道，返回接收消息的订阅者数量"""
        formatted_channel = self._format_key(channel)
        try:
            return await self._client.publish(formatted_channel, self._serializer(message))
        except RedisError as e:
            logger.error("redis_publish_failed", channel=formatted_channel, error=str(e))
            raise

    async def health_check(self) -> bool:
        """健康检查"""
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.error("redis_health_check_failed", error=str(e))
            return False


# ============= 单例模式管理 =============

_redis_client: Optional[aioredis.Redis] = None
_cache_instance: Optional[RedisClient] = None
_lock = asyncio.Lock()


def _keepalive_options() -> dict:
    if hasattr(socket, "TCP_KEEPIDLE") and hasattr(socket, "TCP_KEEPINTVL") and hasattr(socket, "TCP_KEEPCNT"):
        return {
            socket.TCP_KEEPIDLE: 1,
            socket.TCP_KEEPINTVL: 1,
            socket.TCP_KEEPCNT: 3,
        }
    return {}


async def init_redis_client(namespace: Optional[str] = None, **kwargs) -> RedisClient:
    """
    初始化Redis客户端

    Args:
        namespace: 命名空间，默认取 settings.redis.namespace
        **kwargs: 其他Redis连接参数

    Returns:
        RedisClient实例
    """
    global _redis_client, _cache_instance

    if _cache_instance is not None:
        return _cache_instance

    async with _lock:
        if _cache_instance is not None:
            return _cache_instance

        if not settings.redis.url:
            raise RuntimeError("REDIS__URL 未配置，无法初始化Redis客户端")

        client = aioredis.from_url(
            settings.redis.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.redis.max_connections,
            socket_keepalive=True,
            socket_keepalive_options=_keepalive_options(),
            **kwargs,
        )
        try:
            await client.ping()
        except RedisError as e:
            logger.error("redis_init_failed", error=str(e))
            await client.aclose()
            raise

        _redis_client = client
        _cache_instance = RedisClient(client=client, namespace=namespace or settings.redis.namespace)
        logger.info("redis_client_initialized", namespace=namespace or settings.redis.namespace)
        return _cache_instance


async def get_redis_client() -> RedisClient:
    """获取全局Redis客户端实例"""
    if _cache_instance is None:
        return await init_redis_client()
    return _cache_instance


async def shutdown_redis_client() -> None:
    """关闭Redis连接"""
    global _redis_client, _cache_instance

    if _redis_client is not None:
        try:
            await _redis_client.aclose()
            logger.info("redis_client_closed")
        except RedisError as e:
            logger.error("redis_close_failed", error=str(e))
        finally:
            _redis_client = None
            _cache_instance = None


__all__ = [
    "RedisClient",
    "init_redis_client",
    "get_redis_client",
    "shutdown_redis_client",
]
