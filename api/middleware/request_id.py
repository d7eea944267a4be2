"""
Request ID 中间件
生成或透传追踪ID，解析调用方真实IP（支付回调限流与白名单按此判断），并绑定到 structlog 上下文
"""
import ipaddress
import uuid
from functools import lru_cache
from typing import Iterable, Optional, Sequence, Tuple, Union

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

import structlog

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


@lru_cache(maxsize=32)
def parse_networks(entries: Tuple[str, ...]) -> Tuple[Network, ...]:
    """把 IP / CIDR 列表解析为网段；无效条目记录日志后跳过"""
    networks = []
    for entry in entries:
        try:
            networks.append(ipaddress.ip_network(entry.strip(), strict=False))
        except ValueError:
            logger.warning("ip_network_entry_invalid", entry=entry)
    return tuple(networks)


def ip_in_networks(address: Optional[str], networks: Iterable[Network]) -> bool:
    try:
        ip = ipaddress.ip_address((address or "").strip())
    except ValueError:
        return False
    return any(ip in net for net in networks)


def resolve_client_ip(
    peer: Optional[str],
    forwarded_for: Optional[str],
    real_ip: Optional[str],
    trusted_proxies: Sequence[str],
) -> str:
    """
    解析调用方地址

    连接对端不是受信代理时直接使用对端地址，请求头一律忽略；
    对端受信时从 X-Forwarded-For 右侧往左跳过受信代理，取第一个非受信地址。
    非 IP 的对端（如 unix socket）按字面值与受信列表比较。
    """
    peer = peer or "unknown"
    trusted = parse_networks(tuple(trusted_proxies))

    def is_trusted(address: str) -> bool:
        return ip_in_networks(address, trusted) or address in trusted_proxies

    if not is_trusted(peer):
        return peer

    hops = [h.strip() for h in (forwarded_for or "").split(",") if h.strip()]
    for hop in reversed(hops):
        if not is_trusted(hop):
            return hop
    if hops:
        # 整条链都是受信代理：取最左侧
        return hops[0]
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return peer


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Request ID 追踪中间件

    request.state 上提供 request_id 与 client_ip，响应头回写 X-Request-ID。
    """

    HEADER_NAME = "X-Request-ID"

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        client_ip = resolve_client_ip(
            request.client.host if request.client else None,
            request.headers.get("X-Forwarded-For"),
            request.headers.get("X-Real-IP"),
            settings.TRUSTED_PROXIES,
        )

        request.state.request_id = request_id
        request.state.client_ip = client_ip

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=client_ip,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[self.HEADER_NAME] = request_id
        return response
