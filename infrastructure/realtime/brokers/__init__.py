"""Order event brokers (in-memory, Redis pub/sub)."""

from application.ports.realtime import RealtimeBrokerPort
from core.config import settings
from core.logging_config import get_logger

from .inmemory import InMemoryRealtimeBroker
from .redis import RedisRealtimeBroker


logger = get_logger(__name__)


def select_broker() -> RealtimeBrokerPort:
    """Redis pub/sub when REDIS__URL is configured, otherwise in-process."""
    if settings.redis.url:
        logger.info("order_event_broker_selected", provider="redis")
        return RedisRealtimeBroker()
    logger.info("order_event_broker_selected", provider="inmemory")
    return InMemoryRealtimeBroker()


__all__ = [
    "InMemoryRealtimeBroker",
    "RedisRealtimeBroker",
    "select_broker",
]
