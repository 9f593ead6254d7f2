# src/infra/__init__.py
"""
Инфраструктурный слой.
Работа с внешними сервисами: Redis (Pub/Sub), RabbitMQ.
"""

from src.infra.redis_client import RedisChannelTransport, RedisClient, get_redis
from src.infra.event_bus import EventBus, get_event_bus

__all__ = [
    "RedisClient",
    "RedisChannelTransport",
    "get_redis",
    "EventBus",
    "get_event_bus",
]
