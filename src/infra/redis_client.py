# src/infra/redis_client.py
"""
Клиент Redis для Pub/Sub рассылки обновлений геолокации.
Realtime-потребители (WebSocket-шлюзы, карты) подписываются на канал
location:driver:{driver_id}.
"""

from __future__ import annotations

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError

from src.common.constants import TypeMsg
from src.common.logger import get_logger, log_error, log_info
from src.common.retry import retry_on_error
from src.shared.events.base import DomainEvent

logger = get_logger("redis")


class RedisClient:
    """
    Асинхронный клиент Redis.
    Реализует паттерн Singleton для пула соединений.
    """

    _instance: RedisClient | None = None
    _client: redis.Redis | None = None

    def __new__(cls) -> RedisClient:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        """Инициализация (вызывается только один раз благодаря Singleton)."""
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._client = None

    @property
    def client(self) -> redis.Redis:
        """Возвращает клиент Redis."""
        if self._client is None:
            raise RuntimeError("Redis клиент не инициализирован. Вызовите connect() сначала.")
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    @retry_on_error(attempts=3, delay=1.0, retry_on=(RedisConnectionError, OSError))
    async def connect(self, url: str | None = None) -> None:
        """
        Подключается к Redis.

        Args:
            url: URL Redis (если None, берётся из конфига)
        """
        if self._client is not None:
            return

        if url is None:
            from src.config import settings
            url = settings.redis.url

        await log_info("Подключение к Redis...", type_msg=TypeMsg.INFO)

        client = redis.from_url(url, decode_responses=True)
        try:
            await client.ping()
        except Exception:
            await client.aclose()
            raise
        self._client = client

        await log_info("Подключение к Redis установлено", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Закрывает соединение с Redis."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            await log_info("Соединение с Redis закрыто", type_msg=TypeMsg.INFO)

    async def publish(self, channel: str, message: str) -> int:
        """
        Публикует сообщение в канал Pub/Sub.

        Returns:
            Количество подписчиков, получивших сообщение
        """
        return await self.client.publish(channel, message)

    async def health_check(self) -> bool:
        """
        Проверяет здоровье подключения к Redis.

        Returns:
            True если подключение работает
        """
        try:
            return await self.client.ping()
        except Exception as e:
            await log_error(f"Health check Redis failed: {e}")
            return False


class RedisChannelTransport:
    """Транспорт событий: канал Redis Pub/Sub на каждого водителя."""

    name = "redis"

    def __init__(self, client: RedisClient | None = None, channel_prefix: str | None = None) -> None:
        if channel_prefix is None:
            from src.config import settings
            channel_prefix = settings.redis.REDIS_CHANNEL_PREFIX

        self._client = client or get_redis()
        self._prefix = channel_prefix

    def channel_for(self, driver_id: str) -> str:
        return f"{self._prefix}{driver_id}"

    async def publish(self, event: DomainEvent) -> None:
        driver_id = getattr(event, "driver_id", None)
        if driver_id is None:
            return
        receivers = await self._client.publish(self.channel_for(driver_id), event.to_json())
        logger.debug(f"{event.event_type} -> {self.channel_for(driver_id)}: подписчиков {receivers}")


def get_redis() -> RedisClient:
    """
    Возвращает глобальный экземпляр RedisClient.

    Returns:
        RedisClient
    """
    return RedisClient()


async def init_redis() -> None:
    """
    Инициализирует подключение к Redis.
    Использует настройки из конфигурации.
    """
    from src.config import settings

    redis_client = get_redis()
    await redis_client.connect(url=settings.redis.url)
    await log_info(
        f"Redis подключён: {settings.redis.REDIS_HOST}:{settings.redis.REDIS_PORT}/{settings.redis.REDIS_DB}",
        type_msg=TypeMsg.INFO,
    )


async def close_redis() -> None:
    """
    Закрывает подключение к Redis.
    """
    redis_client = get_redis()
    await redis_client.disconnect()
    await log_info("Redis отключён", type_msg=TypeMsg.INFO)
