# src/core/location/publisher.py
"""
Публикация событий геолокации.

publish() только ставит событие в ограниченную очередь; доставку во все
транспорты выполняет фоновая задача с повторами. Коммит состояния никогда
не ждёт доставки.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Protocol

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info
from src.common.retry import retry_async
from src.core.location.exceptions import PublishFailure
from src.shared.events.base import DomainEvent


class EventTransport(Protocol):
    """Внешний канал доставки событий (RabbitMQ, Redis Pub/Sub)."""

    name: str

    async def publish(self, event: DomainEvent) -> None: ...


# Тип внутрипроцессного подписчика
EventHandler = Callable[[DomainEvent], Awaitable[None]]


class EventPublisher:
    """
    Асинхронный издатель событий.

    Гарантии:
    - at-least-once для каждого транспорта (в пределах RETRY_ATTEMPTS)
    - события одного процесса доставляются в порядке публикации
    - при переполнении очереди событие отбрасывается с записью в лог
    """

    def __init__(
        self,
        transports: list[EventTransport] | None = None,
        queue_size: int | None = None,
        retry_attempts: int | None = None,
        retry_delay: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if queue_size is None or retry_attempts is None or retry_delay is None:
            from src.config import settings
            if queue_size is None:
                queue_size = settings.publisher.QUEUE_SIZE
            if retry_attempts is None:
                retry_attempts = settings.publisher.RETRY_ATTEMPTS
            if retry_delay is None:
                retry_delay = settings.publisher.RETRY_DELAY_SECONDS

        self._transports: list[EventTransport] = list(transports or [])
        self._handlers: list[EventHandler] = []
        self._queue: asyncio.Queue[DomainEvent] = asyncio.Queue(maxsize=queue_size)
        self._retry_attempts = retry_attempts
        self._retry_delay = retry_delay
        self._sleep = sleep
        self._task: asyncio.Task | None = None

        # Статистика
        self._published = 0
        self._delivered = 0
        self._failed = 0
        self._dropped = 0

    @property
    def pending(self) -> int:
        """Событий в очереди на доставку."""
        return self._queue.qsize()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_transport(self, transport: EventTransport) -> None:
        self._transports.append(transport)

    def subscribe(self, handler: EventHandler) -> None:
        """Регистрирует внутрипроцессного подписчика."""
        self._handlers.append(handler)

    async def publish(self, event: DomainEvent) -> bool:
        """
        Ставит событие в очередь без ожидания доставки.

        Returns:
            False, если очередь переполнена и событие отброшено
        """
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._dropped += 1
            failure = PublishFailure(f"Очередь событий переполнена, {event.event_type} отброшено")
            await log_error(str(failure), extra={"event_id": event.event_id})
            return False

        self._published += 1
        return True

    # =========================================================================
    # ЖИЗНЕННЫЙ ЦИКЛ
    # =========================================================================

    async def start(self) -> None:
        """Запускает фоновую доставку."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="event-publisher")
        await log_info("Издатель событий запущен", type_msg=TypeMsg.DEBUG)

    async def stop(self, drain: bool = True) -> None:
        """
        Останавливает доставку.

        Args:
            drain: Дождаться доставки уже поставленных событий
        """
        if self._task is None:
            return

        if drain and self.is_running:
            await self._queue.join()

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        await log_info(
            f"Издатель событий остановлен (в очереди: {self.pending})",
            type_msg=TypeMsg.DEBUG,
        )

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.deliver(event)
            finally:
                self._queue.task_done()

    # =========================================================================
    # ДОСТАВКА
    # =========================================================================

    async def deliver(self, event: DomainEvent) -> bool:
        """
        Доставляет событие во все транспорты и подписчикам.

        Returns:
            True, если все транспорты приняли событие
        """
        ok = True
        for transport in self._transports:
            try:
                await retry_async(
                    lambda t=transport: t.publish(event),
                    attempts=self._retry_attempts,
                    delay=self._retry_delay,
                    description=f"Доставка {event.event_type} через {transport.name}",
                    sleep=self._sleep,
                )
            except Exception as e:
                ok = False
                self._failed += 1
                failure = PublishFailure(f"{event.event_type} не доставлено через {transport.name}: {e}")
                await log_error(str(failure), extra={"event_id": event.event_id})

        for handler in self._handlers:
            try:
                await handler(event)
            except Exception as e:
                await log_error(
                    f"Ошибка в обработчике {getattr(handler, '__name__', handler)!s}: {e}",
                    exc_info=True,
                )

        if ok:
            self._delivered += 1
        return ok

    def stats(self) -> dict[str, Any]:
        """Статистика издателя."""
        return {
            "published": self._published,
            "delivered": self._delivered,
            "failed": self._failed,
            "dropped": self._dropped,
            "pending": self.pending,
            "transports": [t.name for t in self._transports],
            "running": self.is_running,
        }
