# src/common/retry.py
"""
Повтор асинхронных операций с задержкой.
Используется для доставки событий и переподключений к брокеру.
"""

from __future__ import annotations

import asyncio
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info

T = TypeVar("T")


def backoff_delays(attempts: int, delay: float, factor: float = 2.0) -> list[float]:
    """
    Задержки между попытками: delay, delay*factor, delay*factor^2, ...

    Для N попыток возвращает N-1 задержек (после последней попытки не ждём).
    """
    return [delay * (factor ** i) for i in range(max(attempts - 1, 0))]


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    delay: float = 0.5,
    factor: float = 2.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    description: str = "операция",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Выполняет операцию с повторами и экспоненциальной задержкой.

    Args:
        operation: Фабрика корутины (вызывается на каждой попытке)
        attempts: Максимальное количество попыток
        delay: Начальная задержка (секунды)
        factor: Множитель задержки
        retry_on: Типы исключений, при которых повторяем
        description: Описание операции для логов
        sleep: Функция ожидания (подменяется в тестах)

    Raises:
        Последнее исключение, если все попытки исчерпаны
    """
    delays = backoff_delays(attempts, delay, factor)
    last_error: BaseException | None = None

    for attempt in range(1, max(attempts, 1) + 1):
        try:
            return await operation()
        except retry_on as e:
            last_error = e
            if attempt <= len(delays):
                await log_info(
                    f"{description}: ошибка (попытка {attempt}/{attempts}): {e}",
                    type_msg=TypeMsg.WARNING,
                )
                await sleep(delays[attempt - 1])
            else:
                await log_error(f"{description}: не удалось после {attempts} попыток: {e}")

    raise last_error  # type: ignore[misc]


def retry_on_error(
    attempts: int = 3,
    delay: float = 1.0,
    factor: float = 2.0,
    retry_on: tuple[type[BaseException], ...] = (ConnectionError, OSError),
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Декоратор для автоматического ретрая при ошибках подключения.

    Args:
        attempts: Максимальное количество попыток
        delay: Начальная задержка между попытками (секунды)
        factor: Множитель задержки
        retry_on: Типы исключений, при которых повторяем
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_async(
                lambda: func(*args, **kwargs),
                attempts=attempts,
                delay=delay,
                factor=factor,
                retry_on=retry_on,
                description=func.__qualname__,
            )
        return wrapper
    return decorator
