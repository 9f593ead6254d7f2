#!/usr/bin/env python3
# main.py
"""
Главная точка входа сервиса геолокации водителей.
Запускает HTTP API сервиса в зависимости от аргументов.
"""

from __future__ import annotations

import asyncio
import signal
import sys

from src.config import settings
from src.common.logger import setup_logging, log_info, log_error
from src.common.constants import TypeMsg


VALID_MODES = ("driver_location",)

# Глобальный флаг для graceful shutdown
_shutdown_event: asyncio.Event | None = None
_running_tasks: list[asyncio.Task] = []


def setup_signal_handlers() -> None:
    """Настраивает обработчики сигналов для graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        """Обработчик сигналов SIGINT и SIGTERM."""
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()
            for task in _running_tasks:
                if not task.done():
                    task.cancel()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


async def run_driver_location() -> None:
    """Запускает HTTP API сервиса геолокации (инфраструктура подключается в lifespan)."""
    import uvicorn

    host = settings.deployment.DRIVER_LOCATION_SERVICE_HOST
    port = settings.deployment.DRIVER_LOCATION_SERVICE_PORT
    await log_info(f"Запуск Driver Location Service на {host}:{port}...", type_msg=TypeMsg.INFO)

    config = uvicorn.Config(
        "src.services.driver_location.app:app",
        host=host,
        port=port,
        log_level="debug" if settings.system.DEBUG else "info",
    )

    server = uvicorn.Server(config)
    try:
        await server.serve()
    except asyncio.CancelledError:
        await log_info("Driver Location Service: graceful shutdown", type_msg=TypeMsg.DEBUG)
        await server.shutdown()


async def main(mode: str = "driver_location") -> None:
    """
    Главная функция запуска.

    Args:
        mode: Режим запуска (сейчас только driver_location)
    """
    setup_logging()
    setup_signal_handlers()

    await log_info(
        f"{settings.system.PROJECT_NAME} v{settings.system.VERSION} — запуск в режиме '{mode}'",
        type_msg=TypeMsg.INFO,
    )

    try:
        if mode == "driver_location":
            task = asyncio.create_task(run_driver_location())
            _running_tasks.append(task)
            await task
        else:
            await log_error(f"Неизвестный режим: {mode}")
    except asyncio.CancelledError:
        await log_info("Задача отменена, выполняется graceful shutdown", type_msg=TypeMsg.INFO)
    except Exception as e:
        await log_error(f"Критическая ошибка: {e}")
        raise
    finally:
        for task in _running_tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*_running_tasks, return_exceptions=True)
        _running_tasks.clear()
        await log_info("Приложение остановлено", type_msg=TypeMsg.INFO)


def print_usage() -> None:
    """Выводит справку по использованию."""
    print("""
Driver Location Service — геолокация и доступность водителей

Использование:
    python main.py [mode]

Режимы:
    driver_location        — HTTP API сервиса (:8083), режим по умолчанию

Примеры:
    python main.py
    python main.py driver_location
    """)


if __name__ == "__main__":
    mode = "driver_location"

    if len(sys.argv) > 1:
        arg = sys.argv[1].lower()
        if arg in ("--help", "-h", "help"):
            print_usage()
            sys.exit(0)
        elif arg in VALID_MODES:
            mode = arg
        else:
            print(f"Неизвестный режим: {arg}")
            print_usage()
            sys.exit(1)

    try:
        asyncio.run(main(mode))
    except KeyboardInterrupt:
        pass
