#!/usr/bin/env python3
"""
Entrypoint для Driver Location Service.

Запуск:
    python entrypoint_driver_location.py

Порт по умолчанию: 8083
"""

import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from src.config import settings


def main() -> None:
    """Запустить Driver Location Service."""
    uvicorn.run(
        "src.services.driver_location.app:app",
        host=settings.deployment.DRIVER_LOCATION_SERVICE_HOST,
        port=settings.deployment.DRIVER_LOCATION_SERVICE_PORT,
        reload=settings.system.DEBUG,
        log_level=settings.system.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
