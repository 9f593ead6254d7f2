# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("RABBITMQ_PASSWORD", "guest")
os.environ.setdefault("GOOGLE_MAPS_API_KEY", "test_api_key")

from src.core.location.availability_index import AvailabilityIndex
from src.core.location.ingestor import LocationIngestor
from src.core.location.publisher import EventPublisher
from src.core.location.state_store import DriverStateStore
from src.shared.models.driver_location import GeoRecord, LocationReport


# Базовый момент времени для детерминированных тестов
BASE_TIME = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Управляемые часы для тестов."""

    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def advance(self, seconds: float) -> datetime:
        self.moment = self.moment + timedelta(seconds=seconds)
        return self.moment


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "=== SYSTEM ===",
        "PROJECT_NAME": "driver_location_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "LOG_LEVEL": "DEBUG",
        "ENVIRONMENT": "test",
        "DRIVER_LOCATION_SERVICE_HOST": "127.0.0.1",
        "DRIVER_LOCATION_SERVICE_PORT": 9083,
        "LOG_TO_FILE": False,
        "LOG_FILE_PATH": "logs/test.log",
        "LOG_FORMAT": "colored",
        "LOG_MAX_BYTES": 1048576,
        "GOOGLE_MAPS_API_KEY": "test_api_key",
        "GEOCODING_LANGUAGE": "de",
        "GEOIP_URL": "http://geoip.test/json/{ip}",
        "GEOIP_FIELDS": "status,message,country,city,lat,lon",
        "GEOIP_TIMEOUT_SECONDS": 1.5,
        "REVERSE_GEOCODE_ENABLED": False,
        "REDIS_ENABLED": False,
        "REDIS_HOST": "localhost",
        "REDIS_PORT": 6379,
        "REDIS_DB": 1,
        "REDIS_PASSWORD": "",
        "REDIS_CHANNEL_PREFIX": "location:driver:",
        "RABBITMQ_ENABLED": False,
        "RABBITMQ_HOST": "localhost",
        "RABBITMQ_PORT": 5672,
        "RABBITMQ_USER": "guest",
        "RABBITMQ_PASSWORD": "guest",
        "RABBITMQ_VHOST": "/",
        "RABBITMQ_EXCHANGE": "driver_location.test",
        "CLOCK_SKEW_TOLERANCE_SECONDS": 5,
        "LOW_CONFIDENCE_ACCURACY_M": 1000,
        "HISTORY_SIZE": 10,
        "MAX_BATCH_SIZE": 50,
        "H3_RESOLUTION": 8,
        "DEFAULT_SEARCH_RADIUS_KM": 3,
        "MAX_SEARCH_RADIUS_KM": 50,
        "MAX_RESULTS": 20,
        "AVAILABILITY_TTL_SECONDS": 120,
        "SWEEP_INTERVAL_SECONDS": 15,
        "RECONCILE_INTERVAL_SECONDS": 5,
        "QUEUE_SIZE": 100,
        "RETRY_ATTEMPTS": 3,
        "RETRY_DELAY_SECONDS": 0.1,
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий."""
    event_bus = AsyncMock()
    event_bus.name = "rabbitmq"
    event_bus.publish = AsyncMock(return_value=None)
    event_bus.is_connected = True
    return event_bus


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Мок клиента Redis."""
    redis = AsyncMock()
    redis.publish = AsyncMock(return_value=1)
    redis.ping = AsyncMock(return_value=True)
    return redis


@pytest.fixture
def mock_resolver() -> MagicMock:
    """Мок резолвера: координаты возвращаются как есть, IP — Mountain View."""

    async def by_coordinates(latitude: float, longitude: float, ip_address: str | None = None) -> GeoRecord:
        return GeoRecord(source_ip_address=ip_address, latitude=latitude, longitude=longitude)

    resolver = MagicMock()
    resolver.resolve_coordinates = AsyncMock(side_effect=by_coordinates)
    resolver.resolve_ip = AsyncMock(
        return_value=GeoRecord(
            source_ip_address="8.8.8.8",
            country="United States",
            city="Mountain View",
            latitude=37.386,
            longitude=-122.0838,
        )
    )
    resolver.close = AsyncMock()
    return resolver


# =============================================================================
# ФИКСТУРЫ ДОМЕНА
# =============================================================================

@pytest.fixture
def clock() -> FrozenClock:
    """Часы, остановленные на BASE_TIME."""
    return FrozenClock(BASE_TIME)


@pytest.fixture
def store() -> DriverStateStore:
    return DriverStateStore(history_size=5)


@pytest.fixture
def index() -> AvailabilityIndex:
    return AvailabilityIndex(resolution=7)


@pytest.fixture
def publisher() -> EventPublisher:
    """Издатель без транспортов и без реальных пауз между повторами."""
    return EventPublisher(
        transports=[],
        queue_size=100,
        retry_attempts=3,
        retry_delay=0.0,
        sleep=AsyncMock(),
    )


@pytest.fixture
def ingestor(
    store: DriverStateStore,
    index: AvailabilityIndex,
    mock_resolver: MagicMock,
    publisher: EventPublisher,
    clock: FrozenClock,
) -> LocationIngestor:
    return LocationIngestor(
        store=store,
        index=index,
        resolver=mock_resolver,
        publisher=publisher,
        clock=clock,
        skew_tolerance_seconds=5,
        low_confidence_accuracy_m=1000,
    )


@pytest.fixture
def make_report() -> Callable[..., LocationReport]:
    """Фабрика отчётов: по умолчанию доступный водитель в центре Киева."""

    def factory(
        driver_id: str = "D1",
        offset_seconds: float = 0,
        **overrides: Any,
    ) -> LocationReport:
        data: dict[str, Any] = {
            "driver_id": driver_id,
            "available": True,
            "latitude": 50.4501,
            "longitude": 30.5234,
            "reported_at": BASE_TIME + timedelta(seconds=offset_seconds),
        }
        data.update(overrides)
        return LocationReport(**data)

    return factory


def drain_events(publisher: EventPublisher) -> list[Any]:
    """Забирает все события из очереди издателя без доставки."""
    events = []
    while not publisher._queue.empty():
        events.append(publisher._queue.get_nowait())
        publisher._queue.task_done()
    return events


@pytest.fixture
def take_events() -> Callable[[EventPublisher], list[Any]]:
    return drain_events
