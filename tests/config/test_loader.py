# tests/config/test_loader.py
"""
Тесты для модуля загрузки конфигурации.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from src.config.loader import (
    DeploymentSettings,
    GeoSettings,
    IndexSettings,
    IngestSettings,
    LoggingSettings,
    PublisherSettings,
    RabbitMQSettings,
    RedisSettings,
    Settings,
    SystemSettings,
    get_config_path,
    get_project_root,
    load_config_json,
)


class TestGetProjectRoot:
    """Тесты для функции get_project_root."""

    def test_returns_path_object(self) -> None:
        """Проверяет, что возвращается объект Path."""
        assert isinstance(get_project_root(), Path)

    def test_root_contains_src_and_config(self) -> None:
        """Проверяет наличие директорий src и config в корне."""
        root = get_project_root()
        assert (root / "src").exists()
        assert (root / "config").exists()


class TestGetConfigPath:
    """Тесты для функции get_config_path."""

    def test_path_ends_with_config_json(self) -> None:
        """Проверяет правильность имени файла."""
        path = get_config_path()
        assert path.name == "config.json"
        assert path.parent.name == "config"


class TestLoadConfigJson:
    """Тесты для функции load_config_json."""

    def test_loads_dict(self) -> None:
        """Проверяет загрузку словаря конфигурации."""
        config = load_config_json()
        assert isinstance(config, dict)

    def test_contains_required_keys(self) -> None:
        """Проверяет наличие ключевых параметров."""
        config = load_config_json()
        for key in (
            "PROJECT_NAME",
            "DRIVER_LOCATION_SERVICE_PORT",
            "GEOIP_URL",
            "H3_RESOLUTION",
            "AVAILABILITY_TTL_SECONDS",
            "QUEUE_SIZE",
        ):
            assert key in config

    def test_raises_file_not_found(self, tmp_path: Path) -> None:
        """Проверяет ошибку при отсутствии файла."""
        with patch("src.config.loader.get_config_path", return_value=tmp_path / "missing.json"):
            with pytest.raises(FileNotFoundError):
                load_config_json()


class TestSectionDefaults:
    """Тесты значений по умолчанию секций."""

    def test_system_defaults(self) -> None:
        """Системные настройки."""
        system = SystemSettings()
        assert system.PROJECT_NAME == "driver_location"
        assert system.DEBUG is False

    def test_deployment_defaults(self) -> None:
        """Адрес сервиса."""
        deployment = DeploymentSettings()
        assert deployment.DRIVER_LOCATION_SERVICE_PORT == 8083

    def test_geo_defaults(self) -> None:
        """Сервис GeoIP по умолчанию — ip-api.com."""
        geo = GeoSettings()
        assert "{ip}" in geo.GEOIP_URL
        assert geo.GEOIP_TIMEOUT_SECONDS == 2.0
        assert geo.REVERSE_GEOCODE_ENABLED is False

    def test_ingest_and_publisher_defaults(self) -> None:
        """Приём отчётов и публикация событий."""
        assert IngestSettings().CLOCK_SKEW_TOLERANCE_SECONDS == 5.0
        assert PublisherSettings().RETRY_ATTEMPTS == 5


class TestLoggingSettings:
    """Тесты для LoggingSettings."""

    def test_default_values(self) -> None:
        """Проверяет значения по умолчанию."""
        logging_settings = LoggingSettings()
        assert logging_settings.LOG_FORMAT == "colored"
        assert logging_settings.LOG_TO_FILE is False

    def test_unknown_format_rejected(self) -> None:
        """Неизвестный формат логов — ошибка."""
        with pytest.raises(ValidationError):
            LoggingSettings(LOG_FORMAT="xml")


class TestIndexSettings:
    """Тесты для IndexSettings."""

    def test_resolution_bounds(self) -> None:
        """Разрешение H3 ограничено 0..15."""
        with pytest.raises(ValidationError):
            IndexSettings(H3_RESOLUTION=16)

    def test_default_radius_not_above_max(self) -> None:
        """Радиус по умолчанию не больше максимального."""
        with pytest.raises(ValidationError):
            IndexSettings(DEFAULT_SEARCH_RADIUS_KM=200, MAX_SEARCH_RADIUS_KM=100)


class TestRedisSettings:
    """Тесты для RedisSettings."""

    def test_url_property_without_password(self) -> None:
        """Проверяет URL без пароля."""
        with patch.dict(os.environ, {"REDIS_PASSWORD": ""}):
            redis = RedisSettings(REDIS_HOST="redis", REDIS_PORT=6380, REDIS_DB=2)
        assert redis.url == "redis://redis:6380/2"

    def test_url_property_with_password(self) -> None:
        """Проверяет URL с паролем."""
        redis = RedisSettings(REDIS_PASSWORD="secret")
        assert redis.url == "redis://:secret@localhost:6379/0"


class TestRabbitMQSettings:
    """Тесты для RabbitMQSettings."""

    def test_url_property(self) -> None:
        """Проверяет формирование AMQP URL."""
        with patch.dict(os.environ, {"RABBITMQ_PASSWORD": ""}):
            rabbit = RabbitMQSettings(RABBITMQ_USER="user", RABBITMQ_PASSWORD="pass", RABBITMQ_HOST="mq")
        assert rabbit.url == "amqp://user:pass@mq:5672/"

    def test_password_from_env(self) -> None:
        """Пароль из окружения имеет приоритет."""
        with patch.dict(os.environ, {"RABBITMQ_PASSWORD": "from_env"}):
            rabbit = RabbitMQSettings(RABBITMQ_PASSWORD="from_config")
        assert rabbit.RABBITMQ_PASSWORD == "from_env"


class TestSettingsFromDict:
    """Тесты раскладки плоского конфига по секциям."""

    def test_keys_distributed_by_section(self, mock_config: dict[str, Any]) -> None:
        """Каждый ключ попадает в свою секцию."""
        settings = Settings.from_dict(mock_config)

        assert settings.system.PROJECT_NAME == "driver_location_test"
        assert settings.deployment.DRIVER_LOCATION_SERVICE_PORT == 9083
        assert settings.geo.GEOIP_TIMEOUT_SECONDS == 1.5
        assert settings.google_maps.GEOCODING_LANGUAGE == "de"
        assert settings.redis.REDIS_DB == 1
        assert settings.rabbitmq.RABBITMQ_EXCHANGE == "driver_location.test"
        assert settings.ingest.MAX_BATCH_SIZE == 50
        assert settings.index.H3_RESOLUTION == 8
        assert settings.publisher.QUEUE_SIZE == 100

    def test_shared_key_in_several_sections(self, mock_config: dict[str, Any]) -> None:
        """LOG_LEVEL объявлен и в system, и в logging."""
        settings = Settings.from_dict(mock_config)
        assert settings.system.LOG_LEVEL == "DEBUG"
        assert settings.logging.LOG_LEVEL == "DEBUG"

    def test_comment_keys_ignored(self, mock_config: dict[str, Any]) -> None:
        """Ключи _comment_ не ломают загрузку."""
        mock_config["_comment_extra"] = {"nested": "ignored"}
        settings = Settings.from_dict(mock_config)
        assert settings.system.ENVIRONMENT == "test"

    def test_missing_keys_use_defaults(self) -> None:
        """Пустой конфиг даёт значения по умолчанию."""
        settings = Settings.from_dict({})
        assert settings.index.H3_RESOLUTION == 7
        assert settings.publisher.QUEUE_SIZE == 10000

    def test_env_overrides_config(self, mock_config: dict[str, Any]) -> None:
        """Переменные окружения важнее config.json."""
        env = {"REDIS_HOST": "redis.internal", "DRIVER_LOCATION_SERVICE_PORT": "9999", "RABBITMQ_ENABLED": "true"}
        with patch.dict(os.environ, env):
            settings = Settings.from_dict(mock_config)

        assert settings.redis.REDIS_HOST == "redis.internal"
        assert settings.deployment.DRIVER_LOCATION_SERVICE_PORT == 9999
        assert settings.rabbitmq.RABBITMQ_ENABLED is True

    def test_invalid_section_value_raises(self, mock_config: dict[str, Any]) -> None:
        """Некорректное значение секции — ValidationError."""
        mock_config["H3_RESOLUTION"] = 99
        with pytest.raises(ValidationError):
            Settings.from_dict(mock_config)


class TestRealConfig:
    """Тесты загрузки реального config/config.json."""

    def test_from_config_json(self) -> None:
        """Конфиг проекта валиден."""
        settings = Settings.from_config_json()
        assert settings.index.DEFAULT_SEARCH_RADIUS_KM <= settings.index.MAX_SEARCH_RADIUS_KM
        assert settings.deployment.DRIVER_LOCATION_SERVICE_PORT > 0
