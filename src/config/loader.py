# src/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины — config/config.json.
Секретные данные и адреса переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации."""
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Загружает config.json и возвращает словарь."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "driver_location"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"


class DeploymentSettings(BaseModel):
    """Настройки развертывания сервиса."""
    DRIVER_LOCATION_SERVICE_HOST: str = "0.0.0.0"
    DRIVER_LOCATION_SERVICE_PORT: int = 8083


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760

    @field_validator("LOG_FORMAT")
    @classmethod
    def check_format(cls, v: str) -> str:
        """Допустимы только json и colored."""
        if v not in ("json", "colored"):
            raise ValueError(f"Неизвестный формат логов: {v}")
        return v


class GoogleMapsSettings(BaseModel):
    """Настройки Google Maps API (обратное геокодирование)."""
    GOOGLE_MAPS_API_KEY: str = ""
    GEOCODING_LANGUAGE: str = "en"

    @field_validator("GOOGLE_MAPS_API_KEY", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает API ключ из переменных окружения."""
        if not v:
            return os.getenv("GOOGLE_MAPS_API_KEY", "")
        return v


class GeoSettings(BaseModel):
    """Настройки определения местоположения по IP."""
    GEOIP_URL: str = "http://ip-api.com/json/{ip}"
    GEOIP_FIELDS: str = "status,message,country,city,lat,lon"
    GEOIP_TIMEOUT_SECONDS: float = 2.0
    REVERSE_GEOCODE_ENABLED: bool = False


class RedisSettings(BaseModel):
    """Настройки Redis (Pub/Sub для realtime-потребителей)."""
    REDIS_ENABLED: bool = False
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_CHANNEL_PREFIX: str = "location:driver:"

    @field_validator("REDIS_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("REDIS_PASSWORD", "")
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class RabbitMQSettings(BaseModel):
    """Настройки RabbitMQ."""
    RABBITMQ_ENABLED: bool = False
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_EXCHANGE: str = "driver_location.events"

    @field_validator("RABBITMQ_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        env_pass = os.getenv("RABBITMQ_PASSWORD", "")
        if env_pass:
            return env_pass
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к RabbitMQ."""
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}{self.RABBITMQ_VHOST}"
        )


class IngestSettings(BaseModel):
    """Настройки приёма отчётов о геолокации."""
    CLOCK_SKEW_TOLERANCE_SECONDS: float = 5.0
    LOW_CONFIDENCE_ACCURACY_M: float = 1000.0
    HISTORY_SIZE: int = Field(default=20, ge=1)
    MAX_BATCH_SIZE: int = Field(default=500, ge=1)


class IndexSettings(BaseModel):
    """Настройки индекса доступных водителей."""
    H3_RESOLUTION: int = Field(default=7, ge=0, le=15)
    DEFAULT_SEARCH_RADIUS_KM: float = 5.0
    MAX_SEARCH_RADIUS_KM: float = 100.0
    MAX_RESULTS: int = 100
    AVAILABILITY_TTL_SECONDS: int = 300
    SWEEP_INTERVAL_SECONDS: float = 30.0
    RECONCILE_INTERVAL_SECONDS: float = 10.0

    @model_validator(mode="after")
    def check_radius(self) -> "IndexSettings":
        """Радиус по умолчанию не может превышать максимальный."""
        if self.DEFAULT_SEARCH_RADIUS_KM > self.MAX_SEARCH_RADIUS_KM:
            raise ValueError("DEFAULT_SEARCH_RADIUS_KM больше MAX_SEARCH_RADIUS_KM")
        return self


class PublisherSettings(BaseModel):
    """Настройки публикации событий."""
    QUEUE_SIZE: int = Field(default=10000, ge=1)
    RETRY_ATTEMPTS: int = Field(default=5, ge=1)
    RETRY_DELAY_SECONDS: float = 0.5


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    google_maps: GoogleMapsSettings = Field(default_factory=GoogleMapsSettings)
    geo: GeoSettings = Field(default_factory=GeoSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    rabbitmq: RabbitMQSettings = Field(default_factory=RabbitMQSettings)
    ingest: IngestSettings = Field(default_factory=IngestSettings)
    index: IndexSettings = Field(default_factory=IndexSettings)
    publisher: PublisherSettings = Field(default_factory=PublisherSettings)

    @classmethod
    def from_config_json(cls) -> "Settings":
        """
        Создаёт объект Settings из config.json.
        Секреты и адреса переопределяются из переменных окружения.
        """
        config_data = load_config_json()
        return cls.from_dict(config_data)

    @classmethod
    def from_dict(cls, config_data: dict[str, Any]) -> "Settings":
        """
        Раскладывает плоский словарь конфигурации по секциям.

        Ключи, начинающиеся с _comment_, игнорируются. Каждый ключ попадает
        в ту секцию, в модели которой объявлено поле с таким именем.
        """
        data = {k: v for k, v in config_data.items() if not k.startswith("_comment_")}

        # Переменные окружения имеют приоритет над config.json
        env_overrides = (
            "LOG_LEVEL",
            "DRIVER_LOCATION_SERVICE_HOST",
            "DRIVER_LOCATION_SERVICE_PORT",
            "GOOGLE_MAPS_API_KEY",
            "GEOIP_URL",
            "REDIS_ENABLED",
            "REDIS_HOST",
            "REDIS_PORT",
            "REDIS_PASSWORD",
            "RABBITMQ_ENABLED",
            "RABBITMQ_HOST",
            "RABBITMQ_PORT",
            "RABBITMQ_USER",
            "RABBITMQ_PASSWORD",
        )
        for key in env_overrides:
            env_value = os.getenv(key)
            if env_value:
                data[key] = env_value

        sections: dict[str, type[BaseModel]] = {
            "system": SystemSettings,
            "deployment": DeploymentSettings,
            "logging": LoggingSettings,
            "google_maps": GoogleMapsSettings,
            "geo": GeoSettings,
            "redis": RedisSettings,
            "rabbitmq": RabbitMQSettings,
            "ingest": IngestSettings,
            "index": IndexSettings,
            "publisher": PublisherSettings,
        }

        kwargs: dict[str, BaseModel] = {}
        for section_name, model in sections.items():
            fields = {k: data[k] for k in model.model_fields if k in data}
            kwargs[section_name] = model(**fields)

        return cls(**kwargs)


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Использует кэширование для производительности.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
