# src/shared/models/driver_location.py
"""
Модели домена геолокации водителей.

GeoRecord и DriverState — иммутабельные значения: хранилище не меняет их
на месте, а заменяет запись водителя целиком под его блокировкой.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, NamedTuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.common.constants import IngestStatus, LocationSource


def utc_now() -> datetime:
    """Текущее время в UTC (tz-aware)."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Наивное время считается UTC, остальное приводится к UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def coordinates_in_range(latitude: float, longitude: float) -> bool:
    """Проверка диапазонов широты и долготы (десятичные градусы)."""
    return -90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0


# =============================================================================
# ГЕОЗАПИСЬ
# =============================================================================

class GeoRecord(BaseModel):
    """
    Нормализованная геозапись.

    Координаты хранятся как float, даже если внешний контракт
    передаёт их строками.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    source_ip_address: str | None = None
    country: str = ""
    city: str = ""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def parse_decimal(cls, v: Any) -> Any:
        """Принимает координаты строкой ("40.7128")."""
        if isinstance(v, str):
            try:
                return float(v.strip())
            except ValueError:
                raise ValueError(f"Координата не является числом: {v!r}")
        return v

    @field_validator("country", "city", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        """Страна и город — best-effort, None превращается в пустую строку."""
        return "" if v is None else v

    def to_view(self) -> dict[str, str | None]:
        """Внешнее представление: координаты сериализуются строками."""
        return {
            "id": self.id,
            "ip_address": self.source_ip_address,
            "country": self.country,
            "city": self.city,
            "latitude": str(self.latitude),
            "longitude": str(self.longitude),
        }

    def same_position(self, other: GeoRecord | None) -> bool:
        """Совпадают ли координаты (id и страна/город не учитываются)."""
        return (
            other is not None
            and other.latitude == self.latitude
            and other.longitude == self.longitude
        )


# =============================================================================
# СОСТОЯНИЕ ВОДИТЕЛЯ
# =============================================================================

class DriverState(BaseModel):
    """Текущее авторитетное состояние водителя."""

    model_config = ConfigDict(frozen=True)

    driver_id: str
    available: bool = False
    assigned_vehicle_id: str | None = None
    last_known_location: GeoRecord | None = None
    location_source: LocationSource | None = None
    location_stale: bool = False
    # Снят с линии по TTL; время обновления при этом не сдвигается
    swept: bool = False
    last_updated_at: datetime
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("last_updated_at", "created_at")
    @classmethod
    def to_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def indexable(self) -> bool:
        """Попадает ли водитель в индекс доступных."""
        return self.available and self.last_known_location is not None

    def supersedes(self, at: datetime) -> bool:
        """
        Устарел ли отчёт с моментом at относительно этого состояния.

        Для снятого по TTL водителя устаревшим считается и отчёт с тем же
        временем: это повторная доставка последнего отчёта до снятия.
        """
        if self.swept:
            return at <= self.last_updated_at
        return at < self.last_updated_at

    @classmethod
    def default(cls, driver_id: str, at: datetime | None = None) -> DriverState:
        """Состояние нового водителя: недоступен, местоположение неизвестно."""
        moment = at or utc_now()
        return cls(driver_id=driver_id, available=False, last_updated_at=moment, created_at=moment)


class LocationUpdateRecord(BaseModel):
    """Запись журнала последних обновлений водителя."""

    model_config = ConfigDict(frozen=True)

    available: bool
    latitude: float | None = None
    longitude: float | None = None
    location_stale: bool = False
    recorded_at: datetime

    @classmethod
    def from_state(cls, state: DriverState) -> LocationUpdateRecord:
        location = state.last_known_location
        return cls(
            available=state.available,
            latitude=location.latitude if location else None,
            longitude=location.longitude if location else None,
            location_stale=state.location_stale,
            recorded_at=state.last_updated_at,
        )


# =============================================================================
# ВХОДЯЩИЙ ОТЧЁТ
# =============================================================================

class LocationReport(BaseModel):
    """Отчёт о геолокации от мобильного клиента водителя."""

    driver_id: str
    available: bool
    vehicle_id: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    accuracy_m: float | None = Field(default=None, ge=0)
    low_confidence: bool = False
    source_ip_address: str | None = None
    reported_at: datetime

    @field_validator("driver_id")
    @classmethod
    def strip_driver_id(cls, v: str) -> str:
        driver_id = v.strip()
        if not driver_id:
            raise ValueError("driverId не может быть пустым")
        return driver_id

    @field_validator("vehicle_id", "source_ip_address")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("reported_at")
    @classmethod
    def reported_at_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @model_validator(mode="after")
    def check_coordinates(self) -> LocationReport:
        """Широта и долгота передаются только парой и в допустимых границах."""
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude и longitude должны передаваться вместе")
        if self.latitude is not None and not coordinates_in_range(self.latitude, self.longitude):
            raise ValueError("Координаты вне допустимого диапазона")
        return self

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


# =============================================================================
# РЕЗУЛЬТАТЫ
# =============================================================================

class NearbyDriver(BaseModel):
    """Кандидат для диспетчера: ближайший доступный водитель."""

    driver_id: str
    vehicle_id: str | None = None
    distance_km: float
    last_updated_at: datetime


class IngestResult(BaseModel):
    """Итог обработки отчёта."""

    driver_id: str
    status: IngestStatus
    reason: str | None = None
    degraded: bool = False

    @property
    def accepted(self) -> bool:
        return self.status == IngestStatus.ACCEPTED


class IndexEntry(NamedTuple):
    """Запись индекса доступных водителей."""

    driver_id: str
    latitude: float
    longitude: float
    cell: str
