# src/shared/events/location_events.py
"""
События домена геолокации водителей.

Публикуются после каждого принятого обновления и потребляются
внешним диспетчером и сервисами уведомлений.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import field_serializer

from src.shared.events.base import DomainEvent


class LocationChanged(DomainEvent):
    """Событие: координаты водителя изменились."""

    event_type: Literal["driver.location_changed"] = "driver.location_changed"

    driver_id: str
    latitude: float
    longitude: float
    at: datetime

    @field_serializer("at")
    def serialize_at(self, v: datetime) -> str:
        return v.isoformat().replace("+00:00", "Z")


class AvailabilityChanged(DomainEvent):
    """Событие: водитель стал доступен или недоступен для заказов."""

    event_type: Literal["driver.availability_changed"] = "driver.availability_changed"

    driver_id: str
    available: bool
    at: datetime

    @field_serializer("at")
    def serialize_at(self, v: datetime) -> str:
        return v.isoformat().replace("+00:00", "Z")


DriverEvent = LocationChanged | AvailabilityChanged
