"""
Схемы событий сервиса геолокации.

- location_events: смена координат и доступности водителя

Все события идемпотентны и содержат event_id для дедупликации.
"""

from src.shared.events.base import DomainEvent, EventMetadata
from src.shared.events.location_events import (
    AvailabilityChanged,
    DriverEvent,
    LocationChanged,
)

__all__ = [
    # Base
    "DomainEvent",
    "EventMetadata",
    # Location
    "LocationChanged",
    "AvailabilityChanged",
    "DriverEvent",
]
