# src/core/__init__.py
"""
Доменный слой (Core Domain).
Геолокация и доступность водителей, независимо от транспорта (HTTP, брокер).
"""

from src.core.geo import GeoResolver, haversine_km
from src.core.location import (
    AvailabilityIndex,
    DriverStateStore,
    EventPublisher,
    LocationIngestor,
)

__all__ = [
    "GeoResolver",
    "haversine_km",
    "AvailabilityIndex",
    "DriverStateStore",
    "EventPublisher",
    "LocationIngestor",
]
