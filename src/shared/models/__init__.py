# src/shared/models/__init__.py
"""
Общие DTO и Pydantic-модели сервиса геолокации.
"""

from src.shared.models.common import ErrorResponse, HealthStatus
from src.shared.models.driver_location import (
    DriverState,
    GeoRecord,
    IndexEntry,
    IngestResult,
    LocationReport,
    LocationUpdateRecord,
    NearbyDriver,
)

__all__ = [
    "ErrorResponse",
    "HealthStatus",
    "DriverState",
    "GeoRecord",
    "IndexEntry",
    "IngestResult",
    "LocationReport",
    "LocationUpdateRecord",
    "NearbyDriver",
]
