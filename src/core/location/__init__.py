# src/core/location/__init__.py
"""
Состояние и доступность водителей.
"""

from src.core.location.availability_index import AvailabilityIndex
from src.core.location.exceptions import (
    DriverNotFoundError,
    IndexMaintenanceFailure,
    LocationServiceError,
    PublishFailure,
    ReportValidationError,
    ResolutionError,
    ResolutionInvalid,
    ResolutionUnavailable,
    StaleReportError,
)
from src.core.location.ingestor import LocationIngestor
from src.core.location.publisher import EventPublisher, EventTransport
from src.core.location.state_store import DriverStateStore

__all__ = [
    "AvailabilityIndex",
    "DriverStateStore",
    "EventPublisher",
    "EventTransport",
    "LocationIngestor",
    "LocationServiceError",
    "ReportValidationError",
    "StaleReportError",
    "ResolutionError",
    "ResolutionInvalid",
    "ResolutionUnavailable",
    "IndexMaintenanceFailure",
    "PublishFailure",
    "DriverNotFoundError",
]
