# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class IngestStatus(str, Enum):
    """Результат приёма отчёта о геолокации."""
    ACCEPTED = "accepted"
    STALE = "stale"          # устаревший/повторный отчёт, молча отброшен
    REJECTED = "rejected"    # невалидный отчёт, видим клиенту


class LocationSource(str, Enum):
    """Источник координат в состоянии водителя."""
    DEVICE = "device"
    IP = "ip"


class DriverEventType(str, Enum):
    """Типы исходящих событий сервиса геолокации."""
    LOCATION_CHANGED = "driver.location_changed"
    AVAILABILITY_CHANGED = "driver.availability_changed"


# Средний радиус Земли в км (сферическая модель)
EARTH_RADIUS_KM = 6371.0
