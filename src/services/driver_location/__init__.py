# src/services/driver_location/__init__.py
"""
Сервис геолокации и доступности водителей.
"""

from src.services.driver_location.service import DriverLocationService

__all__ = ["DriverLocationService"]
