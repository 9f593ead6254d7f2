# src/core/geo/__init__.py
"""
Geo-модуль.
Определение местоположения по IP/координатам и расчёт расстояний.
"""

from src.core.geo.distance import haversine_km
from src.core.geo.resolver import GeoResolver

__all__ = [
    "GeoResolver",
    "haversine_km",
]
