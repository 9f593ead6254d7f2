"""
Модуль конфигурации.
Экспортирует настройки сервиса геолокации водителей.
"""

from src.config.loader import Settings, get_settings, settings

__all__ = ["Settings", "get_settings", "settings"]
