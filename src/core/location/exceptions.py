# src/core/location/exceptions.py
"""
Исключения сервиса геолокации.

Клиенту видны только ReportValidationError и ResolutionInvalid,
остальные ошибки внутренние и устраняются повторами/сверкой.
"""

from __future__ import annotations

from datetime import datetime


class LocationServiceError(Exception):
    """Базовое исключение сервиса геолокации."""


class ReportValidationError(LocationServiceError):
    """Отчёт некорректен (пустые/битые поля) — отклоняется без повторов."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class StaleReportError(LocationServiceError):
    """Отчёт старше сохранённого состояния — отбрасывается молча."""

    def __init__(self, driver_id: str, reported_at: datetime, stored_at: datetime) -> None:
        super().__init__(
            f"Устаревший отчёт водителя {driver_id}: {reported_at.isoformat()} < {stored_at.isoformat()}"
        )
        self.driver_id = driver_id
        self.reported_at = reported_at
        self.stored_at = stored_at


class ResolutionError(LocationServiceError):
    """Не удалось определить местоположение."""


class ResolutionUnavailable(ResolutionError):
    """Источник геоданных не ответил (таймаут, сбой, нет данных)."""


class ResolutionInvalid(ResolutionError, ReportValidationError):
    """Некорректный IP-адрес или координаты — трактуется как ошибка валидации."""

    def __init__(self, reason: str) -> None:
        ReportValidationError.__init__(self, reason)


class IndexMaintenanceFailure(LocationServiceError):
    """Не удалось обновить индекс доступных водителей."""

    def __init__(self, driver_id: str, cause: BaseException) -> None:
        super().__init__(f"Ошибка обслуживания индекса для водителя {driver_id}: {cause}")
        self.driver_id = driver_id
        self.cause = cause


class PublishFailure(LocationServiceError):
    """Событие не доставлено подписчикам."""


class DriverNotFoundError(LocationServiceError):
    """Водитель отсутствует в хранилище состояний."""

    def __init__(self, driver_id: str) -> None:
        super().__init__(f"Водитель не найден: {driver_id}")
        self.driver_id = driver_id
