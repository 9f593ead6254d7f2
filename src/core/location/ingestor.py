# src/core/location/ingestor.py
"""
Приём отчётов о геолокации водителей.

Порядок обработки отчёта:
1. Валидация (поля, допустимое расхождение часов)
2. Ранняя проверка устаревания
3. Определение местоположения (до захвата блокировки водителя)
4. Атомарная запись в хранилище
5. Синхронизация индекса доступных водителей
6. Публикация событий (без ожидания доставки)
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable

from pydantic import ValidationError

from src.common.constants import IngestStatus, LocationSource, TypeMsg
from src.common.logger import log_error, log_info
from src.core.location.availability_index import AvailabilityIndex
from src.core.location.exceptions import (
    IndexMaintenanceFailure,
    ReportValidationError,
    ResolutionInvalid,
    ResolutionUnavailable,
    StaleReportError,
)
from src.core.location.publisher import EventPublisher
from src.core.location.state_store import DriverStateStore
from src.shared.events.location_events import AvailabilityChanged, LocationChanged
from src.shared.models.driver_location import (
    DriverState,
    GeoRecord,
    IngestResult,
    LocationReport,
    utc_now,
)

if TYPE_CHECKING:
    from src.core.geo.resolver import GeoResolver


class LocationIngestor:
    """
    Обработчик входящих отчётов.

    Клиенту видна только ошибка валидации (rejected). Устаревшие отчёты
    отбрасываются молча (stale), сбои геоданных деградируют до прежней
    локации, сбои индекса исправляются сверкой.
    """

    def __init__(
        self,
        store: DriverStateStore,
        index: AvailabilityIndex,
        resolver: GeoResolver,
        publisher: EventPublisher,
        clock: Callable[[], datetime] = utc_now,
        skew_tolerance_seconds: float | None = None,
        low_confidence_accuracy_m: float | None = None,
    ) -> None:
        if skew_tolerance_seconds is None or low_confidence_accuracy_m is None:
            from src.config import settings
            if skew_tolerance_seconds is None:
                skew_tolerance_seconds = settings.ingest.CLOCK_SKEW_TOLERANCE_SECONDS
            if low_confidence_accuracy_m is None:
                low_confidence_accuracy_m = settings.ingest.LOW_CONFIDENCE_ACCURACY_M

        self._store = store
        self._index = index
        self._resolver = resolver
        self._publisher = publisher
        self._clock = clock
        self._skew = timedelta(seconds=skew_tolerance_seconds)
        self._low_confidence_accuracy_m = low_confidence_accuracy_m

        # Водители, чей индекс нужно сверить повторно
        self._pending_reconcile: set[str] = set()

        # Статистика
        self._accepted = 0
        self._stale = 0
        self._rejected = 0
        self._degraded = 0
        self._index_failures = 0

    @property
    def pending_reconcile(self) -> set[str]:
        return set(self._pending_reconcile)

    # =========================================================================
    # ПРИЁМ ОТЧЁТА
    # =========================================================================

    async def ingest(self, report: LocationReport | dict[str, Any]) -> IngestResult:
        """
        Обрабатывает отчёт водителя.

        Args:
            report: Отчёт (модель или сырой словарь из запроса)

        Returns:
            IngestResult со статусом accepted, stale или rejected
        """
        try:
            report = self._validate(report)
        except ReportValidationError as e:
            return await self._reject(self._raw_driver_id(report), e.reason)

        driver_id = report.driver_id

        # Ранняя проверка: не тратим запрос к геосервису на устаревший отчёт
        known = self._store.get_many([driver_id]).get(driver_id)
        if known is not None and known.supersedes(report.reported_at):
            return await self._discard_stale(driver_id, report.reported_at, known.last_updated_at)

        try:
            location, source, location_stale = await self._resolve(report)
        except ResolutionInvalid as e:
            return await self._reject(driver_id, e.reason)

        degraded = location_stale
        new_state = DriverState(
            driver_id=driver_id,
            available=report.available,
            assigned_vehicle_id=report.vehicle_id,
            last_known_location=location,
            location_source=source,
            location_stale=location_stale,
            last_updated_at=report.reported_at,
        )

        try:
            previous, current = await self._store.upsert(driver_id, new_state)
        except StaleReportError as e:
            return await self._discard_stale(driver_id, e.reported_at, e.stored_at)

        self._accepted += 1
        await self.sync_index(driver_id)
        await self.publish_changes(previous, current)

        return IngestResult(driver_id=driver_id, status=IngestStatus.ACCEPTED, degraded=degraded)

    def _validate(self, report: LocationReport | dict[str, Any]) -> LocationReport:
        if not isinstance(report, LocationReport):
            try:
                report = LocationReport.model_validate(report)
            except ValidationError as e:
                errors = "; ".join(
                    f"{'.'.join(str(p) for p in err['loc']) or 'report'}: {err['msg']}"
                    for err in e.errors()
                )
                raise ReportValidationError(errors) from e

        self.check_not_future(report.reported_at, "reportedAt")
        return report

    def check_not_future(self, moment: datetime, field: str) -> None:
        """
        Raises:
            ReportValidationError: момент позже текущего времени больше чем на допуск
        """
        if moment > self._clock() + self._skew:
            raise ReportValidationError(f"{field} в будущем: {moment.isoformat()}")

    @staticmethod
    def _raw_driver_id(report: Any) -> str:
        if isinstance(report, LocationReport):
            return report.driver_id
        if isinstance(report, dict):
            return str(report.get("driver_id") or "").strip()
        return ""

    def _is_low_confidence(self, report: LocationReport) -> bool:
        if report.low_confidence:
            return True
        return report.accuracy_m is not None and report.accuracy_m > self._low_confidence_accuracy_m

    async def _resolve(
        self,
        report: LocationReport,
    ) -> tuple[GeoRecord | None, LocationSource | None, bool]:
        """
        Определяет местоположение для отчёта.

        Returns:
            (геозапись или None, источник, признак устаревания).
            None означает «оставить сохранённую локацию».

        Raises:
            ResolutionInvalid: некорректный IP или координаты
        """
        ip_address = report.source_ip_address
        trust_device = report.has_coordinates and not (
            self._is_low_confidence(report) and ip_address
        )

        if trust_device:
            location = await self._resolver.resolve_coordinates(
                report.latitude, report.longitude, ip_address=ip_address
            )
            return location, LocationSource.DEVICE, False

        if ip_address:
            try:
                location = await self._resolver.resolve_ip(ip_address)
                return location, LocationSource.IP, False
            except ResolutionUnavailable as e:
                self._degraded += 1
                await log_info(
                    f"Геоданные недоступны для водителя {report.driver_id}: {e}. "
                    f"Используется последняя известная локация",
                    type_msg=TypeMsg.WARNING,
                    extra={"driver_id": report.driver_id},
                )

            # Неточные координаты устройства лучше, чем ничего
            if report.has_coordinates:
                location = await self._resolver.resolve_coordinates(
                    report.latitude, report.longitude, ip_address=ip_address
                )
                return location, LocationSource.DEVICE, True
            return None, None, True

        # Ни координат, ни IP: обновляется только доступность
        return None, None, False

    async def _reject(self, driver_id: str, reason: str) -> IngestResult:
        self._rejected += 1
        await log_info(
            f"Отчёт водителя {driver_id or '?'} отклонён: {reason}",
            type_msg=TypeMsg.DEBUG,
        )
        return IngestResult(driver_id=driver_id, status=IngestStatus.REJECTED, reason=reason)

    async def _discard_stale(
        self,
        driver_id: str,
        reported_at: datetime,
        stored_at: datetime,
    ) -> IngestResult:
        self._stale += 1
        await log_info(
            f"Устаревший отчёт водителя {driver_id} отброшен: "
            f"{reported_at.isoformat()} < {stored_at.isoformat()}",
            type_msg=TypeMsg.DEBUG,
        )
        return IngestResult(driver_id=driver_id, status=IngestStatus.STALE)

    # =========================================================================
    # ИНДЕКС И СОБЫТИЯ
    # =========================================================================

    async def sync_index(self, driver_id: str) -> bool:
        """
        Приводит запись индекса к сохранённому состоянию водителя.

        Состояние читается из хранилища, а не из отчёта: при конкурентных
        обновлениях индекс сходится к последнему зафиксированному.

        Returns:
            False, если обновить индекс не удалось (водитель ждёт сверки)
        """
        try:
            state = self._store.get_many([driver_id]).get(driver_id)
            if state is not None and state.indexable:
                location = state.last_known_location
                self._index.upsert(driver_id, location.latitude, location.longitude)
            else:
                self._index.remove(driver_id)
        except Exception as e:
            self._index_failures += 1
            self._pending_reconcile.add(driver_id)
            await log_error(str(IndexMaintenanceFailure(driver_id, e)), exc_info=True)
            return False

        self._pending_reconcile.discard(driver_id)
        return True

    async def reconcile_pending(self) -> int:
        """
        Повторяет синхронизацию индекса для водителей с прошлыми сбоями.

        Returns:
            Количество успешно сверенных водителей
        """
        reconciled = 0
        for driver_id in list(self._pending_reconcile):
            if await self.sync_index(driver_id):
                reconciled += 1
        if reconciled:
            await log_info(f"Сверено записей индекса: {reconciled}", type_msg=TypeMsg.INFO)
        return reconciled

    async def publish_changes(self, previous: DriverState | None, current: DriverState) -> None:
        """
        Публикует события по разнице состояний.

        AvailabilityChanged: смена доступности или первое состояние водителя.
        LocationChanged: изменились координаты или появилась первая локация.
        """
        if previous is None or previous.available != current.available:
            await self._publisher.publish(
                AvailabilityChanged(
                    driver_id=current.driver_id,
                    available=current.available,
                    at=current.last_updated_at,
                )
            )

        location = current.last_known_location
        if location is not None and not location.same_position(
            previous.last_known_location if previous else None
        ):
            await self._publisher.publish(
                LocationChanged(
                    driver_id=current.driver_id,
                    latitude=location.latitude,
                    longitude=location.longitude,
                    at=current.last_updated_at,
                )
            )

    def stats(self) -> dict[str, Any]:
        """Статистика приёма."""
        return {
            "accepted": self._accepted,
            "stale": self._stale,
            "rejected": self._rejected,
            "degraded": self._degraded,
            "index_failures": self._index_failures,
            "pending_reconcile": len(self._pending_reconcile),
        }
