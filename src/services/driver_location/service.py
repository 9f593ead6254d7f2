# src/services/driver_location/service.py
"""
Сервис геолокации и доступности водителей.

Связывает резолвер, приём отчётов, хранилище, индекс и издателя событий.
Используется HTTP-приложением и точками входа.
"""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Sequence

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info
from src.core.geo.resolver import GeoResolver
from src.core.location.availability_index import AvailabilityIndex
from src.core.location.exceptions import ReportValidationError, StaleReportError
from src.core.location.ingestor import LocationIngestor
from src.core.location.publisher import EventPublisher
from src.core.location.state_store import DriverStateStore
from src.shared.events.location_events import AvailabilityChanged
from src.shared.models.driver_location import (
    DriverState,
    IngestResult,
    LocationReport,
    LocationUpdateRecord,
    NearbyDriver,
    coordinates_in_range,
    ensure_utc,
    utc_now,
)


class DriverLocationService:
    """
    Фасад сервиса геолокации.

    Ответственности:
    - Приём отчётов (по одному и пакетом)
    - Поиск ближайших доступных водителей для диспетчера
    - Управление доступностью и удаление водителей
    - Фоновое обслуживание: сверка индекса и снятие молчащих водителей
    """

    def __init__(
        self,
        store: DriverStateStore | None = None,
        index: AvailabilityIndex | None = None,
        resolver: GeoResolver | None = None,
        publisher: EventPublisher | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        from src.config import settings

        self._store = store or DriverStateStore()
        self._index = index or AvailabilityIndex()
        self._resolver = resolver or GeoResolver()
        self._publisher = publisher or EventPublisher()
        self._clock = clock
        self._ingestor = LocationIngestor(
            store=self._store,
            index=self._index,
            resolver=self._resolver,
            publisher=self._publisher,
            clock=clock,
        )

        self._max_batch_size = settings.ingest.MAX_BATCH_SIZE
        self._default_radius_km = settings.index.DEFAULT_SEARCH_RADIUS_KM
        self._max_radius_km = settings.index.MAX_SEARCH_RADIUS_KM
        self._max_results = settings.index.MAX_RESULTS
        self._availability_ttl = timedelta(seconds=settings.index.AVAILABILITY_TTL_SECONDS)
        self._sweep_interval = settings.index.SWEEP_INTERVAL_SECONDS
        self._reconcile_interval = settings.index.RECONCILE_INTERVAL_SECONDS

        self._maintenance_task: asyncio.Task | None = None
        self._started_at: float | None = None
        self._swept = 0

    @property
    def store(self) -> DriverStateStore:
        return self._store

    @property
    def index(self) -> AvailabilityIndex:
        return self._index

    @property
    def publisher(self) -> EventPublisher:
        return self._publisher

    @property
    def ingestor(self) -> LocationIngestor:
        return self._ingestor

    # =========================================================================
    # ЖИЗНЕННЫЙ ЦИКЛ
    # =========================================================================

    async def start(self) -> None:
        """Перестраивает индекс и запускает фоновые задачи."""
        if self._maintenance_task is not None:
            return

        await self.rebuild_index()
        await self._publisher.start()
        self._maintenance_task = asyncio.create_task(
            self._maintenance_loop(), name="driver-location-maintenance"
        )
        self._started_at = time.monotonic()
        await log_info("Сервис геолокации водителей запущен", type_msg=TypeMsg.INFO)

    async def stop(self) -> None:
        """Останавливает фоновые задачи и дожидается доставки событий."""
        if self._maintenance_task is not None:
            self._maintenance_task.cancel()
            await asyncio.gather(self._maintenance_task, return_exceptions=True)
            self._maintenance_task = None

        await self._publisher.stop(drain=True)
        await self._resolver.close()
        await log_info("Сервис геолокации водителей остановлен", type_msg=TypeMsg.INFO)

    async def _maintenance_loop(self) -> None:
        loop = asyncio.get_running_loop()
        next_sweep = loop.time() + self._sweep_interval

        while True:
            await asyncio.sleep(min(self._reconcile_interval, self._sweep_interval))
            try:
                await self.reconcile_pending()
                if loop.time() >= next_sweep:
                    await self.sweep_stale()
                    next_sweep = loop.time() + self._sweep_interval
            except Exception as e:
                await log_error(f"Ошибка фонового обслуживания индекса: {e}", exc_info=True)

    # =========================================================================
    # ПРИЁМ ОТЧЁТОВ
    # =========================================================================

    async def ingest(self, report: LocationReport | dict[str, Any]) -> IngestResult:
        """Принимает один отчёт водителя."""
        return await self._ingestor.ingest(report)

    async def ingest_batch(
        self,
        reports: Sequence[LocationReport | dict[str, Any]],
    ) -> list[IngestResult]:
        """
        Принимает пакет отчётов.

        Отчёты одного водителя обрабатываются по порядку, разных водителей
        параллельно. Результаты возвращаются в порядке входного пакета.

        Raises:
            ReportValidationError: пакет больше MAX_BATCH_SIZE
        """
        if len(reports) > self._max_batch_size:
            raise ReportValidationError(
                f"Пакет из {len(reports)} отчётов превышает лимит {self._max_batch_size}"
            )

        groups: dict[str, list[int]] = defaultdict(list)
        for position, report in enumerate(reports):
            groups[self._group_key(report, position)].append(position)

        results: list[IngestResult | None] = [None] * len(reports)

        async def run_group(positions: list[int]) -> None:
            for position in positions:
                results[position] = await self._ingestor.ingest(reports[position])

        await asyncio.gather(*(run_group(positions) for positions in groups.values()))
        return [r for r in results if r is not None]

    @staticmethod
    def _group_key(report: LocationReport | dict[str, Any], position: int) -> str:
        if isinstance(report, LocationReport):
            return report.driver_id
        driver_id = report.get("driver_id") if isinstance(report, dict) else None
        if isinstance(driver_id, str) and driver_id.strip():
            return driver_id.strip()
        # Отчёт без водителя будет отклонён валидацией, группируем отдельно
        return f"#{position}"

    # =========================================================================
    # ПОИСК
    # =========================================================================

    async def nearest_available(
        self,
        latitude: float,
        longitude: float,
        k: int | None = None,
        max_radius_km: float | None = None,
    ) -> list[NearbyDriver]:
        """
        Ближайшие доступные водители.

        Кандидаты из индекса сверяются с хранилищем: водитель, ставший
        недоступным или удалённый после записи в индекс, отбрасывается.

        Raises:
            ReportValidationError: координаты запроса вне диапазона
        """
        if not coordinates_in_range(latitude, longitude):
            raise ReportValidationError(f"Координаты вне диапазона: ({latitude}, {longitude})")

        k = self._max_results if k is None else min(k, self._max_results)
        radius = self._default_radius_km if max_radius_km is None else min(max_radius_km, self._max_radius_km)

        hits = self._index.nearest(latitude, longitude, k, radius)
        states = self._store.get_many(driver_id for driver_id, _ in hits)

        result: list[NearbyDriver] = []
        for driver_id, distance_km in hits:
            state = states.get(driver_id)
            if state is None or not state.available:
                continue
            result.append(
                NearbyDriver(
                    driver_id=driver_id,
                    vehicle_id=state.assigned_vehicle_id,
                    distance_km=distance_km,
                    last_updated_at=state.last_updated_at,
                )
            )
        return result

    # =========================================================================
    # СОСТОЯНИЕ ВОДИТЕЛЯ
    # =========================================================================

    def get_state(self, driver_id: str) -> DriverState:
        """
        Raises:
            DriverNotFoundError: водитель неизвестен
        """
        return self._store.get(driver_id)

    async def ensure_driver(self, driver_id: str) -> DriverState:
        """Состояние водителя; неизвестный водитель создаётся недоступным."""
        return await self._store.ensure(driver_id)

    async def update_driver(self, driver_id: str, report: dict[str, Any]) -> tuple[IngestResult, DriverState]:
        """
        Обновляет известного водителя отчётом без driver_id в теле.

        Без reported_at отчёт датируется текущим временем.

        Returns:
            (итог обработки, текущее состояние)

        Raises:
            DriverNotFoundError: водитель неизвестен
        """
        self._store.get(driver_id)
        data = {**report, "driver_id": driver_id}
        if data.get("reported_at") is None:
            data["reported_at"] = self._clock()
        result = await self._ingestor.ingest(data)
        return result, self._store.get(driver_id)

    async def set_availability(
        self,
        driver_id: str,
        available: bool,
        at: datetime | None = None,
    ) -> DriverState:
        """
        Меняет только доступность водителя.

        Устаревшее изменение игнорируется, возвращается текущее состояние.

        Raises:
            ReportValidationError: момент изменения в будущем
        """
        moment = ensure_utc(at) if at is not None else self._clock()
        self._ingestor.check_not_future(moment, "at")

        try:
            previous, current = await self._store.set_availability(driver_id, available, moment)
        except StaleReportError:
            return self._store.get(driver_id)

        await self._ingestor.sync_index(driver_id)
        await self._ingestor.publish_changes(previous, current)
        return current

    async def remove_driver(self, driver_id: str) -> bool:
        """
        Удаляет водителя (деактивация аккаунта).

        Returns:
            True, если водитель был известен
        """
        removed = await self._store.remove(driver_id)
        self._index.remove(driver_id)
        if removed is None:
            return False

        if removed.available:
            await self._publisher.publish(
                AvailabilityChanged(driver_id=driver_id, available=False, at=self._clock())
            )
        await log_info(f"Водитель {driver_id} удалён", type_msg=TypeMsg.INFO)
        return True

    def recent_updates(self, driver_id: str, limit: int | None = None) -> list[LocationUpdateRecord]:
        """
        Raises:
            DriverNotFoundError: водитель неизвестен
        """
        return self._store.history(driver_id, limit)

    # =========================================================================
    # ОБСЛУЖИВАНИЕ ИНДЕКСА
    # =========================================================================

    async def rebuild_index(self) -> int:
        """
        Перестраивает индекс из полного снимка хранилища.

        Returns:
            Количество записей в индексе
        """
        count = self._index.rebuild(self._store.snapshot())
        await self._ingestor.reconcile_pending()
        await log_info(f"Индекс доступных водителей перестроен: {count} записей", type_msg=TypeMsg.INFO)
        return count

    async def reconcile_pending(self) -> int:
        """Повторяет синхронизацию индекса для водителей с прошлыми сбоями."""
        return await self._ingestor.reconcile_pending()

    async def sweep_stale(self) -> int:
        """
        Снимает с линии водителей, молчащих дольше AVAILABILITY_TTL_SECONDS.

        Returns:
            Количество снятых водителей
        """
        now = self._clock()
        cutoff = now - self._availability_ttl
        swept = 0

        for driver_id in self._store.silent_since(cutoff):
            current = await self._store.mark_stale(driver_id, cutoff)
            if current is None:
                continue
            swept += 1
            await self._ingestor.sync_index(driver_id)
            await self._publisher.publish(
                AvailabilityChanged(driver_id=driver_id, available=False, at=now)
            )

        if swept:
            self._swept += swept
            await log_info(
                f"Сняты с линии молчащие водители: {swept}",
                type_msg=TypeMsg.INFO,
            )
        return swept

    # =========================================================================
    # СТАТИСТИКА
    # =========================================================================

    def uptime_seconds(self) -> float | None:
        if self._started_at is None:
            return None
        return time.monotonic() - self._started_at

    def stats(self) -> dict[str, Any]:
        """Сводная статистика сервиса."""
        return {
            "store": self._store.stats(),
            "index": self._index.stats(),
            "ingest": self._ingestor.stats(),
            "publisher": self._publisher.stats(),
            "swept": self._swept,
            "uptime_seconds": self.uptime_seconds(),
        }
