# src/core/location/state_store.py
"""
Хранилище актуальных состояний водителей.

Каждое принятое обновление заменяет запись водителя целиком (copy-on-write)
под блокировкой этого водителя. Глобальной блокировки нет: обновления
разных водителей не ждут друг друга.
"""

from __future__ import annotations

import asyncio
from collections import deque
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Iterable

from src.core.location.exceptions import DriverNotFoundError, StaleReportError
from src.shared.models.driver_location import (
    DriverState,
    LocationUpdateRecord,
    ensure_utc,
    utc_now,
)


class DriverStateStore:
    """
    Авторитетное хранилище состояний водителей (в памяти процесса).

    Инварианты:
    - у водителя не больше одной записи
    - last_updated_at записи никогда не уменьшается
    - отчёт старше сохранённого отклоняется StaleReportError,
      отчёт с тем же временем принимается (повторная доставка),
      кроме водителя, снятого по TTL
    """

    def __init__(self, history_size: int | None = None) -> None:
        if history_size is None:
            from src.config import settings
            history_size = settings.ingest.HISTORY_SIZE

        self._history_size = history_size
        self._states: dict[str, DriverState] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._history: dict[str, deque[LocationUpdateRecord]] = {}

        # Статистика
        self._upserts = 0
        self._stale_rejections = 0
        self._removals = 0

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, driver_id: object) -> bool:
        return driver_id in self._states

    @asynccontextmanager
    async def _locked(self, driver_id: str) -> AsyncIterator[None]:
        """
        Блокировка водителя на время операции.

        Блокировка удаляется, когда её никто не ждёт и записи водителя нет.
        """
        # Без await между проверкой и вставкой: создание атомарно в event loop
        lock = self._locks.get(driver_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[driver_id] = lock
        self._lock_users[driver_id] = self._lock_users.get(driver_id, 0) + 1

        try:
            async with lock:
                yield
        finally:
            users = self._lock_users[driver_id] - 1
            if users:
                self._lock_users[driver_id] = users
            else:
                del self._lock_users[driver_id]
                if driver_id not in self._states:
                    del self._locks[driver_id]

    # =========================================================================
    # ЗАПИСЬ
    # =========================================================================

    async def upsert(
        self,
        driver_id: str,
        new_state: DriverState,
    ) -> tuple[DriverState | None, DriverState]:
        """
        Атомарно сохраняет новое состояние водителя.

        Правила слияния:
        - last_known_location=None сохраняет прежнюю локацию и её признак
          устаревания (если новое состояние само не помечено устаревшим)
        - assigned_vehicle_id=None сохраняет прежний автомобиль
        - created_at берётся из первой записи

        Returns:
            (предыдущее состояние или None, сохранённое состояние)

        Raises:
            StaleReportError: новое состояние старше сохранённого
        """
        async with self._locked(driver_id):
            stored = self._states.get(driver_id)
            self._check_fresh(driver_id, stored, new_state.last_updated_at)

            merged = self._merge(driver_id, stored, new_state)
            self._commit(merged)
            return stored, merged

    async def set_availability(
        self,
        driver_id: str,
        available: bool,
        at: datetime | None = None,
    ) -> tuple[DriverState | None, DriverState]:
        """
        Меняет только доступность водителя (локация не трогается).

        Неизвестный водитель создаётся без локации.

        Returns:
            (предыдущее состояние, новое состояние)
        """
        moment = ensure_utc(at) if at is not None else utc_now()

        async with self._locked(driver_id):
            stored = self._states.get(driver_id)
            self._check_fresh(driver_id, stored, moment)

            base = stored or DriverState.default(driver_id, moment)
            current = base.model_copy(
                update={"available": available, "swept": False, "last_updated_at": moment}
            )
            self._commit(current)
            return stored, current

    async def ensure(self, driver_id: str) -> DriverState:
        """Возвращает состояние водителя, создавая запись по умолчанию при отсутствии."""
        async with self._locked(driver_id):
            stored = self._states.get(driver_id)
            if stored is not None:
                return stored

            state = DriverState.default(driver_id)
            self._commit(state)
            return state

    async def mark_stale(self, driver_id: str, older_than: datetime) -> DriverState | None:
        """
        Снимает доступность с водителя, который молчит дольше допустимого.

        Время обновления не сдвигается, чтобы первый же свежий отчёт
        водителя был принят. Повтор последнего отчёта до снятия
        отклоняется как устаревший.

        Returns:
            Новое состояние, если водитель был снят с линии, иначе None
        """
        async with self._locked(driver_id):
            stored = self._states.get(driver_id)
            if stored is None or not stored.available:
                return None
            if stored.last_updated_at >= older_than:
                return None

            current = stored.model_copy(
                update={"available": False, "location_stale": True, "swept": True}
            )
            self._states[driver_id] = current
            self._append_history(current)
            return current

    async def remove(self, driver_id: str) -> DriverState | None:
        """Удаляет водителя (только при деактивации аккаунта)."""
        async with self._locked(driver_id):
            removed = self._states.pop(driver_id, None)
            self._history.pop(driver_id, None)
            if removed is not None:
                self._removals += 1
            return removed

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    def get(self, driver_id: str) -> DriverState:
        """
        Raises:
            DriverNotFoundError: водитель неизвестен
        """
        state = self._states.get(driver_id)
        if state is None:
            raise DriverNotFoundError(driver_id)
        return state

    def get_many(self, driver_ids: Iterable[str]) -> dict[str, DriverState]:
        """Состояния нескольких водителей; отсутствующие пропускаются."""
        result: dict[str, DriverState] = {}
        for driver_id in driver_ids:
            state = self._states.get(driver_id)
            if state is not None:
                result[driver_id] = state
        return result

    def snapshot(self) -> list[DriverState]:
        """Полный список состояний (для перестроения индекса)."""
        return list(self._states.values())

    def silent_since(self, older_than: datetime) -> list[str]:
        """Доступные водители без обновлений с момента older_than."""
        return [
            driver_id
            for driver_id, state in self._states.items()
            if state.available and state.last_updated_at < older_than
        ]

    def history(self, driver_id: str, limit: int | None = None) -> list[LocationUpdateRecord]:
        """
        Последние обновления водителя, новые первыми.

        Raises:
            DriverNotFoundError: водитель неизвестен
        """
        if driver_id not in self._states:
            raise DriverNotFoundError(driver_id)

        records = list(reversed(self._history.get(driver_id, ())))
        if limit is not None:
            records = records[:max(limit, 0)]
        return records

    def stats(self) -> dict[str, Any]:
        """Статистика хранилища."""
        return {
            "drivers": len(self._states),
            "available": sum(1 for s in self._states.values() if s.available),
            "upserts": self._upserts,
            "stale_rejections": self._stale_rejections,
            "removals": self._removals,
        }

    # =========================================================================
    # ВНУТРЕННИЕ
    # =========================================================================

    def _check_fresh(self, driver_id: str, stored: DriverState | None, at: datetime) -> None:
        if stored is not None and stored.supersedes(at):
            self._stale_rejections += 1
            raise StaleReportError(driver_id, at, stored.last_updated_at)

    @staticmethod
    def _merge(driver_id: str, stored: DriverState | None, new_state: DriverState) -> DriverState:
        if stored is None:
            if new_state.driver_id != driver_id:
                return new_state.model_copy(update={"driver_id": driver_id})
            return new_state

        update: dict[str, Any] = {
            "driver_id": driver_id,
            "created_at": stored.created_at,
        }
        if new_state.last_known_location is None:
            update["last_known_location"] = stored.last_known_location
            update["location_source"] = stored.location_source
            update["location_stale"] = new_state.location_stale or stored.location_stale
        if new_state.assigned_vehicle_id is None:
            update["assigned_vehicle_id"] = stored.assigned_vehicle_id
        return new_state.model_copy(update=update)

    def _commit(self, state: DriverState) -> None:
        self._states[state.driver_id] = state
        self._upserts += 1
        self._append_history(state)

    def _append_history(self, state: DriverState) -> None:
        log = self._history.get(state.driver_id)
        if log is None:
            log = deque(maxlen=self._history_size)
            self._history[state.driver_id] = log

        record = LocationUpdateRecord.from_state(state)
        # Повторная доставка того же отчёта не дублирует запись
        if log and log[-1] == record:
            return
        log.append(record)
