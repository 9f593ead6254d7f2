# src/core/location/availability_index.py
"""
Пространственный индекс доступных водителей.

Водители раскладываются по ячейкам H3; поиск ближайших расширяет кольца
ячеек вокруг точки запроса, пока следующее кольцо гарантированно не
может содержать более близкого водителя.
"""

from __future__ import annotations

import math
from typing import Any, Iterable

import h3

from src.core.geo.distance import haversine_km
from src.shared.models.driver_location import DriverState, IndexEntry, coordinates_in_range


# Минимальное расстояние между центрами ячеек на k-м кольце в долях
# (ребро * k), взято с запасом на искажения H3
_RING_SPACING = 0.5 * math.sqrt(3)


class AvailabilityIndex:
    """
    Индекс водителей, готовых принимать заказы.

    Методы синхронные: без await каждый вызов атомарен в event loop.
    """

    def __init__(self, resolution: int | None = None) -> None:
        if resolution is None:
            from src.config import settings
            resolution = settings.index.H3_RESOLUTION

        self._resolution = resolution
        self._edge_km = h3.average_hexagon_edge_length(resolution, unit="km")
        self._cells: dict[str, set[str]] = {}
        self._entries: dict[str, IndexEntry] = {}

        # Статистика
        self._queries = 0
        self._rings_scanned = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, driver_id: object) -> bool:
        return driver_id in self._entries

    @property
    def resolution(self) -> int:
        return self._resolution

    def cell_for(self, latitude: float, longitude: float) -> str:
        return h3.latlng_to_cell(latitude, longitude, self._resolution)

    # =========================================================================
    # ЗАПИСЬ
    # =========================================================================

    def upsert(self, driver_id: str, latitude: float, longitude: float) -> IndexEntry:
        """Добавляет водителя или переносит его в новую точку."""
        if not coordinates_in_range(latitude, longitude):
            raise ValueError(f"Координаты вне диапазона: ({latitude}, {longitude})")

        cell = self.cell_for(latitude, longitude)
        previous = self._entries.get(driver_id)
        if previous is not None and previous.cell != cell:
            self._discard(previous)

        entry = IndexEntry(driver_id, latitude, longitude, cell)
        self._entries[driver_id] = entry
        self._cells.setdefault(cell, set()).add(driver_id)
        return entry

    def remove(self, driver_id: str) -> bool:
        """Удаляет водителя. Возвращает True, если он был в индексе."""
        entry = self._entries.pop(driver_id, None)
        if entry is None:
            return False
        self._discard(entry)
        return True

    def rebuild(self, states: Iterable[DriverState]) -> int:
        """
        Полностью пересобирает индекс из снимка хранилища.

        Попадают только доступные водители с известной локацией.
        Содержимое заменяется одной операцией.

        Returns:
            Количество записей в новом индексе
        """
        cells: dict[str, set[str]] = {}
        entries: dict[str, IndexEntry] = {}

        for state in states:
            if not state.indexable:
                continue
            location = state.last_known_location
            cell = self.cell_for(location.latitude, location.longitude)
            entries[state.driver_id] = IndexEntry(
                state.driver_id, location.latitude, location.longitude, cell
            )
            cells.setdefault(cell, set()).add(state.driver_id)

        self._cells = cells
        self._entries = entries
        return len(entries)

    def _discard(self, entry: IndexEntry) -> None:
        bucket = self._cells.get(entry.cell)
        if bucket is None:
            return
        bucket.discard(entry.driver_id)
        if not bucket:
            del self._cells[entry.cell]

    # =========================================================================
    # ПОИСК
    # =========================================================================

    def nearest(
        self,
        latitude: float,
        longitude: float,
        k: int,
        max_radius_km: float,
    ) -> list[tuple[str, float]]:
        """
        k ближайших водителей в радиусе max_radius_km.

        Returns:
            Список (driver_id, distance_km), упорядоченный по (расстоянию, driver_id)
        """
        if k <= 0 or max_radius_km < 0 or not self._entries:
            return []
        if not coordinates_in_range(latitude, longitude):
            raise ValueError(f"Координаты вне диапазона: ({latitude}, {longitude})")

        self._queries += 1
        center = self.cell_for(latitude, longitude)
        visited: set[str] = set()
        found: list[tuple[float, str]] = []
        examined = 0
        ring = 0

        while True:
            if ring > 0 and self._disk_size(ring) > len(self._entries):
                # Диск больше индекса: дешевле проверить оставшихся напрямую
                for entry in self._entries.values():
                    if entry.cell not in visited:
                        self._collect(entry, latitude, longitude, max_radius_km, found)
                break

            new_cells = set(h3.grid_disk(center, ring)) - visited
            visited |= new_cells
            self._rings_scanned += 1

            for cell in new_cells:
                for driver_id in self._cells.get(cell, ()):
                    examined += 1
                    self._collect(self._entries[driver_id], latitude, longitude, max_radius_km, found)

            if examined >= len(self._entries):
                break

            next_bound = self._ring_lower_bound(ring + 1)
            if next_bound > max_radius_km:
                break
            if len(found) >= k:
                found.sort()
                if found[k - 1][0] <= next_bound:
                    break
            ring += 1

        found.sort()
        return [(driver_id, distance) for distance, driver_id in found[:k]]

    def _ring_lower_bound(self, ring: int) -> float:
        """Нижняя граница расстояния до любой точки кольца ring (км)."""
        return max(0.0, _RING_SPACING * self._edge_km * ring - 2 * self._edge_km)

    @staticmethod
    def _disk_size(ring: int) -> int:
        return 3 * ring * (ring + 1) + 1

    @staticmethod
    def _collect(
        entry: IndexEntry,
        latitude: float,
        longitude: float,
        max_radius_km: float,
        found: list[tuple[float, str]],
    ) -> None:
        distance = haversine_km(latitude, longitude, entry.latitude, entry.longitude)
        if distance <= max_radius_km:
            found.append((distance, entry.driver_id))

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    def entries(self) -> dict[str, tuple[float, float]]:
        """Текущее содержимое индекса: driver_id -> (широта, долгота)."""
        return {
            driver_id: (entry.latitude, entry.longitude)
            for driver_id, entry in self._entries.items()
        }

    def get(self, driver_id: str) -> IndexEntry | None:
        return self._entries.get(driver_id)

    def stats(self) -> dict[str, Any]:
        """Статистика индекса."""
        return {
            "entries": len(self._entries),
            "cells": len(self._cells),
            "resolution": self._resolution,
            "queries": self._queries,
            "rings_scanned": self._rings_scanned,
        }
