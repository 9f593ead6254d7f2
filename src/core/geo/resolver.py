# src/core/geo/resolver.py
"""
Определение местоположения водителя.

Координаты устройства используются напрямую (страна/город — best-effort
через обратное геокодирование Google Maps), иначе местоположение
определяется по IP-адресу через внешний GeoIP-сервис.
"""

from __future__ import annotations

import asyncio
import ipaddress
from typing import Any

import httpx
from pydantic import ValidationError

from src.common.constants import TypeMsg
from src.common.logger import log_info
from src.core.location.exceptions import ResolutionInvalid, ResolutionUnavailable
from src.shared.models.driver_location import GeoRecord, coordinates_in_range


class GeoResolver:
    """
    Резолвер геозаписей.

    Реализует:
    - Нормализацию координат устройства
    - Определение местоположения по IP (с ограничением по времени)
    - Обратное геокодирование (страна, город), если включено

    Результаты не кэшируются: повторное использование последней известной
    локации — забота хранилища состояний.
    """

    GEOCODING_URL = "https://maps.googleapis.com/maps/api/geocode/json"

    def __init__(
        self,
        geoip_url: str | None = None,
        geoip_fields: str | None = None,
        timeout: float | None = None,
        google_api_key: str | None = None,
        language: str | None = None,
        reverse_geocode: bool | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Инициализация резолвера.

        Args:
            geoip_url: Шаблон URL GeoIP-сервиса с плейсхолдером {ip}
            geoip_fields: Список полей ответа GeoIP
            timeout: Таймаут внешнего запроса (секунды)
            google_api_key: API ключ Google Maps для обратного геокодирования
            language: Язык ответов геокодера
            reverse_geocode: Включить обратное геокодирование координат
            client: HTTP клиент (подменяется в тестах)
        """
        if geoip_url is None:
            from src.config import settings
            geoip_url = settings.geo.GEOIP_URL
            geoip_fields = geoip_fields or settings.geo.GEOIP_FIELDS
            timeout = timeout if timeout is not None else settings.geo.GEOIP_TIMEOUT_SECONDS
            if reverse_geocode is None:
                reverse_geocode = settings.geo.REVERSE_GEOCODE_ENABLED
            if google_api_key is None:
                google_api_key = settings.google_maps.GOOGLE_MAPS_API_KEY
                language = language or settings.google_maps.GEOCODING_LANGUAGE

        self._geoip_url = geoip_url
        self._geoip_fields = geoip_fields or "status,message,country,city,lat,lon"
        self._timeout = timeout if timeout is not None else 2.0
        self._api_key = google_api_key or ""
        self._language = language or "en"
        self._reverse_geocode = bool(reverse_geocode) and bool(self._api_key)
        self._client = client or httpx.AsyncClient(timeout=self._timeout)

    @property
    def timeout(self) -> float:
        return self._timeout

    async def close(self) -> None:
        """Закрывает HTTP клиент."""
        await self._client.aclose()

    async def resolve(
        self,
        *,
        ip_address: str | None = None,
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> GeoRecord:
        """
        Строит геозапись по координатам устройства или по IP.

        Координаты имеют приоритет; IP при этом сохраняется в записи.

        Raises:
            ResolutionInvalid: некорректный IP или координаты
            ResolutionUnavailable: источник геоданных не ответил
        """
        if latitude is not None and longitude is not None:
            return await self.resolve_coordinates(latitude, longitude, ip_address=ip_address)
        if ip_address:
            return await self.resolve_ip(ip_address)
        raise ResolutionInvalid("Не переданы ни координаты, ни IP-адрес")

    async def resolve_coordinates(
        self,
        latitude: float,
        longitude: float,
        ip_address: str | None = None,
    ) -> GeoRecord:
        """Координаты устройства используются напрямую."""
        if not coordinates_in_range(latitude, longitude):
            raise ResolutionInvalid(f"Координаты вне диапазона: ({latitude}, {longitude})")

        country, city = "", ""
        if self._reverse_geocode:
            country, city = await self._reverse_lookup(latitude, longitude)

        return GeoRecord(
            source_ip_address=ip_address,
            country=country,
            city=city,
            latitude=latitude,
            longitude=longitude,
        )

    async def resolve_ip(self, ip_address: str) -> GeoRecord:
        """
        Определяет местоположение по IP-адресу.

        Raises:
            ResolutionInvalid: IP-адрес некорректен
            ResolutionUnavailable: таймаут, сетевая ошибка или нет ответа
        """
        try:
            address = ipaddress.ip_address(ip_address.strip())
        except ValueError:
            raise ResolutionInvalid(f"Некорректный IP-адрес: {ip_address!r}")

        if not address.is_global:
            # Публичный GeoIP не знает приватные/служебные диапазоны
            raise ResolutionUnavailable(f"IP-адрес не маршрутизируется публично: {address}")

        url = self._geoip_url.format(ip=str(address))
        try:
            response = await asyncio.wait_for(
                self._client.get(url, params={"fields": self._geoip_fields}),
                timeout=self._timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise ResolutionUnavailable(f"Таймаут GeoIP для {address}") from e
        except httpx.HTTPError as e:
            raise ResolutionUnavailable(f"Ошибка GeoIP для {address}: {e}") from e

        if response.status_code != 200:
            raise ResolutionUnavailable(f"GeoIP вернул HTTP {response.status_code} для {address}")

        try:
            data: dict[str, Any] = response.json()
        except ValueError as e:
            raise ResolutionUnavailable(f"GeoIP вернул не JSON для {address}") from e

        if data.get("status") != "success":
            message = str(data.get("message", ""))
            if message == "invalid query":
                raise ResolutionInvalid(f"GeoIP отклонил IP-адрес: {address}")
            raise ResolutionUnavailable(f"GeoIP не определил {address}: {message or 'нет данных'}")

        if data.get("lat") is None or data.get("lon") is None:
            raise ResolutionUnavailable(f"GeoIP не вернул координаты для {address}")

        try:
            return GeoRecord(
                source_ip_address=str(address),
                country=data.get("country"),
                city=data.get("city"),
                latitude=data["lat"],
                longitude=data["lon"],
            )
        except ValidationError as e:
            raise ResolutionUnavailable(f"GeoIP вернул некорректные координаты для {address}") from e

    async def _reverse_lookup(self, latitude: float, longitude: float) -> tuple[str, str]:
        """
        Обратное геокодирование: координаты -> (страна, город).

        Best-effort: при любой ошибке возвращает пустые строки.
        """
        try:
            response = await asyncio.wait_for(
                self._client.get(
                    self.GEOCODING_URL,
                    params={
                        "latlng": f"{latitude},{longitude}",
                        "key": self._api_key,
                        "language": self._language,
                    },
                ),
                timeout=self._timeout,
            )
            data = response.json()

            if data.get("status") != "OK" or not data.get("results"):
                return "", ""

            country, city = "", ""
            for component in data["results"][0].get("address_components", []):
                types = component.get("types", [])
                if "country" in types and not country:
                    country = component.get("long_name", "")
                elif ("locality" in types or "postal_town" in types) and not city:
                    city = component.get("long_name", "")
            return country, city
        except Exception as e:
            await log_info(
                f"Обратное геокодирование не удалось ({latitude}, {longitude}): {e}",
                type_msg=TypeMsg.WARNING,
            )
            return "", ""
