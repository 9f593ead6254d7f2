# tests/core/test_geo_resolver.py
"""
Тесты для резолвера геозаписей (src/core/geo/resolver.py).
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.core.geo.resolver import GeoResolver
from src.core.location.exceptions import (
    ReportValidationError,
    ResolutionInvalid,
    ResolutionUnavailable,
)


GEOIP_SUCCESS = {
    "status": "success",
    "country": "United States",
    "city": "Mountain View",
    "lat": 37.386,
    "lon": -122.0838,
}


@pytest.fixture
def http_client() -> MagicMock:
    client = MagicMock()
    client.get = AsyncMock(return_value=httpx.Response(200, json=GEOIP_SUCCESS))
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def resolver(http_client: MagicMock) -> GeoResolver:
    return GeoResolver(
        geoip_url="http://geoip.test/json/{ip}",
        geoip_fields="status,message,country,city,lat,lon",
        timeout=0.5,
        google_api_key="",
        reverse_geocode=False,
        client=http_client,
    )


class TestResolveCoordinates:
    """Тесты для координат устройства."""

    @pytest.mark.asyncio
    async def test_coordinates_used_directly(self, resolver: GeoResolver, http_client: MagicMock) -> None:
        """Координаты устройства не требуют внешних запросов."""
        record = await resolver.resolve(latitude=40.7128, longitude=-74.006)

        assert record.latitude == 40.7128
        assert record.longitude == -74.006
        assert record.country == ""
        http_client.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_coordinates_take_priority_over_ip(self, resolver: GeoResolver, http_client: MagicMock) -> None:
        """При наличии координат IP сохраняется, но не резолвится."""
        record = await resolver.resolve(ip_address="8.8.8.8", latitude=50.45, longitude=30.52)

        assert record.source_ip_address == "8.8.8.8"
        assert record.latitude == 50.45
        http_client.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_out_of_range_rejected(self, resolver: GeoResolver) -> None:
        """Координаты вне диапазона: ошибка валидации."""
        with pytest.raises(ResolutionInvalid):
            await resolver.resolve_coordinates(91.0, 0.0)

    @pytest.mark.asyncio
    async def test_nothing_to_resolve(self, resolver: GeoResolver) -> None:
        """Ни координат, ни IP: ошибка валидации."""
        with pytest.raises(ReportValidationError):
            await resolver.resolve()

    @pytest.mark.asyncio
    async def test_reverse_geocode_fills_country_and_city(self, http_client: MagicMock) -> None:
        """Обратное геокодирование заполняет страну и город."""
        http_client.get = AsyncMock(return_value=httpx.Response(200, json={
            "status": "OK",
            "results": [{
                "address_components": [
                    {"long_name": "Kyiv", "types": ["locality", "political"]},
                    {"long_name": "Ukraine", "types": ["country", "political"]},
                ],
            }],
        }))
        resolver = GeoResolver(
            geoip_url="http://geoip.test/json/{ip}",
            timeout=0.5,
            google_api_key="key",
            reverse_geocode=True,
            client=http_client,
        )

        record = await resolver.resolve_coordinates(50.45, 30.52)

        assert record.country == "Ukraine"
        assert record.city == "Kyiv"
        params = http_client.get.call_args.kwargs["params"]
        assert params["latlng"] == "50.45,30.52"

    @pytest.mark.asyncio
    async def test_reverse_geocode_failure_is_best_effort(self, http_client: MagicMock) -> None:
        """Сбой геокодера не мешает принять координаты."""
        http_client.get = AsyncMock(side_effect=httpx.ConnectError("down"))
        resolver = GeoResolver(
            geoip_url="http://geoip.test/json/{ip}",
            timeout=0.5,
            google_api_key="key",
            reverse_geocode=True,
            client=http_client,
        )

        record = await resolver.resolve_coordinates(50.45, 30.52)

        assert record.country == ""
        assert record.city == ""

    def test_reverse_geocode_requires_key(self, http_client: MagicMock) -> None:
        """Без ключа API обратное геокодирование выключено."""
        resolver = GeoResolver(
            geoip_url="http://geoip.test/json/{ip}",
            google_api_key="",
            reverse_geocode=True,
            client=http_client,
        )
        assert resolver._reverse_geocode is False


class TestResolveIp:
    """Тесты определения местоположения по IP."""

    @pytest.mark.asyncio
    async def test_success(self, resolver: GeoResolver, http_client: MagicMock) -> None:
        """Успешный ответ GeoIP превращается в геозапись."""
        record = await resolver.resolve(ip_address="8.8.8.8")

        assert record.source_ip_address == "8.8.8.8"
        assert record.country == "United States"
        assert record.city == "Mountain View"
        assert record.latitude == 37.386
        assert record.longitude == -122.0838

        url = http_client.get.call_args.args[0]
        assert url == "http://geoip.test/json/8.8.8.8"
        assert http_client.get.call_args.kwargs["params"]["fields"].startswith("status")

    @pytest.mark.asyncio
    async def test_ipv6_supported(self, resolver: GeoResolver, http_client: MagicMock) -> None:
        """IPv6 адреса нормализуются."""
        record = await resolver.resolve_ip("2001:4860:4860::8888")
        assert record.source_ip_address == "2001:4860:4860::8888"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_ip", ["not-an-ip", "999.1.1.1", ""])
    async def test_malformed_ip(self, resolver: GeoResolver, http_client: MagicMock, bad_ip: str) -> None:
        """Битый IP: ошибка валидации без обращения к сети."""
        with pytest.raises(ResolutionInvalid):
            await resolver.resolve_ip(bad_ip)
        http_client.get.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("private_ip", ["10.0.0.1", "192.168.1.10", "127.0.0.1"])
    async def test_private_ip_unavailable(self, resolver: GeoResolver, private_ip: str) -> None:
        """Приватные адреса GeoIP не определит."""
        with pytest.raises(ResolutionUnavailable):
            await resolver.resolve_ip(private_ip)

    @pytest.mark.asyncio
    async def test_timeout(self, resolver: GeoResolver, http_client: MagicMock) -> None:
        """Таймаут GeoIP: источник недоступен."""
        http_client.get = AsyncMock(side_effect=httpx.ReadTimeout("slow"))
        with pytest.raises(ResolutionUnavailable):
            await resolver.resolve_ip("8.8.8.8")

    @pytest.mark.asyncio
    async def test_slow_response_cut_by_wait_for(self, http_client: MagicMock) -> None:
        """Зависший запрос прерывается по таймауту резолвера."""
        async def hang(*args, **kwargs):
            await asyncio.sleep(10)

        http_client.get = AsyncMock(side_effect=hang)
        resolver = GeoResolver(geoip_url="http://geoip.test/json/{ip}", timeout=0.01, client=http_client)

        with pytest.raises(ResolutionUnavailable):
            await resolver.resolve_ip("8.8.8.8")

    @pytest.mark.asyncio
    async def test_network_error(self, resolver: GeoResolver, http_client: MagicMock) -> None:
        """Сетевая ошибка: источник недоступен."""
        http_client.get = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(ResolutionUnavailable):
            await resolver.resolve_ip("8.8.8.8")

    @pytest.mark.asyncio
    async def test_http_error_status(self, resolver: GeoResolver, http_client: MagicMock) -> None:
        """Ответ не 200: источник недоступен."""
        http_client.get = AsyncMock(return_value=httpx.Response(503, text="busy"))
        with pytest.raises(ResolutionUnavailable):
            await resolver.resolve_ip("8.8.8.8")

    @pytest.mark.asyncio
    async def test_not_json(self, resolver: GeoResolver, http_client: MagicMock) -> None:
        """Ответ не JSON: источник недоступен."""
        http_client.get = AsyncMock(return_value=httpx.Response(200, text="<html>"))
        with pytest.raises(ResolutionUnavailable):
            await resolver.resolve_ip("8.8.8.8")

    @pytest.mark.asyncio
    async def test_fail_status(self, resolver: GeoResolver, http_client: MagicMock) -> None:
        """status=fail: нет данных."""
        http_client.get = AsyncMock(
            return_value=httpx.Response(200, json={"status": "fail", "message": "reserved range"})
        )
        with pytest.raises(ResolutionUnavailable):
            await resolver.resolve_ip("8.8.8.8")

    @pytest.mark.asyncio
    async def test_invalid_query(self, resolver: GeoResolver, http_client: MagicMock) -> None:
        """GeoIP считает запрос некорректным: ошибка валидации."""
        http_client.get = AsyncMock(
            return_value=httpx.Response(200, json={"status": "fail", "message": "invalid query"})
        )
        with pytest.raises(ResolutionInvalid):
            await resolver.resolve_ip("8.8.8.8")

    @pytest.mark.asyncio
    async def test_missing_coordinates(self, resolver: GeoResolver, http_client: MagicMock) -> None:
        """Успешный ответ без координат: нет данных."""
        http_client.get = AsyncMock(
            return_value=httpx.Response(200, json={"status": "success", "country": "X"})
        )
        with pytest.raises(ResolutionUnavailable):
            await resolver.resolve_ip("8.8.8.8")

    @pytest.mark.asyncio
    async def test_coordinates_as_strings(self, resolver: GeoResolver, http_client: MagicMock) -> None:
        """Координаты строками приводятся к float."""
        http_client.get = AsyncMock(
            return_value=httpx.Response(200, json={**GEOIP_SUCCESS, "lat": "40.7128", "lon": "-74.0060"})
        )
        record = await resolver.resolve_ip("8.8.8.8")
        assert record.latitude == 40.7128
        assert record.longitude == -74.006


class TestClose:
    """Тесты закрытия клиента."""

    @pytest.mark.asyncio
    async def test_close(self, resolver: GeoResolver, http_client: MagicMock) -> None:
        """close закрывает HTTP клиент."""
        await resolver.close()
        http_client.aclose.assert_awaited_once()
