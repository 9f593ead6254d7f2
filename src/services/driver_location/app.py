# src/services/driver_location/app.py
"""
FastAPI приложение сервиса геолокации и доступности водителей.

Endpoints:
- POST /api/v1/driver-location/reports - отчёт водителя
- POST /api/v1/driver-location/reports/batch - пакет отчётов
- GET /api/v1/driver-location/nearest - ближайшие доступные водители
- GET /api/v1/driver-location/{driver_id} - состояние (создаётся при отсутствии)
- GET /api/v1/driver-location/details/{driver_id} - состояние известного водителя
- PUT /api/v1/driver-location/{driver_id} - обновление известного водителя
- GET /api/v1/driver-location/{driver_id}/snapshot - снимок состояния
- GET /api/v1/driver-location/{driver_id}/history - последние обновления
- PATCH /api/v1/driver-location/{driver_id}/availability - смена доступности
- DELETE /api/v1/driver-location/{driver_id} - удаление водителя
- POST /api/v1/driver-location/index/rebuild - перестроение индекса
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.common.constants import IngestStatus, TypeMsg
from src.common.logger import log_info, setup_logging
from src.core.location.exceptions import DriverNotFoundError, ReportValidationError
from src.core.location.publisher import EventPublisher, EventTransport
from src.services.driver_location.service import DriverLocationService
from src.shared.models.common import ErrorResponse, HealthStatus
from src.shared.models.driver_location import (
    DriverState,
    IngestResult,
    LocationReport,
    LocationUpdateRecord,
    NearbyDriver,
)

SERVICE_NAME = "driver_location"
API_PREFIX = "/api/v1/driver-location"


# === MODELS ===

class ReportAccepted(BaseModel):
    """Ответ на отчёт водителя."""
    status: IngestStatus
    driver_id: str
    degraded: bool = False


class BatchReportRequest(BaseModel):
    """Пакет отчётов (каждый валидируется отдельно)."""
    reports: list[dict[str, Any]]


class BatchReportResponse(BaseModel):
    """Итог пакетной обработки."""
    accepted: int
    stale: int
    rejected: int
    results: list[IngestResult]


class GeoRecordView(BaseModel):
    """Геозапись во внешнем представлении (координаты строками)."""
    id: str
    ip_address: str | None = None
    country: str
    city: str
    latitude: str
    longitude: str


class DriverLocationResponse(BaseModel):
    """Состояние водителя."""
    driver_id: str
    available: bool
    vehicle_id: str | None = None
    last_updated_at: datetime
    last_known_location: GeoRecordView | None = None


class DriverSnapshotResponse(DriverLocationResponse):
    """Снимок состояния с признаками качества локации."""
    location_stale: bool
    location_source: str | None = None
    created_at: datetime


class AvailabilityUpdate(BaseModel):
    """Смена доступности водителя."""
    available: bool
    at: datetime | None = None


class DriverUpdateRequest(BaseModel):
    """Обновление известного водителя (поля отчёта без driver_id)."""
    available: bool
    vehicle_id: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    accuracy_m: float | None = None
    low_confidence: bool = False
    source_ip_address: str | None = None
    reported_at: datetime | None = None


class RebuildResponse(BaseModel):
    """Результат перестроения индекса."""
    entries: int


def _location_payload(state: DriverState) -> dict[str, Any]:
    location = state.last_known_location
    return {
        "driver_id": state.driver_id,
        "available": state.available,
        "vehicle_id": state.assigned_vehicle_id,
        "last_updated_at": state.last_updated_at,
        "last_known_location": location.to_view() if location else None,
    }


# === SERVICE SINGLETON ===

_service: DriverLocationService | None = None


def get_service() -> DriverLocationService:
    """Получить сервис."""
    if _service is None:
        raise RuntimeError("Service not initialized")
    return _service


async def _connect_transports() -> list[EventTransport]:
    """Подключает внешние каналы событий, включённые в конфиге."""
    from src.config import settings

    transports: list[EventTransport] = []
    if settings.rabbitmq.RABBITMQ_ENABLED:
        from src.infra.event_bus import get_event_bus, init_event_bus
        await init_event_bus()
        transports.append(get_event_bus())
    if settings.redis.REDIS_ENABLED:
        from src.infra.redis_client import RedisChannelTransport, init_redis
        await init_redis()
        transports.append(RedisChannelTransport())
    return transports


async def _close_transports() -> None:
    from src.config import settings

    if settings.rabbitmq.RABBITMQ_ENABLED:
        from src.infra.event_bus import close_event_bus
        await close_event_bus()
    if settings.redis.REDIS_ENABLED:
        from src.infra.redis_client import close_redis
        await close_redis()


# === LIFESPAN ===

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Жизненный цикл приложения."""
    global _service

    setup_logging()
    transports = await _connect_transports()

    _service = DriverLocationService(publisher=EventPublisher(transports=transports))
    await _service.start()

    yield

    await _service.stop()
    _service = None
    await _close_transports()


# === APP ===

app = FastAPI(
    title="Driver Location Service",
    description="Геолокация и доступность водителей для диспетчеризации.",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)


# === ERROR HANDLERS ===

@app.exception_handler(ReportValidationError)
async def report_validation_handler(request: Request, exc: ReportValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ErrorResponse(error_code="invalid_report", message=exc.reason).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ErrorResponse(
            error_code="validation_error",
            message="Некорректный запрос",
            details={"errors": [
                {"loc": [str(p) for p in err.get("loc", ())], "msg": err.get("msg", "")}
                for err in exc.errors()
            ]},
        ).model_dump(),
    )


@app.exception_handler(DriverNotFoundError)
async def driver_not_found_handler(request: Request, exc: DriverNotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content=ErrorResponse(error_code="driver_not_found", message=str(exc)).model_dump(),
    )


# === HEALTH CHECK ===

@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check() -> HealthStatus:
    """Проверка здоровья сервиса."""
    from src.config import settings

    dependencies: dict[str, str] = {}
    if settings.rabbitmq.RABBITMQ_ENABLED:
        from src.infra.event_bus import get_event_bus
        dependencies["rabbitmq"] = "healthy" if await get_event_bus().health_check() else "unhealthy"
    if settings.redis.REDIS_ENABLED:
        from src.infra.redis_client import get_redis
        dependencies["redis"] = "healthy" if await get_redis().health_check() else "unhealthy"

    overall = "healthy" if all(v == "healthy" for v in dependencies.values()) else "degraded"
    uptime = _service.uptime_seconds() if _service is not None else None

    return HealthStatus(
        service=SERVICE_NAME,
        status=overall,
        version=settings.system.VERSION,
        uptime_seconds=uptime,
        dependencies=dependencies,
    )


# === STATS ===

@app.get("/stats", tags=["Stats"])
async def get_stats() -> dict[str, Any]:
    """Получить статистику сервиса."""
    return get_service().stats()


# === REPORTS ===

@app.post(
    f"{API_PREFIX}/reports",
    response_model=ReportAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    responses={422: {"model": ErrorResponse}},
    tags=["Reports"],
    summary="Отчёт о геолокации",
)
async def submit_report(report: LocationReport) -> ReportAccepted:
    """
    Принять отчёт водителя.

    Устаревший отчёт принимается без изменений состояния (status=stale).
    """
    result = await get_service().ingest(report)
    if result.status == IngestStatus.REJECTED:
        raise ReportValidationError(result.reason or "Отчёт отклонён")
    return ReportAccepted(status=result.status, driver_id=result.driver_id, degraded=result.degraded)


@app.post(
    f"{API_PREFIX}/reports/batch",
    response_model=BatchReportResponse,
    responses={422: {"model": ErrorResponse}},
    tags=["Reports"],
    summary="Пакет отчётов",
)
async def submit_reports_batch(batch: BatchReportRequest) -> BatchReportResponse:
    """Принять пакет отчётов; отклонённые отчёты не прерывают обработку."""
    results = await get_service().ingest_batch(batch.reports)
    return BatchReportResponse(
        accepted=sum(1 for r in results if r.status == IngestStatus.ACCEPTED),
        stale=sum(1 for r in results if r.status == IngestStatus.STALE),
        rejected=sum(1 for r in results if r.status == IngestStatus.REJECTED),
        results=results,
    )


# === DISPATCH ===

@app.get(
    f"{API_PREFIX}/nearest",
    response_model=list[NearbyDriver],
    tags=["Dispatch"],
    summary="Ближайшие доступные водители",
)
async def get_nearest_drivers(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    k: int = Query(default=10, ge=1),
    max_radius_km: float | None = Query(default=None, ge=0),
) -> list[NearbyDriver]:
    """Найти ближайших доступных водителей, упорядоченных по расстоянию."""
    return await get_service().nearest_available(lat, lon, k=k, max_radius_km=max_radius_km)


@app.post(
    f"{API_PREFIX}/index/rebuild",
    response_model=RebuildResponse,
    tags=["Dispatch"],
    summary="Перестроить индекс",
)
async def rebuild_index() -> RebuildResponse:
    """Перестроить индекс доступных водителей из хранилища."""
    entries = await get_service().rebuild_index()
    return RebuildResponse(entries=entries)


# === DRIVERS ===

@app.get(
    f"{API_PREFIX}/details/{{driver_id}}",
    response_model=DriverLocationResponse,
    responses={404: {"model": ErrorResponse}},
    tags=["Drivers"],
    summary="Состояние известного водителя",
)
async def get_driver_details(driver_id: str) -> DriverLocationResponse:
    """Получить состояние водителя без создания записи."""
    state = get_service().get_state(driver_id)
    return DriverLocationResponse(**_location_payload(state))


@app.put(
    f"{API_PREFIX}/{{driver_id}}",
    response_model=DriverLocationResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    tags=["Drivers"],
    summary="Обновить водителя",
)
async def update_driver(driver_id: str, update: DriverUpdateRequest) -> DriverLocationResponse:
    """
    Обновить известного водителя.

    Обновление проходит как обычный отчёт; устаревшее обновление
    возвращает текущее состояние.
    """
    result, state = await get_service().update_driver(driver_id, update.model_dump(exclude_none=True))
    if result.status == IngestStatus.REJECTED:
        raise ReportValidationError(result.reason or "Обновление отклонено")
    return DriverLocationResponse(**_location_payload(state))


@app.get(
    f"{API_PREFIX}/{{driver_id}}",
    response_model=DriverLocationResponse,
    tags=["Drivers"],
    summary="Состояние водителя",
)
async def get_driver_location(driver_id: str) -> DriverLocationResponse:
    """Получить состояние водителя; неизвестный водитель создаётся недоступным."""
    state = await get_service().ensure_driver(driver_id)
    return DriverLocationResponse(**_location_payload(state))


@app.get(
    f"{API_PREFIX}/{{driver_id}}/snapshot",
    response_model=DriverSnapshotResponse,
    responses={404: {"model": ErrorResponse}},
    tags=["Drivers"],
    summary="Снимок состояния водителя",
)
async def get_driver_snapshot(driver_id: str) -> DriverSnapshotResponse:
    """Получить снимок состояния водителя."""
    state = get_service().get_state(driver_id)
    return DriverSnapshotResponse(
        **_location_payload(state),
        location_stale=state.location_stale,
        location_source=state.location_source.value if state.location_source else None,
        created_at=state.created_at,
    )


@app.get(
    f"{API_PREFIX}/{{driver_id}}/history",
    response_model=list[LocationUpdateRecord],
    responses={404: {"model": ErrorResponse}},
    tags=["Drivers"],
    summary="Последние обновления водителя",
)
async def get_driver_history(
    driver_id: str,
    limit: int | None = Query(default=None, ge=1),
) -> list[LocationUpdateRecord]:
    """Последние обновления водителя, новые первыми."""
    return get_service().recent_updates(driver_id, limit)


@app.patch(
    f"{API_PREFIX}/{{driver_id}}/availability",
    response_model=DriverLocationResponse,
    responses={422: {"model": ErrorResponse}},
    tags=["Drivers"],
    summary="Сменить доступность",
)
async def update_availability(driver_id: str, update: AvailabilityUpdate) -> DriverLocationResponse:
    """Изменить только доступность водителя."""
    state = await get_service().set_availability(driver_id, update.available, update.at)
    return DriverLocationResponse(**_location_payload(state))


@app.delete(
    f"{API_PREFIX}/{{driver_id}}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Drivers"],
    summary="Удалить водителя",
)
async def remove_driver(driver_id: str) -> Response:
    """
    Удалить водителя.

    Вызывается только при деактивации аккаунта.
    """
    removed = await get_service().remove_driver(driver_id)
    if not removed:
        await log_info(f"Удаление неизвестного водителя {driver_id}", type_msg=TypeMsg.DEBUG)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# === STARTUP ===

if __name__ == "__main__":
    import uvicorn
    from src.config import settings
    uvicorn.run(
        app,
        host=settings.deployment.DRIVER_LOCATION_SERVICE_HOST,
        port=settings.deployment.DRIVER_LOCATION_SERVICE_PORT,
    )
