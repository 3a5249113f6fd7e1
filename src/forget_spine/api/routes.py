"""
HTTP endpoints: ``/incr``, ``/get``, ``/dist`` and ``/health``.

Routers only parse query parameters and serialise results; every decision
lives in :class:`~forget_spine.service.DistributionService`.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from forget_spine.api.schemas import DistributionResult, FieldResult, HealthResult
from forget_spine.core.errors import StoreUnavailableError
from forget_spine.service import DistributionService

router = APIRouter()


def get_service(request: Request) -> DistributionService:
    return request.app.state.service


Service = Annotated[DistributionService, Depends(get_service)]


@router.get("/incr", response_class=PlainTextResponse)
async def increment(
    service: Service,
    distribution: str | None = Query(None, description="Distribution name"),
    field: str | None = Query(None, description="Label to increment"),
    N: int = Query(1, description="Amount to add"),  # noqa: N803
) -> PlainTextResponse:
    """Atomically add ``N`` to ``field``; answers ``OK`` or ``FAIL``."""
    ok = await service.increment(distribution, field, N)
    return PlainTextResponse("OK" if ok else "FAIL")


@router.get("/get", response_model=FieldResult)
async def get_field(
    service: Service,
    distribution: str | None = Query(None, description="Distribution name"),
    field: str | None = Query(None, description="Label to look up"),
    rate: float | None = Query(None, description="Decay rate override for this query"),
) -> FieldResult:
    """Decayed count and probability of one field."""
    snapshot = await service.query_field(distribution, field, rate)
    return FieldResult.from_snapshot(snapshot)


@router.get("/dist", response_model=DistributionResult)
async def get_distribution(
    service: Service,
    distribution: str | None = Query(None, description="Distribution name"),
    rate: float | None = Query(None, description="Decay rate override for this query"),
) -> DistributionResult:
    """Full decayed snapshot of a distribution."""
    dist = await service.query_distribution(distribution, rate)
    return DistributionResult.from_distribution(dist)


@router.get("/health", response_model=HealthResult)
async def health(service: Service) -> JSONResponse:
    """Store reachability plus update-pipeline counters."""
    result = HealthResult(
        status="healthy",
        store="ok",
        pipeline=service.pipeline.stats().to_dict(),
    )
    try:
        await service.store.ping()
    except StoreUnavailableError as exc:
        result.status = "unhealthy"
        result.store = "unavailable"
        result.error = exc.message
    status_code = 200 if result.status == "healthy" else 503
    return JSONResponse(status_code=status_code, content=result.model_dump(exclude_none=True))
