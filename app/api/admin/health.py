"""Health check endpoints."""

import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import text

from app.api.deps import DbSession, RedisClient
from app.config import get_settings

router = APIRouter()


class HealthResponse(BaseModel):
    """Liveness response."""

    status: str
    timestamp: str


class ServiceHealth(BaseModel):
    """Status of one backing service."""

    status: str
    latency_ms: float | None = None
    error: str | None = None


class DetailedHealthResponse(BaseModel):
    """Readiness response with per-service status."""

    status: str
    timestamp: str
    services: dict[str, ServiceHealth]
    openai_configured: bool


async def _probe(check: Callable[[], Awaitable[Any]]) -> ServiceHealth:
    """Run one check and time it."""
    start = time.perf_counter()
    try:
        await check()
    except Exception as e:
        return ServiceHealth(status="unhealthy", error=str(e))
    return ServiceHealth(status="healthy", latency_ms=round((time.perf_counter() - start) * 1000, 2))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Liveness probe; touches no backing service."""
    return HealthResponse(status="healthy", timestamp=_now())


@router.get("/health/detailed", response_model=DetailedHealthResponse)
async def detailed_health_check(
    db: DbSession,
    redis_client: RedisClient,
) -> DetailedHealthResponse:
    """Readiness probe: PostgreSQL and Redis round trips."""
    services = {
        "database": await _probe(lambda: db.execute(text("SELECT 1"))),
        "redis": await _probe(redis_client.ping),
    }
    degraded = any(s.status != "healthy" for s in services.values())

    return DetailedHealthResponse(
        status="degraded" if degraded else "healthy",
        timestamp=_now(),
        services=services,
        openai_configured=bool(get_settings().openai_api_key),
    )
