"""
Health check endpoints for monitoring and container orchestration.

``/health`` reports each dependency separately. The pipeline component is "unconfigured" until
an admin creates the first active stage: the API is up, but leads cannot be created yet.
"""
import time

import redis.asyncio as redis
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.errors import build_error_payload
from app.core.config import settings
from app.core.database import get_db
from app.core.logging import get_logger
from app.repositories.stage_repo import StageRepository

logger = get_logger(__name__)

router = APIRouter(tags=["health"])


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


async def _check_database(session: AsyncSession) -> dict:
    start = time.perf_counter()
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("health_check_db_error", error=str(e))
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(start)}
    return {"status": "healthy", "latency_ms": _elapsed_ms(start)}


async def _check_redis() -> dict:
    # Redis only backs idempotency keys, so an outage degrades the service but does not fail it
    start = time.perf_counter()
    client = redis.from_url(settings.REDIS_URL)
    try:
        await client.ping()
    except (redis.RedisError, OSError) as e:
        logger.warning("health_check_redis_error", error=str(e))
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(start), "detail": str(e)}
    finally:
        await client.aclose()
    return {"status": "healthy", "latency_ms": _elapsed_ms(start)}


async def _check_pipeline(session: AsyncSession) -> dict:
    try:
        stages = await StageRepository(session).get_all()
    except SQLAlchemyError as e:
        logger.error("health_check_pipeline_error", error=str(e))
        return {"status": "unhealthy", "active_stages": None}
    return {"status": "healthy" if stages else "unconfigured", "active_stages": len(stages)}


@router.get("/health")
async def health_check(session: AsyncSession = Depends(get_db)):
    start = time.perf_counter()
    components = {
        "database": await _check_database(session),
        "redis": await _check_redis(),
    }
    if components["database"]["status"] == "healthy":
        components["pipeline"] = await _check_pipeline(session)

    is_healthy = all(c["status"] == "healthy" for c in components.values())
    return {
        "status": "healthy" if is_healthy else "degraded",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "components": components,
        "total_latency_ms": _elapsed_ms(start),
    }


@router.get("/health/ready")
async def readiness_check(session: AsyncSession = Depends(get_db)):
    """Ready once the database answers. An empty pipeline is reported but does not fail readiness."""
    database = await _check_database(session)
    if database["status"] != "healthy":
        return JSONResponse(
            status_code=503,
            content={"detail": build_error_payload(code="readiness_failed", message="Database unavailable")},
        )
    pipeline = await _check_pipeline(session)
    return {"status": "ready", "database": "connected", "active_stages": pipeline["active_stages"]}


@router.get("/health/live")
async def liveness_check():
    return {"status": "alive"}
