"""
Health Endpoints

`/health` reports dependencies for humans and dashboards; `/health/live` and
`/health/ready` are the orchestrator probes.
"""

from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from redis.exceptions import RedisError

from nutritionist.config import Settings, get_settings
from nutritionist.database.connection import check_database_health
from nutritionist.serving.cache import get_redis
from nutritionist.timeutils import utcnow

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    version: str
    environment: str
    timestamp: datetime
    checks: Dict[str, Any]


async def _redis_check() -> Dict[str, Any]:
    client = get_redis()
    if client is None:
        return {"status": "disabled"}
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        return {"status": "unhealthy", "error": str(e)}
    return {"status": "healthy"}


@router.get("/health", response_model=HealthResponse)
async def health_check(settings: Settings = Depends(get_settings)) -> HealthResponse:
    """
    Database down makes the service unhealthy; Redis down only degrades it,
    since every cache call falls back to a miss.
    """
    checks = {"database": await check_database_health(), "redis": await _redis_check()}

    if checks["database"]["status"] != "healthy":
        overall = "unhealthy"
    elif checks["redis"]["status"] == "unhealthy":
        overall = "degraded"
    else:
        overall = "healthy"

    return HealthResponse(
        status=overall,
        version=settings.version,
        environment=settings.app_env,
        timestamp=utcnow(),
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> Dict[str, str]:
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(response: Response) -> Dict[str, str]:
    """503 until the database answers."""
    if (await check_database_health())["status"] != "healthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not_ready", "reason": "database_unavailable"}
    return {"status": "ready"}
