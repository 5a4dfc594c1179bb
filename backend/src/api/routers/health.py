"""Health check endpoints."""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text

from api.dependencies import get_runtime
from core.redis import get_redis_client
from services.change_feed import RedisChangeFeed
from services.runtime import Runtime


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str
    redis: str
    change_feed: str


async def check_redis_health() -> str:
    """Check Redis connectivity. Returns 'connected' or 'unavailable'."""
    redis_client = get_redis_client()
    if redis_client is None:
        return "unavailable"
    try:
        if await redis_client.ping():
            return "connected"
        return "unavailable"
    except Exception:
        return "unavailable"


async def check_database_health(runtime: Runtime) -> str:
    """Run a trivial query against the Data Store engine."""
    if runtime.engine is None:
        return "unknown"
    try:
        async with runtime.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Database health check failed")
        return "unhealthy"
    return "healthy"


@router.get("/health", response_model=HealthResponse)
async def health_check(
    runtime: Runtime = Depends(get_runtime),
) -> HealthResponse:
    """
    Check application and database health.

    Note: App returns 'healthy' even if Redis is unavailable (degraded mode).
    Without Redis the Change Feed is in-process, so live updates only reach
    sessions served by this process.
    """
    db_status = await check_database_health(runtime)
    redis_status = await check_redis_health()

    return HealthResponse(
        status="degraded" if db_status == "unhealthy" else "healthy",
        database=db_status,
        redis=redis_status,
        change_feed="redis" if isinstance(runtime.feed, RedisChangeFeed) else "local",
    )
