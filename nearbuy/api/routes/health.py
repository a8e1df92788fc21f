from fastapi import APIRouter
from loguru import logger
from redis.exceptions import RedisError

from nearbuy.core.config import settings
from nearbuy.infrastructure.cache.redis_client import get_redis_client

router = APIRouter()


@router.get("/")
async def health():
    return {"status": "ok", "message": f"{settings.APP_NAME} bot running"}


@router.get("/health/redis")
async def redis_health():
    try:
        await get_redis_client().ping()
    except RedisError as e:
        logger.warning("Redis health check failed: {}", e)
        return {"status": "degraded", "redis": "unreachable"}
    return {"status": "ok", "redis": "ok"}
