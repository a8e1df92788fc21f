from pathlib import Path

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from loguru import logger

from nearbuy.api.deps import get_flow_router
from nearbuy.api.routes import health, whatsapp
from nearbuy.core.config import settings
from nearbuy.core.db import AsyncSessionLocal, engine
from nearbuy.core.logging_config import setup_logging
from nearbuy.infrastructure.cache.redis_client import close_redis_client
from nearbuy.infrastructure.db.base import Base
from nearbuy.infrastructure.db.services import SqlFishService
from nearbuy.infrastructure.queue.whatsapp_queue import close_redis_pool

setup_logging(settings.LOG_LEVEL)

app = FastAPI(title=settings.APP_NAME)

media_root = Path(settings.MEDIA_ROOT)
media_root.mkdir(parents=True, exist_ok=True)
app.mount("/media", StaticFiles(directory=media_root), name="media")


@app.on_event("startup")
async def startup():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await SqlFishService(AsyncSessionLocal).seed_fish_types()
    get_flow_router()
    logger.info("{} started ({})", settings.APP_NAME, settings.ENVIRONMENT)


@app.on_event("shutdown")
async def shutdown():
    await close_redis_pool()
    await close_redis_client()
    await engine.dispose()


app.include_router(health.router)
app.include_router(whatsapp.router)
