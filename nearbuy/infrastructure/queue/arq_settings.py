# nearbuy/infrastructure/queue/arq_settings.py

from arq.connections import RedisSettings
from loguru import logger

from nearbuy.core.config import settings
from nearbuy.core.logging_config import setup_logging
from nearbuy.infrastructure.cache.redis_client import close_redis_client
from nearbuy.infrastructure.queue.inbound_jobs import process_inbound_job


class WorkerSettings:
    """
    Used by:
        arq nearbuy.infrastructure.queue.arq_settings.WorkerSettings
    """

    # Redis connection
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)

    # Jobs this worker can execute
    functions = [process_inbound_job]

    # Per-phone ordering is enforced by the session lock, not by arq
    max_jobs = 50
    job_timeout = 120
    keep_result = 60

    @staticmethod
    async def on_startup(ctx):
        """
        Called once when the worker starts.
        `ctx` is a dict-like object you can use to store shared resources.
        """
        from nearbuy.api.deps import get_flow_router

        setup_logging(settings.LOG_LEVEL)
        ctx["flow_router"] = get_flow_router()
        logger.info("ARQ worker starting up")

    @staticmethod
    async def on_shutdown(ctx):
        """
        Called once when the worker is shutting down.
        """
        await close_redis_client()
        logger.info("ARQ worker shutting down")
