# nearbuy/infrastructure/queue/whatsapp_queue.py

from arq.connections import ArqRedis, RedisSettings, create_pool
from loguru import logger

from nearbuy.core.config import settings
from nearbuy.domain.incoming_message import IncomingMessage
from nearbuy.domain.services.pii_masking import mask_phone

_redis_pool: ArqRedis | None = None


async def get_redis_pool() -> ArqRedis:
    """
    Creates (once) and returns an Arq Redis pool.
    """
    global _redis_pool
    if _redis_pool is None:
        logger.info("Creating ARQ Redis pool")
        _redis_pool = await create_pool(RedisSettings.from_dsn(settings.REDIS_URL))
        logger.success("ARQ Redis pool ready")

    return _redis_pool


async def close_redis_pool() -> None:
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.aclose()
        _redis_pool = None


async def enqueue_inbound_message(message: IncomingMessage, pool: ArqRedis | None = None) -> bool:
    """
    Hand one inbound message to the worker.

    The WhatsApp message id doubles as the arq job id, so a webhook
    redelivery that arrives while the first job is still queued is dropped
    by arq itself.  Returns False when the job could not be enqueued.
    """
    redis = pool or await get_redis_pool()
    try:
        job = await redis.enqueue_job(
            "process_inbound_job",  # ← job name in WorkerSettings.functions
            message.raw,
            message.contact_name,
            _job_id=message.message_id,
        )
    except Exception as e:
        logger.exception("ARQ enqueue failed for {}: {}", mask_phone(message.phone), e)
        return False

    if job is None:
        logger.info("ARQ → message {} already queued, skipped", message.message_id)
    else:
        logger.info("ARQ → Enqueued inbound message from {}", mask_phone(message.phone))
    return True
