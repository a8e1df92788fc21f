# nearbuy/infrastructure/queue/inbound_jobs.py

from loguru import logger

from nearbuy.domain.incoming_message import IncomingMessage
from nearbuy.domain.services.pii_masking import mask_phone


async def process_inbound_job(ctx: dict, raw_message: dict, contact_name: str | None = None) -> None:
    """
    Arq job: run one inbound WhatsApp message through the flow router.
    This is executed by the Arq worker, NOT by FastAPI directly.

    ``ctx["flow_router"]`` is set in ``WorkerSettings.on_startup``.
    """
    message = IncomingMessage.from_webhook(raw_message, contact_name)
    if not message.phone:
        logger.warning("Arq job process_inbound_job: message without sender dropped")
        return

    logger.info(
        "Arq job process_inbound_job: from={} kind={} try={}",
        mask_phone(message.phone),
        message.kind.value,
        ctx.get("job_try", 1),
    )
    # FlowRouter.process never raises; failures are answered inside it
    await ctx["flow_router"].process(message)
