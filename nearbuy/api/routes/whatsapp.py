from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse
from loguru import logger

from nearbuy.api.deps import get_flow_router
from nearbuy.core.config import settings
from nearbuy.domain.incoming_message import iter_webhook_messages
from nearbuy.flows import FlowRouter
from nearbuy.infrastructure.queue.whatsapp_queue import enqueue_inbound_message

router = APIRouter()


@router.get("/webhook", response_class=PlainTextResponse)
async def verify(
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
    hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
):
    if (
        hub_mode == "subscribe"
        and settings.WHATSAPP_VERIFY_TOKEN
        and hub_verify_token == settings.WHATSAPP_VERIFY_TOKEN
    ):
        return PlainTextResponse(hub_challenge or "")
    logger.warning("Webhook verification failed (mode={})", hub_mode)
    return PlainTextResponse("Verification failed", status_code=403)


@router.post("/webhook")
async def webhook(request: Request, flow_router: FlowRouter = Depends(get_flow_router)):
    # Meta retries anything that is not a 200, so malformed bodies are acknowledged too
    try:
        body = await request.json()
    except ValueError:
        logger.warning("Webhook body is not JSON")
        return {"status": "ignored"}

    queued = settings.INBOUND_MODE == "queue"
    for message in iter_webhook_messages(body):
        if queued and await enqueue_inbound_message(message):
            continue
        await flow_router.process(message)

    return {"status": "ok"}
