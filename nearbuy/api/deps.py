# nearbuy/api/deps.py
"""
Shared wiring for the webhook routes and the arq worker.

Both entry points need the same ``FlowRouter``: Redis-backed sessions, the
SQL services and the WhatsApp Cloud API sender.  It is built once per
process on first use.
"""

from loguru import logger

from nearbuy.core.db import AsyncSessionLocal
from nearbuy.flows import FlowRouter, build_router
from nearbuy.infrastructure.cache.redis_client import get_redis_client
from nearbuy.infrastructure.cache.session_store import SessionStore
from nearbuy.infrastructure.db.services import build_sql_services
from nearbuy.infrastructure.external.whatsapp_client import WhatsAppClient
from nearbuy.infrastructure.external.whatsapp_media import LocalMediaStore

_flow_router: FlowRouter | None = None


def get_flow_router() -> FlowRouter:
    global _flow_router
    if _flow_router is None:
        store = SessionStore(get_redis_client())
        services = build_sql_services(AsyncSessionLocal, LocalMediaStore())
        _flow_router = build_router(store, services, WhatsAppClient())
        logger.info("Flow router ready")
    return _flow_router
