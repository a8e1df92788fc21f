# nearbuy/flows/__init__.py
"""
Conversation flows.

Each module defines one handler class for one ``FlowType``.  The webhook
never talks to a handler directly: ``build_router`` registers every handler
on a ``FlowRouter``, which resolves the session's flow and dispatches.
"""

from __future__ import annotations

from nearbuy.domain.services.contracts import FlowServices, MessageSender
from nearbuy.flows.agreement_confirm import AgreementConfirmHandler
from nearbuy.flows.agreement_create import AgreementCreateHandler
from nearbuy.flows.agreement_list import AgreementListHandler
from nearbuy.flows.fish_browse import FishBrowseHandler
from nearbuy.flows.fish_catch_post import FishCatchPostHandler
from nearbuy.flows.main_menu import MainMenuHandler
from nearbuy.flows.offer_browse import OfferBrowseHandler
from nearbuy.flows.offer_manage import OfferManageHandler
from nearbuy.flows.offer_upload import OfferUploadHandler
from nearbuy.flows.product_response import ProductResponseHandler
from nearbuy.flows.product_search import ProductSearchHandler
from nearbuy.flows.registration import RegistrationHandler
from nearbuy.flows.router import FlowRouter
from nearbuy.flows.settings import SettingsHandler
from nearbuy.flows.worker_registration import WorkerRegistrationHandler

# One handler per FlowType
HANDLER_CLASSES = [
    MainMenuHandler,
    RegistrationHandler,
    SettingsHandler,
    OfferBrowseHandler,
    OfferUploadHandler,
    OfferManageHandler,
    ProductSearchHandler,
    ProductResponseHandler,
    AgreementCreateHandler,
    AgreementConfirmHandler,
    AgreementListHandler,
    FishCatchPostHandler,
    FishBrowseHandler,
    WorkerRegistrationHandler,
]


def build_router(store, services: FlowServices, sender: MessageSender) -> FlowRouter:
    router = FlowRouter(store, services, sender)
    for handler_cls in HANDLER_CLASSES:
        router.register(handler_cls(store, services))
    return router


__all__ = [
    "HANDLER_CLASSES",
    "FlowRouter",
    "build_router",
]
