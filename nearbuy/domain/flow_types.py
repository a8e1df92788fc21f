# nearbuy/domain/flow_types.py
from enum import Enum


class FlowType(str, Enum):
    MAIN_MENU = "main_menu"
    REGISTRATION = "registration"
    SETTINGS = "settings"
    OFFERS_BROWSE = "offers_browse"
    OFFERS_UPLOAD = "offers_upload"
    PRODUCT_SEARCH = "product_search"
    PRODUCT_RESPOND = "product_respond"
    AGREEMENT_CREATE = "agreement_create"
    AGREEMENT_CONFIRM = "agreement_confirm"
    AGREEMENT_LIST = "agreement_list"
    FISH_POST_CATCH = "fish_post_catch"
    FISH_BROWSE = "fish_browse"
    OFFERS_MANAGE = "offers_manage"
    WORKER_REGISTRATION = "worker_registration"

    @classmethod
    def parse(cls, value):
        """Return the member for ``value`` or None for unknown/legacy tags."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def requires_auth(self) -> bool:
        return self not in _OPEN_FLOWS

    @property
    def is_shop_only(self) -> bool:
        return self in (FlowType.OFFERS_UPLOAD, FlowType.OFFERS_MANAGE, FlowType.PRODUCT_RESPOND)

    @property
    def is_fish_seller_only(self) -> bool:
        return self is FlowType.FISH_POST_CATCH


# Flows an unregistered phone may be in (counterparties confirm before registering)
_OPEN_FLOWS = {
    FlowType.MAIN_MENU,
    FlowType.REGISTRATION,
    FlowType.WORKER_REGISTRATION,
    FlowType.AGREEMENT_CONFIRM,
}

_LABELS = {
    FlowType.MAIN_MENU: "Main Menu",
    FlowType.REGISTRATION: "Registration",
    FlowType.SETTINGS: "Settings",
    FlowType.OFFERS_BROWSE: "Browse Offers",
    FlowType.OFFERS_UPLOAD: "Upload Offer",
    FlowType.PRODUCT_SEARCH: "Product Search",
    FlowType.PRODUCT_RESPOND: "Respond to Request",
    FlowType.AGREEMENT_CREATE: "Create Agreement",
    FlowType.AGREEMENT_CONFIRM: "Confirm Agreement",
    FlowType.AGREEMENT_LIST: "My Agreements",
    FlowType.FISH_POST_CATCH: "Post Fish Catch",
    FlowType.FISH_BROWSE: "Fresh Fish",
    FlowType.OFFERS_MANAGE: "My Offers",
    FlowType.WORKER_REGISTRATION: "Worker Registration",
}
