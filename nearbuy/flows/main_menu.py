# nearbuy/flows/main_menu.py
"""
Main menu: the idle state every session falls back to.

The menu has no steps of its own; a session on the main menu has
``current_step = None``.  Any message here is read as a menu selection
(list/button id, a number, or a keyword) and handed to
``FlowRouter.handle_menu_selection``; anything unrecognised re-shows the menu.
"""

from __future__ import annotations

import logging

from nearbuy.domain.flow_types import FlowType
from nearbuy.domain.incoming_message import IncomingMessage
from nearbuy.domain.models import UserRecord
from nearbuy.domain.services.contracts import FlowServices
from nearbuy.domain.services.keyword_matcher import match_keyword, normalize
from nearbuy.domain.services.pii_masking import mask_phone
from nearbuy.flows.base import CANCEL_TOKENS, HELP_TEXT, HELP_TOKENS, MENU_TOKENS
from nearbuy.flows.context import FlowContext

logger = logging.getLogger("nearbuy.flows.main_menu")

NUMBER_OPTIONS = {
    "1": "browse_offers",
    "2": "search_product",
    "3": "create_agreement",
    "4": "my_agreements",
    "5": "settings",
}

# Scanned in order: more specific phrases first
QUICK_ACTIONS = {
    "pending_agreements": ("pending", "confirm agreement"),
    "my_agreements": ("my agreements", "my agreement"),
    "create_agreement": ("agreement", "agree", "iou"),
    "my_requests": ("my requests", "responses"),
    "product_requests": ("customer requests",),
    "my_offers": ("my offers",),
    "upload_offer": ("upload", "post offer"),
    "browse_offers": ("offers", "offer", "browse", "deals"),
    "search_product": ("search", "find", "product"),
    "fish_post_catch": ("post catch", "catch"),
    "fish_browse": ("fish", "meen"),
    "become_worker": ("worker", "job", "earn"),
    "register": ("register", "signup", "sign up", "join"),
    "settings": ("settings", "profile"),
    "about": ("about",),
}

UNREGISTERED_ROWS = [
    {"id": "register", "title": "📝 Register", "description": "Join NearBuy in a minute"},
    {"id": "become_worker", "title": "👷 Become a Worker", "description": "Earn by doing jobs nearby"},
    {"id": "pending_agreements", "title": "📋 Pending Agreements", "description": "Confirm agreements sent to you"},
    {"id": "about", "title": "ℹ️ About NearBuy", "description": "What can this bot do?"},
]

CUSTOMER_ROWS = [
    {"id": "browse_offers", "title": "🛍️ Shop Offers", "description": "Browse nearby deals"},
    {"id": "fish_browse", "title": "🐟 Fresh Fish", "description": "Today's catch near you"},
    {"id": "search_product", "title": "🔍 Find Product", "description": "Ask nearby shops"},
    {"id": "my_requests", "title": "📬 My Requests", "description": "Check responses from shops"},
    {"id": "create_agreement", "title": "📝 New Agreement", "description": "Record a loan or payment"},
    {"id": "my_agreements", "title": "📋 My Agreements", "description": "View your agreements"},
    {"id": "pending_agreements", "title": "⏳ Pending", "description": "Agreements waiting for you"},
    {"id": "become_worker", "title": "👷 Become a Worker", "description": "Earn by doing jobs nearby"},
    {"id": "settings", "title": "⚙️ Settings", "description": "Update your profile"},
]

SHOP_ROWS = [
    {"id": "upload_offer", "title": "📤 Upload Offer", "description": "Share a new deal"},
    {"id": "my_offers", "title": "🏷️ My Offers", "description": "Your active offers"},
    {"id": "product_requests", "title": "📬 Customer Requests", "description": "See what customers need"},
    {"id": "browse_offers", "title": "🛍️ Shop Offers", "description": "Browse nearby deals"},
    {"id": "fish_browse", "title": "🐟 Fresh Fish", "description": "Today's catch near you"},
    {"id": "create_agreement", "title": "📝 New Agreement", "description": "Record transactions"},
    {"id": "my_agreements", "title": "📋 My Agreements", "description": "View agreements"},
    {"id": "shop_profile", "title": "🏪 Shop Profile", "description": "Update shop details"},
    {"id": "settings", "title": "⚙️ Settings", "description": "Alerts, location, account"},
]

FISH_SELLER_ROWS = [
    {"id": "fish_post_catch", "title": "🎣 Post Catch", "description": "Add a fresh fish posting"},
    {"id": "browse_offers", "title": "🛍️ Shop Offers", "description": "Browse nearby deals"},
    {"id": "search_product", "title": "🔍 Find Product", "description": "Ask nearby shops"},
    {"id": "create_agreement", "title": "📝 New Agreement", "description": "Record transactions"},
    {"id": "my_agreements", "title": "📋 My Agreements", "description": "View agreements"},
    {"id": "settings", "title": "⚙️ Settings", "description": "Seller settings"},
]

ABOUT_TEXT = (
    "ℹ️ *About NearBuy*\n\n"
    "NearBuy is your local marketplace on WhatsApp!\n\n"
    "🛍️ *Browse Offers* - daily deals from shops near you\n"
    "🔍 *Search Products* - can't find something? Ask local shops\n"
    "🐟 *Fresh Fish* - fish sellers post today's catch\n"
    "👷 *Local Workers* - sign up to earn by running errands nearby\n"
    "📝 *Digital Agreements* - secure records of loans and payments\n\n"
    "No app download needed, everything works right here in WhatsApp!"
)


def menu_rows(user: UserRecord | None) -> list[dict]:
    if user is None:
        return UNREGISTERED_ROWS
    if user.is_shop_owner():
        return SHOP_ROWS
    if user.is_fish_seller():
        return FISH_SELLER_ROWS
    if user.is_worker():
        return [row for row in CUSTOMER_ROWS if row["id"] != "become_worker"]
    return CUSTOMER_ROWS


class MainMenuHandler:
    flow = FlowType.MAIN_MENU

    def __init__(self, store, services: FlowServices):
        self.store = store
        self.services = services
        self.router = None

    async def start(self, ctx: FlowContext) -> None:
        if not ctx.session.is_idle or ctx.session.current_step is not None or ctx.session.temp_data:
            await self.store.reset_to_main_menu(ctx.session)
        await self.prompt_current_step(ctx)

    def is_navigation(self, message: IncomingMessage) -> bool:
        return False

    async def handle(self, ctx: FlowContext, message: IncomingMessage) -> None:
        text = normalize(message.text_content())
        if text in MENU_TOKENS or text in CANCEL_TOKENS:
            await self.prompt_current_step(ctx)
            return
        if text in HELP_TOKENS:
            await ctx.send.send_text(ctx.phone, HELP_TEXT)
            await self.prompt_current_step(ctx)
            return

        selection = message.selection_id() or self.parse_text_option(text)
        if not selection:
            await self.handle_invalid_input(ctx, message)
            return
        await self.router.handle_menu_selection(ctx, selection)

    def parse_text_option(self, text: str) -> str | None:
        if not text:
            return None
        if text in NUMBER_OPTIONS:
            return NUMBER_OPTIONS[text]
        return match_keyword(text, QUICK_ACTIONS)

    async def handle_invalid_input(self, ctx: FlowContext, message: IncomingMessage, error: str | None = None) -> None:
        if ctx.user is not None:
            await ctx.send.send_text(ctx.phone, error or "Please select an option from the menu.")
        await self.prompt_current_step(ctx)

    async def prompt_current_step(self, ctx: FlowContext) -> None:
        user = ctx.user
        if user is None:
            body = (
                "👋 *Welcome to NearBuy!*\n\n"
                "Local offers, product search and digital agreements, all on WhatsApp."
            )
        else:
            body = f"👋 Hi {user.name}! What would you like to do today?"

        pending = await self.services.agreements.list_pending_for_phone(ctx.phone)
        if pending:
            body += f"\n\n⚠️ You have *{len(pending)}* pending agreement(s) to review."

        await ctx.send.send_list(
            ctx.phone,
            body,
            "📋 Menu",
            [{"title": "Options", "rows": menu_rows(user)}],
            header="🛒 NearBuy",
            footer="Type *menu* anytime to come back here",
        )
        logger.debug("Main menu shown to %s", mask_phone(ctx.phone))

    async def show_about(self, ctx: FlowContext) -> None:
        buttons = [{"id": "main_menu", "title": "🏠 Main Menu"}]
        if ctx.user is None:
            buttons.insert(0, {"id": "register", "title": "📝 Register Now"})
        await ctx.send.send_buttons(ctx.phone, ABOUT_TEXT, buttons)
