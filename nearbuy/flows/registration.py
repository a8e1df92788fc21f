# nearbuy/flows/registration.py
"""
New-user registration.

    ask_name → ask_location → ask_type
        customer     → create, complete
        fish seller  → ask_market_name → create, complete
        shop         → ask_shop_name → ask_shop_category → ask_shop_location
                       → ask_notification_pref → review → create, complete

Customers and fish sellers are created as soon as the last answer arrives;
only the longer shop branch gets a review step.
"""

from __future__ import annotations

import logging
from enum import Enum

from nearbuy.domain.catalog import (
    NOTIFICATION_KEYWORDS,
    SHOP_CATEGORY_KEYWORDS,
    category_rows,
    category_title,
    frequency_rows,
    frequency_title,
)
from nearbuy.domain.flow_types import FlowType
from nearbuy.domain.incoming_message import IncomingMessage
from nearbuy.domain.models import ServiceResult, UserRecord, UserType
from nearbuy.domain.services.pii_masking import mask_phone
from nearbuy.domain.services.validators import validate_name
from nearbuy.flows.base import BACK_BUTTON, MENU_BUTTON, BaseFlowHandler, review_buttons
from nearbuy.flows.context import FlowContext

logger = logging.getLogger("nearbuy.flows.registration")


class RegistrationStep(str, Enum):
    ASK_NAME = "ask_name"
    ASK_LOCATION = "ask_location"
    ASK_TYPE = "ask_type"
    ASK_MARKET_NAME = "ask_market_name"
    ASK_SHOP_NAME = "ask_shop_name"
    ASK_SHOP_CATEGORY = "ask_shop_category"
    ASK_SHOP_LOCATION = "ask_shop_location"
    ASK_NOTIFICATION_PREF = "ask_notification_pref"
    REVIEW = "review"
    COMPLETE = "complete"


# "fish seller" contains "seller": fish is scanned before shop
USER_TYPES = {
    UserType.CUSTOMER.value: ("customer", "c", "buy", "shopping", "user", "1"),
    UserType.FISH_SELLER.value: ("fish", "fisherman", "meen", "3"),
    UserType.SHOP.value: ("shop", "s", "owner", "business", "store", "seller", "kada", "kadakar", "2"),
}

SHOP_LOCATION_TEXT = {
    "same_location": ("same", "yes", "1"),
    "different_location": ("different", "other", "new", "no", "2"),
}

COMPLETE_TEXT = {
    "browse_offers": ("offers", "browse"),
    "search_product": ("search", "find"),
    "upload_offer": ("upload",),
    "fish_post_catch": ("fish", "catch", "post"),
}

MARKET_NAME_MIN = 2
MARKET_NAME_MAX = 100


class RegistrationHandler(BaseFlowHandler):
    flow = FlowType.REGISTRATION
    Step = RegistrationStep
    first_step = RegistrationStep.ASK_NAME
    back_steps = {
        RegistrationStep.ASK_LOCATION: RegistrationStep.ASK_NAME,
        RegistrationStep.ASK_TYPE: RegistrationStep.ASK_LOCATION,
        RegistrationStep.ASK_MARKET_NAME: RegistrationStep.ASK_TYPE,
        RegistrationStep.ASK_SHOP_NAME: RegistrationStep.ASK_TYPE,
        RegistrationStep.ASK_SHOP_CATEGORY: RegistrationStep.ASK_SHOP_NAME,
        RegistrationStep.ASK_SHOP_LOCATION: RegistrationStep.ASK_SHOP_CATEGORY,
        RegistrationStep.ASK_NOTIFICATION_PREF: RegistrationStep.ASK_SHOP_LOCATION,
    }

    def step_handlers(self):
        return {
            RegistrationStep.ASK_NAME: self._on_name,
            RegistrationStep.ASK_LOCATION: self._on_location,
            RegistrationStep.ASK_TYPE: self._on_type,
            RegistrationStep.ASK_MARKET_NAME: self._on_market_name,
            RegistrationStep.ASK_SHOP_NAME: self._on_shop_name,
            RegistrationStep.ASK_SHOP_CATEGORY: self._on_shop_category,
            RegistrationStep.ASK_SHOP_LOCATION: self._on_shop_location,
            RegistrationStep.ASK_NOTIFICATION_PREF: self._on_notification_pref,
            RegistrationStep.REVIEW: self._on_review,
            RegistrationStep.COMPLETE: self._on_complete,
        }

    def step_prompts(self):
        return {
            RegistrationStep.ASK_NAME: self._ask_name,
            RegistrationStep.ASK_LOCATION: self._ask_location,
            RegistrationStep.ASK_TYPE: self._ask_type,
            RegistrationStep.ASK_MARKET_NAME: self._ask_market_name,
            RegistrationStep.ASK_SHOP_NAME: self._ask_shop_name,
            RegistrationStep.ASK_SHOP_CATEGORY: self._ask_shop_category,
            RegistrationStep.ASK_SHOP_LOCATION: self._ask_shop_location,
            RegistrationStep.ASK_NOTIFICATION_PREF: self._ask_notification_pref,
            RegistrationStep.REVIEW: self._show_review,
            RegistrationStep.COMPLETE: self._show_complete,
        }

    async def start(self, ctx: FlowContext) -> None:
        if ctx.user is not None:
            await ctx.send.send_text(ctx.phone, f"✅ You're already registered as *{ctx.user.name}*.")
            await self.exit_to_main_menu(ctx)
            return
        await self.begin(ctx)

    # ── Common steps ─────────────────────────────────────────

    async def _ask_name(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            "📝 *Welcome to NearBuy registration!*\n\nWhat is your name?",
            [MENU_BUTTON],
        )

    async def _on_name(self, ctx: FlowContext, message: IncomingMessage) -> None:
        name = validate_name(message.text_content())
        if name is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please enter a name between 2 and 100 characters.")
            return
        ctx.temp["name"] = name
        await self.go_to(ctx, RegistrationStep.ASK_LOCATION)

    async def _ask_location(self, ctx: FlowContext) -> None:
        await ctx.send.request_location(
            ctx.phone,
            f"📍 Thanks {ctx.temp.get('name', '')}! Please share your location so we can show you nearby shops and offers.",
        )

    async def _on_location(self, ctx: FlowContext, message: IncomingMessage) -> None:
        coords = message.coordinates()
        if coords is None:
            await self.handle_invalid_input(
                ctx, message, "📍 Please share your location using the 📎 attachment button → Location."
            )
            return
        ctx.temp["latitude"] = coords["lat"]
        ctx.temp["longitude"] = coords["lng"]
        await self.go_to(ctx, RegistrationStep.ASK_TYPE)

    async def _ask_type(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            "👤 How will you use NearBuy?",
            [
                {"id": "type_customer", "title": "🛍️ Customer"},
                {"id": "type_shop", "title": "🏪 Shop Owner"},
                {"id": "type_fish_seller", "title": "🐟 Fish Seller"},
            ],
        )

    async def _on_type(self, ctx: FlowContext, message: IncomingMessage) -> None:
        user_type = self.selection_or_text(message, USER_TYPES, id_prefix="type_")
        if user_type is None:
            await self.handle_invalid_input(ctx, message)
            return
        ctx.temp["user_type"] = user_type
        if user_type == UserType.CUSTOMER.value:
            await self._register(ctx)
        elif user_type == UserType.FISH_SELLER.value:
            await self.go_to(ctx, RegistrationStep.ASK_MARKET_NAME)
        else:
            await self.go_to(ctx, RegistrationStep.ASK_SHOP_NAME)

    # ── Fish seller branch ───────────────────────────────────

    async def _ask_market_name(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone, "🐟 Which market or harbour do you sell at?", [BACK_BUTTON, MENU_BUTTON]
        )

    async def _on_market_name(self, ctx: FlowContext, message: IncomingMessage) -> None:
        market = (message.text_content() or "").strip()
        if not MARKET_NAME_MIN <= len(market) <= MARKET_NAME_MAX:
            await self.handle_invalid_input(ctx, message, "⚠️ Please enter your market name (2-100 characters).")
            return
        ctx.temp["market_name"] = market
        await self._register(ctx)

    # ── Shop branch ──────────────────────────────────────────

    async def _ask_shop_name(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(ctx.phone, "🏪 What is your shop's name?", [BACK_BUTTON, MENU_BUTTON])

    async def _on_shop_name(self, ctx: FlowContext, message: IncomingMessage) -> None:
        name = validate_name(message.text_content())
        if name is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please enter a shop name between 2 and 100 characters.")
            return
        ctx.temp["shop_name"] = name
        await self.go_to(ctx, RegistrationStep.ASK_SHOP_CATEGORY)

    async def _ask_shop_category(self, ctx: FlowContext) -> None:
        await ctx.send.send_list(
            ctx.phone,
            f"📂 What does *{ctx.temp.get('shop_name', 'your shop')}* sell?",
            "Select Category",
            [{"title": "Categories", "rows": category_rows()}],
        )

    async def _on_shop_category(self, ctx: FlowContext, message: IncomingMessage) -> None:
        category = self.selection_or_text(message, SHOP_CATEGORY_KEYWORDS, id_prefix="cat_")
        if category is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please choose a category from the list.")
            return
        ctx.temp["shop_category"] = category
        await self.go_to(ctx, RegistrationStep.ASK_SHOP_LOCATION)

    async def _ask_shop_location(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            "📍 Is your shop at the location you shared earlier?\n\nYou can also send the shop's location now.",
            [
                {"id": "same_location", "title": "✅ Same Location"},
                {"id": "different_location", "title": "📍 Different"},
                BACK_BUTTON,
            ],
        )

    async def _on_shop_location(self, ctx: FlowContext, message: IncomingMessage) -> None:
        coords = message.coordinates()
        if coords is not None:
            ctx.temp["shop_latitude"] = coords["lat"]
            ctx.temp["shop_longitude"] = coords["lng"]
            await self.go_to(ctx, RegistrationStep.ASK_NOTIFICATION_PREF)
            return

        choice = self.selection_or_text(message, SHOP_LOCATION_TEXT)
        if choice == "same_location":
            ctx.temp["shop_latitude"] = ctx.temp.get("latitude")
            ctx.temp["shop_longitude"] = ctx.temp.get("longitude")
            await self.go_to(ctx, RegistrationStep.ASK_NOTIFICATION_PREF)
        elif choice == "different_location":
            await ctx.send.request_location(ctx.phone, "📍 Please share your shop's location.")
        else:
            await self.handle_invalid_input(ctx, message)

    async def _ask_notification_pref(self, ctx: FlowContext) -> None:
        await ctx.send.send_list(
            ctx.phone,
            "🔔 How often should we tell you about customer requests?",
            "Choose",
            [{"title": "Notifications", "rows": frequency_rows()}],
        )

    async def _on_notification_pref(self, ctx: FlowContext, message: IncomingMessage) -> None:
        frequency = self.selection_or_text(message, NOTIFICATION_KEYWORDS, id_prefix="notif_")
        if frequency is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please choose an option from the list.")
            return
        ctx.temp["notification_frequency"] = frequency
        await self.go_to(ctx, RegistrationStep.REVIEW)

    async def _show_review(self, ctx: FlowContext) -> None:
        t = ctx.temp
        await ctx.send.send_buttons(
            ctx.phone,
            "📋 *Please confirm your details*\n\n"
            f"Name: {t.get('name')}\n"
            f"Shop: {t.get('shop_name')}\n"
            f"Category: {category_title(t.get('shop_category'))}\n"
            f"Notifications: {frequency_title(t.get('notification_frequency'))}",
            review_buttons(confirm_title="✅ Register"),
        )

    async def _on_review(self, ctx: FlowContext, message: IncomingMessage) -> None:
        await self.handle_review(ctx, message, self._register)

    # ── Creation ─────────────────────────────────────────────

    async def _register(self, ctx: FlowContext) -> None:
        t = ctx.temp
        users = self.services.users
        user_type = t.get("user_type")
        lat, lng = t.get("latitude"), t.get("longitude")

        result: ServiceResult[UserRecord]
        if user_type == UserType.SHOP.value:
            result = await users.create_shop_owner(
                ctx.phone,
                t["name"],
                lat,
                lng,
                {
                    "name": t.get("shop_name"),
                    "category": t.get("shop_category"),
                    "latitude": t.get("shop_latitude", lat),
                    "longitude": t.get("shop_longitude", lng),
                    "notification_frequency": t.get("notification_frequency", "immediate"),
                },
            )
        elif user_type == UserType.FISH_SELLER.value:
            result = await users.create_fish_seller(ctx.phone, t["name"], lat, lng, t.get("market_name", ""))
        else:
            result = await users.create_customer(ctx.phone, t["name"], lat, lng)

        if not result.is_ok:
            await self.fail(ctx, result.message, "register_user")
            return

        ctx.user = result.value
        await self.store.link_user(ctx.session, ctx.user.id)
        logger.info("Registered %s as %s", mask_phone(ctx.phone), user_type)
        await self.complete(ctx, RegistrationStep.COMPLETE)
        await self._show_complete(ctx)

    async def _show_complete(self, ctx: FlowContext) -> None:
        user = ctx.user
        if user is not None and user.is_shop_owner():
            second = {"id": "upload_offer", "title": "📤 Upload Offer"}
        elif user is not None and user.is_fish_seller():
            second = {"id": "fish_post_catch", "title": "🎣 Post Catch"}
        else:
            second = {"id": "search_product", "title": "🔍 Find Product"}
        name = user.name if user else ""
        await ctx.send.send_buttons(
            ctx.phone,
            f"🎉 *Welcome to NearBuy, {name}!*\n\nYour registration is complete.",
            [{"id": "browse_offers", "title": "🛍️ Browse Offers"}, second, MENU_BUTTON],
        )

    async def _on_complete(self, ctx: FlowContext, message: IncomingMessage) -> None:
        selection = message.selection_id() or self.selection_or_text(message, COMPLETE_TEXT)
        if selection is None:
            await self.exit_to_main_menu(ctx)
            return
        await self.router.handle_menu_selection(ctx, selection)
