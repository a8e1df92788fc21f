# nearbuy/flows/settings.py
"""
Profile settings.

    main ─┬─ location
          ├─ notification
          ├─ shop_menu ─┬─ shop_name
          │             ├─ shop_category
          │             └─ shop_location
          ├─ fish_menu
          └─ delete_confirm

Every edit is written straight to the user service and returns to the
menu it came from.  Deleting the account also drops the session.
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
from nearbuy.domain.services.pii_masking import mask_phone
from nearbuy.domain.services.validators import validate_name
from nearbuy.flows.base import BACK_BUTTON, MENU_BUTTON, BaseFlowHandler
from nearbuy.flows.context import FlowContext

logger = logging.getLogger("nearbuy.flows.settings")

BACK_SETTINGS_ID = "back_settings"

MAIN_OPTIONS = {
    "set_location": ("location", "address", "1"),
    "set_notification": ("notification", "alerts", "2"),
    "set_shop": ("shop", "3"),
    "set_fish": ("fish", "seller", "4"),
    "set_delete": ("delete", "remove account", "5"),
}

SHOP_OPTIONS = {
    "shop_name": ("name", "1"),
    "shop_category": ("category", "2"),
    "shop_location": ("location", "3"),
    BACK_SETTINGS_ID: ("settings", "4"),
}

FISH_OPTIONS = {
    "fish_toggle": ("pause", "resume", "toggle", "1"),
    BACK_SETTINGS_ID: ("settings", "2"),
}

DELETE_OPTIONS = {
    "confirm_delete": ("delete", "yes", "1"),
    "cancel_delete": ("keep", "no", "2"),
}

ACCOUNT_DELETED_TEXT = (
    "👋 Your account has been deleted. We're sorry to see you go.\n\n"
    "Send *hi* anytime to register again."
)


class SettingsStep(str, Enum):
    MAIN = "main"
    LOCATION = "location"
    NOTIFICATION = "notification"
    SHOP_MENU = "shop_menu"
    SHOP_NAME = "shop_name"
    SHOP_CATEGORY = "shop_category"
    SHOP_LOCATION = "shop_location"
    FISH_MENU = "fish_menu"
    DELETE_CONFIRM = "delete_confirm"


class SettingsHandler(BaseFlowHandler):
    flow = FlowType.SETTINGS
    Step = SettingsStep
    first_step = SettingsStep.MAIN
    back_steps = {
        SettingsStep.LOCATION: SettingsStep.MAIN,
        SettingsStep.NOTIFICATION: SettingsStep.MAIN,
        SettingsStep.SHOP_MENU: SettingsStep.MAIN,
        SettingsStep.SHOP_NAME: SettingsStep.SHOP_MENU,
        SettingsStep.SHOP_CATEGORY: SettingsStep.SHOP_MENU,
        SettingsStep.SHOP_LOCATION: SettingsStep.SHOP_MENU,
        SettingsStep.FISH_MENU: SettingsStep.MAIN,
        SettingsStep.DELETE_CONFIRM: SettingsStep.MAIN,
    }

    def step_handlers(self):
        return {
            SettingsStep.MAIN: self._on_main,
            SettingsStep.LOCATION: self._on_location,
            SettingsStep.NOTIFICATION: self._on_notification,
            SettingsStep.SHOP_MENU: self._on_shop_menu,
            SettingsStep.SHOP_NAME: self._on_shop_name,
            SettingsStep.SHOP_CATEGORY: self._on_shop_category,
            SettingsStep.SHOP_LOCATION: self._on_shop_location,
            SettingsStep.FISH_MENU: self._on_fish_menu,
            SettingsStep.DELETE_CONFIRM: self._on_delete_confirm,
        }

    def step_prompts(self):
        return {
            SettingsStep.MAIN: self._show_main,
            SettingsStep.LOCATION: self._ask_location,
            SettingsStep.NOTIFICATION: self._ask_notification,
            SettingsStep.SHOP_MENU: self._show_shop_menu,
            SettingsStep.SHOP_NAME: self._ask_shop_name,
            SettingsStep.SHOP_CATEGORY: self._ask_shop_category,
            SettingsStep.SHOP_LOCATION: self._ask_shop_location,
            SettingsStep.FISH_MENU: self._show_fish_menu,
            SettingsStep.DELETE_CONFIRM: self._ask_delete_confirm,
        }

    async def start_shop_profile(self, ctx: FlowContext) -> None:
        if not ctx.user.is_shop_owner():
            await ctx.send.send_text(ctx.phone, "🏪 You don't have a shop registered.")
            await self.exit_to_main_menu(ctx)
            return
        await self.begin(ctx, SettingsStep.SHOP_MENU)

    # ── main ─────────────────────────────────────────────────

    async def _show_main(self, ctx: FlowContext) -> None:
        user = ctx.user
        rows = [
            {"id": "set_location", "title": "📍 Update Location"},
            {
                "id": "set_notification",
                "title": "🔔 Notifications",
                "description": f"Now: {frequency_title(user.notification_frequency)}",
            },
        ]
        if user.is_shop_owner():
            rows.append({"id": "set_shop", "title": "🏪 My Shop", "description": user.shop.name})
        if user.is_fish_seller():
            rows.append({"id": "set_fish", "title": "🐟 Fish Seller Settings"})
        rows.append({"id": "set_delete", "title": "🗑️ Delete Account"})
        rows.append({"id": "main_menu", "title": "🏠 Main Menu"})
        await ctx.send.send_list(
            ctx.phone,
            f"⚙️ *Settings*\n\n👤 {user.name}",
            "Options",
            [{"title": "Settings", "rows": rows}],
        )

    async def _on_main(self, ctx: FlowContext, message: IncomingMessage) -> None:
        choice = self.selection_or_text(message, MAIN_OPTIONS)
        user = ctx.user
        if choice == "set_location":
            await self.go_to(ctx, SettingsStep.LOCATION)
        elif choice == "set_notification":
            await self.go_to(ctx, SettingsStep.NOTIFICATION)
        elif choice == "set_shop" and user.is_shop_owner():
            await self.go_to(ctx, SettingsStep.SHOP_MENU)
        elif choice == "set_fish" and user.is_fish_seller():
            await self.go_to(ctx, SettingsStep.FISH_MENU)
        elif choice == "set_delete":
            await self.go_to(ctx, SettingsStep.DELETE_CONFIRM)
        else:
            await self.handle_invalid_input(ctx, message, "⚠️ Please choose an option from the list.")

    # ── location / notification ──────────────────────────────

    async def _ask_location(self, ctx: FlowContext) -> None:
        await ctx.send.request_location(ctx.phone, "📍 Share your new location.")

    async def _on_location(self, ctx: FlowContext, message: IncomingMessage) -> None:
        coords = message.coordinates()
        if coords is None:
            await self.handle_invalid_input(ctx, message, "📍 Please share a location, or tap Back.")
            return
        result = await self.services.users.update_location(ctx.user.id, coords["lat"], coords["lng"])
        if not result.is_ok:
            await self.fail(ctx, result.message, "update_location")
            return
        ctx.user = result.value
        await ctx.send.send_text(ctx.phone, "✅ Location updated.")
        await self.go_to(ctx, SettingsStep.MAIN)

    async def _ask_notification(self, ctx: FlowContext) -> None:
        await ctx.send.send_list(
            ctx.phone,
            f"🔔 Currently: *{frequency_title(ctx.user.notification_frequency)}*\n\nHow often should we notify you?",
            "Choose",
            [{"title": "Notifications", "rows": frequency_rows()}],
        )

    async def _on_notification(self, ctx: FlowContext, message: IncomingMessage) -> None:
        frequency = self.selection_or_text(message, NOTIFICATION_KEYWORDS, id_prefix="notif_")
        if frequency is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please choose an option from the list.")
            return
        result = await self.services.users.update_notification_frequency(ctx.user.id, frequency)
        if not result.is_ok:
            await self.fail(ctx, result.message, "update_notification_frequency")
            return
        ctx.user = result.value
        await ctx.send.send_text(ctx.phone, f"✅ Notifications set to {frequency_title(frequency)}.")
        await self.go_to(ctx, SettingsStep.MAIN)

    # ── shop ─────────────────────────────────────────────────

    async def _show_shop_menu(self, ctx: FlowContext) -> None:
        shop = ctx.user.shop
        await ctx.send.send_list(
            ctx.phone,
            f"🏪 *{shop.name}*\nCategory: {category_title(shop.category)}",
            "Edit Shop",
            [
                {
                    "title": "Shop",
                    "rows": [
                        {"id": "shop_name", "title": "✏️ Shop Name"},
                        {"id": "shop_category", "title": "📂 Category"},
                        {"id": "shop_location", "title": "📍 Shop Location"},
                        {"id": BACK_SETTINGS_ID, "title": "⚙️ Back to Settings"},
                    ],
                }
            ],
        )

    async def _on_shop_menu(self, ctx: FlowContext, message: IncomingMessage) -> None:
        choice = self.selection_or_text(message, SHOP_OPTIONS)
        if choice == "shop_name":
            await self.go_to(ctx, SettingsStep.SHOP_NAME)
        elif choice == "shop_category":
            await self.go_to(ctx, SettingsStep.SHOP_CATEGORY)
        elif choice == "shop_location":
            await self.go_to(ctx, SettingsStep.SHOP_LOCATION)
        elif choice == BACK_SETTINGS_ID:
            await self.go_to(ctx, SettingsStep.MAIN)
        else:
            await self.handle_invalid_input(ctx, message)

    async def _save_shop(self, ctx: FlowContext, **fields) -> bool:
        result = await self.services.users.update_shop(ctx.user.id, **fields)
        if not result.is_ok:
            await self.fail(ctx, result.message, "update_shop")
            return False
        ctx.user.shop = result.value
        logger.info("Shop %s updated by %s: %s", result.value.id, mask_phone(ctx.phone), ", ".join(fields))
        await ctx.send.send_text(ctx.phone, "✅ Shop updated.")
        await self.go_to(ctx, SettingsStep.SHOP_MENU)
        return True

    async def _ask_shop_name(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(ctx.phone, "✏️ Enter the new shop name.", [BACK_BUTTON, MENU_BUTTON])

    async def _on_shop_name(self, ctx: FlowContext, message: IncomingMessage) -> None:
        name = validate_name(message.text_content())
        if name is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please enter a name between 2 and 100 characters.")
            return
        await self._save_shop(ctx, name=name)

    async def _ask_shop_category(self, ctx: FlowContext) -> None:
        await ctx.send.send_list(
            ctx.phone, "📂 Choose your shop category.", "Categories", [{"title": "Categories", "rows": category_rows()}]
        )

    async def _on_shop_category(self, ctx: FlowContext, message: IncomingMessage) -> None:
        category = self.selection_or_text(message, SHOP_CATEGORY_KEYWORDS, id_prefix="cat_")
        if category is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please choose a category from the list.")
            return
        await self._save_shop(ctx, category=category)

    async def _ask_shop_location(self, ctx: FlowContext) -> None:
        await ctx.send.request_location(ctx.phone, "📍 Share your shop's location.")

    async def _on_shop_location(self, ctx: FlowContext, message: IncomingMessage) -> None:
        coords = message.coordinates()
        if coords is None:
            await self.handle_invalid_input(ctx, message, "📍 Please share a location, or tap Back.")
            return
        await self._save_shop(ctx, latitude=coords["lat"], longitude=coords["lng"])

    # ── fish seller ──────────────────────────────────────────

    async def _show_fish_menu(self, ctx: FlowContext) -> None:
        seller = ctx.user.fish_seller
        status = "🟢 Active" if seller.is_active else "⏸️ Paused"
        toggle = "⏸️ Pause Selling" if seller.is_active else "▶️ Resume Selling"
        await ctx.send.send_buttons(
            ctx.phone,
            f"🐟 *Fish seller settings*\n\nMarket: {seller.market_name}\nStatus: {status}",
            [{"id": "fish_toggle", "title": toggle}, {"id": BACK_SETTINGS_ID, "title": "⚙️ Settings"}, MENU_BUTTON],
        )

    async def _on_fish_menu(self, ctx: FlowContext, message: IncomingMessage) -> None:
        choice = self.selection_or_text(message, FISH_OPTIONS)
        if choice == BACK_SETTINGS_ID:
            await self.go_to(ctx, SettingsStep.MAIN)
            return
        if choice != "fish_toggle":
            await self.handle_invalid_input(ctx, message)
            return
        seller = ctx.user.fish_seller
        result = await self.services.users.set_fish_seller_active(ctx.user.id, not seller.is_active)
        if not result.is_ok:
            await self.fail(ctx, result.message, "set_fish_seller_active")
            return
        ctx.user.fish_seller = result.value
        await self.prompt_current_step(ctx)

    # ── delete ───────────────────────────────────────────────

    async def _ask_delete_confirm(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            "⚠️ *Delete your account?*\n\nYour profile will be removed. Agreements already confirmed stay on record.",
            [
                {"id": "confirm_delete", "title": "🗑️ Delete"},
                {"id": "cancel_delete", "title": "↩️ Keep Account"},
            ],
        )

    async def _on_delete_confirm(self, ctx: FlowContext, message: IncomingMessage) -> None:
        choice = self.selection_or_text(message, DELETE_OPTIONS)
        if choice == "cancel_delete":
            await self.go_to(ctx, SettingsStep.MAIN)
            return
        if choice != "confirm_delete":
            await self.handle_invalid_input(ctx, message)
            return
        result = await self.services.users.deactivate(ctx.user.id)
        if not result.is_ok:
            await self.fail(ctx, result.message, "deactivate_user")
            return
        logger.info("Account deleted for %s", mask_phone(ctx.phone))
        # The session is gone; nothing below may write it back
        await self.store.clear_session(ctx.phone)
        ctx.user = None
        await ctx.send.send_text(ctx.phone, ACCOUNT_DELETED_TEXT)
