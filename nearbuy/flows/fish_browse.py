# nearbuy/flows/fish_browse.py
"""
Fresh fish near the user.

    [ask_location] → select_fish → show_catches → view_catch → show_location

Catches are placed at their seller's location and searched within
``FISH_BROWSE_RADIUS_KM``, nearest first.
"""

from __future__ import annotations

import logging
from enum import Enum

from nearbuy.core.config import settings
from nearbuy.domain.flow_types import FlowType
from nearbuy.domain.incoming_message import IncomingMessage
from nearbuy.domain.models import FishCatchRecord
from nearbuy.domain.services.keyword_matcher import match_keyword
from nearbuy.domain.services.pii_masking import mask_phone
from nearbuy.domain.services.validators import format_amount
from nearbuy.flows.base import BACK_BUTTON, BACK_ID, MENU_BUTTON, BaseFlowHandler
from nearbuy.flows.context import FlowContext
from nearbuy.flows.fish_catch_post import QUANTITY_RANGES

logger = logging.getLogger("nearbuy.flows.fish_browse")

MAX_CATCHES_SHOWN = 10
ALL_FISH = "all"


class FishBrowseStep(str, Enum):
    ASK_LOCATION = "ask_location"
    SELECT_FISH = "select_fish"
    SHOW_CATCHES = "show_catches"
    VIEW_CATCH = "view_catch"
    SHOW_LOCATION = "show_location"


CATCH_ACTIONS = {
    "call_seller": ("call", "contact", "chat", "seller"),
    "catch_location": ("location", "map", "directions", "where"),
}

EMPTY_ACTIONS = {
    "change_fish": ("other fish", "change", "another"),
}


def catch_row(catch: FishCatchRecord) -> dict:
    distance = f"{catch.distance_km:.1f} km · " if catch.distance_km is not None else ""
    return {
        "id": f"catch_{catch.id}",
        "title": (catch.fish_name or catch.fish_type)[:24],
        "description": f"{distance}{format_amount(catch.price_per_kg)}/kg · {catch.market_name}"[:72],
    }


class FishBrowseHandler(BaseFlowHandler):
    flow = FlowType.FISH_BROWSE
    Step = FishBrowseStep
    first_step = FishBrowseStep.SELECT_FISH
    back_steps = {
        FishBrowseStep.SHOW_CATCHES: FishBrowseStep.SELECT_FISH,
        FishBrowseStep.VIEW_CATCH: FishBrowseStep.SHOW_CATCHES,
        FishBrowseStep.SHOW_LOCATION: FishBrowseStep.VIEW_CATCH,
    }

    def step_handlers(self):
        return {
            FishBrowseStep.ASK_LOCATION: self._on_location,
            FishBrowseStep.SELECT_FISH: self._on_fish,
            FishBrowseStep.SHOW_CATCHES: self._on_catches,
            FishBrowseStep.VIEW_CATCH: self._on_view_catch,
            FishBrowseStep.SHOW_LOCATION: self._on_show_location,
        }

    def step_prompts(self):
        return {
            FishBrowseStep.ASK_LOCATION: self._ask_location,
            FishBrowseStep.SELECT_FISH: self._ask_fish,
            FishBrowseStep.SHOW_CATCHES: self._show_catches,
            FishBrowseStep.VIEW_CATCH: self._show_catch,
            FishBrowseStep.SHOW_LOCATION: self._show_location,
        }

    async def start(self, ctx: FlowContext) -> None:
        if ctx.user is None or not ctx.user.has_location():
            await self.begin(ctx, FishBrowseStep.ASK_LOCATION)
            return
        await self.begin(ctx)

    # ── ask_location ─────────────────────────────────────────

    async def _ask_location(self, ctx: FlowContext) -> None:
        await ctx.send.request_location(ctx.phone, "📍 Share your location to see fresh fish near you.")

    async def _on_location(self, ctx: FlowContext, message: IncomingMessage) -> None:
        coords = message.coordinates()
        if coords is None:
            await self.handle_invalid_input(ctx, message, "📍 Please share your location to continue.")
            return
        result = await self.services.users.update_location(ctx.user.id, coords["lat"], coords["lng"])
        if not result.is_ok:
            await self.fail(ctx, result.message, "update_location")
            return
        ctx.user = result.value
        await self.go_to(ctx, FishBrowseStep.SELECT_FISH)

    # ── select_fish ──────────────────────────────────────────

    async def _fish_table(self) -> dict[str, tuple]:
        table: dict[str, tuple] = {ALL_FISH: ("all", "any", "everything")}
        for fish in await self.services.fish.list_fish_types():
            table[fish.code] = tuple(n.lower() for n in (fish.name, fish.local_name) if n)
        return table

    async def _ask_fish(self, ctx: FlowContext) -> None:
        rows = [{"id": f"fish_{ALL_FISH}", "title": "🐟 All Fish"}]
        for fish in (await self.services.fish.list_fish_types())[:9]:
            rows.append({"id": f"fish_{fish.code}", "title": fish.name[:24], "description": fish.local_name})
        await ctx.send.send_list(
            ctx.phone,
            "🐟 *Fresh Fish*\n\nWhich fish are you looking for? You can also type its name.",
            "Select Fish",
            [{"title": "Fish", "rows": rows}],
        )

    async def _on_fish(self, ctx: FlowContext, message: IncomingMessage) -> None:
        code = self.selection_or_text(message, await self._fish_table(), id_prefix="fish_")
        if code is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please choose a fish from the list.")
            return
        ctx.temp["fish_type"] = None if code == ALL_FISH else code
        await self.go_to(ctx, FishBrowseStep.SHOW_CATCHES)

    # ── show_catches ─────────────────────────────────────────

    async def _show_catches(self, ctx: FlowContext) -> None:
        user = ctx.user
        radius = settings.FISH_BROWSE_RADIUS_KM
        catches = (
            await self.services.fish.browse_catches(user.latitude, user.longitude, radius, ctx.temp.get("fish_type"))
        )[:MAX_CATCHES_SHOWN]
        await self.store.merge_temp_data(ctx.session, {"catch_ids": [c.id for c in catches]})
        if not catches:
            await ctx.send.send_buttons(
                ctx.phone,
                f"😕 No fresh catches within {radius} km right now. Please check again later.",
                [{"id": "change_fish", "title": "🐟 Other Fish"}, MENU_BUTTON],
            )
            return
        await ctx.send.send_list(
            ctx.phone,
            f"🐟 *{len(catches)} fresh catches* within {radius} km",
            "View Catches",
            [{"title": "Catches", "rows": [catch_row(c) for c in catches]}],
            footer="Tap Back to pick another fish",
        )

    async def _on_catches(self, ctx: FlowContext, message: IncomingMessage) -> None:
        selection = message.selection_id()
        empty_action = selection if selection in EMPTY_ACTIONS else match_keyword(message.text_content(), EMPTY_ACTIONS)
        if empty_action == "change_fish":
            await self.go_to(ctx, FishBrowseStep.SELECT_FISH)
            return

        catch_ids = ctx.temp.get("catch_ids") or []
        catch_id = None
        if selection and selection.startswith("catch_"):
            candidate = selection[len("catch_"):]
            if candidate.isdigit() and int(candidate) in catch_ids:
                catch_id = int(candidate)
        else:
            text = (message.text_content() or "").strip()
            if text.isdigit() and 1 <= int(text) <= len(catch_ids):
                catch_id = catch_ids[int(text) - 1]
        if catch_id is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please pick a catch from the list.")
            return
        ctx.temp["catch_id"] = catch_id
        await self.go_to(ctx, FishBrowseStep.VIEW_CATCH)

    # ── view_catch ───────────────────────────────────────────

    async def _load_catch(self, ctx: FlowContext) -> FishCatchRecord | None:
        user = ctx.user
        result = await self.services.fish.get_catch(int(ctx.temp.get("catch_id", 0)), user.latitude, user.longitude)
        if result.is_ok:
            return result.value
        ctx.temp.pop("catch_id", None)
        await ctx.send.send_text(ctx.phone, "⌛ Sorry, that catch has been sold or has expired.")
        await self.go_to(ctx, FishBrowseStep.SHOW_CATCHES)
        return None

    async def _show_catch(self, ctx: FlowContext) -> None:
        catch = await self._load_catch(ctx)
        if catch is None:
            return
        caption = (
            f"🐟 *{catch.fish_name or catch.fish_type}*\n"
            f"💰 {format_amount(catch.price_per_kg)}/kg\n"
            f"⚖️ {QUANTITY_RANGES.get(catch.quantity_range, catch.quantity_range)}\n"
            f"🏪 {catch.seller_name}, {catch.market_name}"
        )
        if catch.distance_km is not None:
            caption += f"\n📍 {catch.distance_km:.1f} km away"
        if catch.photo_url:
            await ctx.send.send_image(ctx.phone, catch.photo_url, caption=caption)
        else:
            await ctx.send.send_text(ctx.phone, caption)
        await ctx.send.send_buttons(
            ctx.phone,
            "What would you like to do?",
            [
                {"id": "call_seller", "title": "📞 Contact Seller"},
                {"id": "catch_location", "title": "📍 Location"},
                {"id": BACK_ID, "title": "⬅️ Back to List"},
            ],
        )

    async def _on_view_catch(self, ctx: FlowContext, message: IncomingMessage) -> None:
        action = self.selection_or_text(message, CATCH_ACTIONS)
        if action is None:
            await self.handle_invalid_input(ctx, message)
            return
        catch = await self._load_catch(ctx)
        if catch is None:
            return
        if action == "catch_location":
            await self.go_to(ctx, FishBrowseStep.SHOW_LOCATION)
            return
        logger.info("Catch %s contact requested by %s", catch.id, mask_phone(ctx.phone))
        await ctx.send.send_text(
            ctx.phone,
            f"📞 Contact *{catch.seller_name}* on WhatsApp:\nhttps://wa.me/{catch.seller_phone}",
        )
        await self.prompt_current_step(ctx)

    # ── show_location ────────────────────────────────────────

    async def _show_location(self, ctx: FlowContext) -> None:
        catch = await self._load_catch(ctx)
        if catch is None:
            return
        if catch.latitude is None or catch.longitude is None:
            await ctx.send.send_text(ctx.phone, "📍 This seller hasn't shared a location.")
        else:
            await ctx.send.send_location(ctx.phone, catch.latitude, catch.longitude, name=catch.market_name)
        await ctx.send.send_buttons(ctx.phone, "Anything else?", [BACK_BUTTON, MENU_BUTTON])

    async def _on_show_location(self, ctx: FlowContext, message: IncomingMessage) -> None:
        await self.handle_invalid_input(ctx, message, "Tap *Back* to return to the catch.")
