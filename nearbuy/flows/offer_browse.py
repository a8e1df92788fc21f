# nearbuy/flows/offer_browse.py
"""
Offer browsing for customers.

    [ask_location] → select_category → select_radius → show_offers
        → view_offer → show_location

A stored user location is required; users without one are asked for it
first and it is saved to their profile.
"""

from __future__ import annotations

import logging
from enum import Enum

from nearbuy.core.config import settings
from nearbuy.domain.catalog import SHOP_CATEGORY_KEYWORDS, category_rows, category_title
from nearbuy.domain.flow_types import FlowType
from nearbuy.domain.incoming_message import IncomingMessage
from nearbuy.domain.models import OfferRecord
from nearbuy.domain.services.keyword_matcher import match_keyword
from nearbuy.domain.services.pii_masking import mask_phone
from nearbuy.flows.base import BACK_BUTTON, BACK_ID, MENU_BUTTON, BaseFlowHandler
from nearbuy.flows.context import FlowContext

logger = logging.getLogger("nearbuy.flows.offer_browse")

MAX_OFFERS_SHOWN = 10


class BrowseStep(str, Enum):
    ASK_LOCATION = "ask_location"
    SELECT_CATEGORY = "select_category"
    SELECT_RADIUS = "select_radius"
    SHOW_OFFERS = "show_offers"
    VIEW_OFFER = "view_offer"
    SHOW_LOCATION = "show_location"


CATEGORY_OPTIONS = {"all": ("all", "any", "everything"), **SHOP_CATEGORY_KEYWORDS}

RADIUS_OPTIONS = {
    "2": ("2", "2km"),
    "5": ("5", "5km"),
    "10": ("10", "10km"),
}

OFFER_ACTIONS = {
    "contact": ("contact", "call", "chat"),
    "location": ("location", "map", "directions", "where"),
}

EMPTY_ACTIONS = {
    "change_radius": ("radius", "distance", "wider"),
    "change_category": ("category",),
}


def offer_row(offer: OfferRecord) -> dict:
    distance = f"{offer.distance_km:.1f} km · " if offer.distance_km is not None else ""
    return {
        "id": f"offer_{offer.id}",
        "title": (offer.shop_name or "Offer")[:24],
        "description": f"{distance}{offer.caption or category_title(offer.category)}"[:72],
    }


class OfferBrowseHandler(BaseFlowHandler):
    flow = FlowType.OFFERS_BROWSE
    Step = BrowseStep
    first_step = BrowseStep.SELECT_CATEGORY
    back_steps = {
        BrowseStep.SELECT_RADIUS: BrowseStep.SELECT_CATEGORY,
        BrowseStep.SHOW_OFFERS: BrowseStep.SELECT_RADIUS,
        BrowseStep.VIEW_OFFER: BrowseStep.SHOW_OFFERS,
        BrowseStep.SHOW_LOCATION: BrowseStep.VIEW_OFFER,
    }

    def step_handlers(self):
        return {
            BrowseStep.ASK_LOCATION: self._on_location,
            BrowseStep.SELECT_CATEGORY: self._on_category,
            BrowseStep.SELECT_RADIUS: self._on_radius,
            BrowseStep.SHOW_OFFERS: self._on_offers,
            BrowseStep.VIEW_OFFER: self._on_view_offer,
            BrowseStep.SHOW_LOCATION: self._on_show_location,
        }

    def step_prompts(self):
        return {
            BrowseStep.ASK_LOCATION: self._ask_location,
            BrowseStep.SELECT_CATEGORY: self._ask_category,
            BrowseStep.SELECT_RADIUS: self._ask_radius,
            BrowseStep.SHOW_OFFERS: self._show_offers,
            BrowseStep.VIEW_OFFER: self._show_offer,
            BrowseStep.SHOW_LOCATION: self._show_location,
        }

    async def start(self, ctx: FlowContext) -> None:
        if ctx.user is None or not ctx.user.has_location():
            await self.begin(ctx, BrowseStep.ASK_LOCATION)
            return
        await self.begin(ctx)

    # ── ask_location ─────────────────────────────────────────

    async def _ask_location(self, ctx: FlowContext) -> None:
        await ctx.send.request_location(ctx.phone, "📍 Share your location to see offers from shops near you.")

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
        await self.go_to(ctx, BrowseStep.SELECT_CATEGORY)

    # ── select_category / select_radius ──────────────────────

    async def _ask_category(self, ctx: FlowContext) -> None:
        rows = [{"id": "cat_all", "title": "🛍️ All Categories"}, *category_rows()]
        await ctx.send.send_list(
            ctx.phone,
            "🛍️ *Shop Offers*\n\nWhat are you looking for?",
            "Choose Category",
            [{"title": "Categories", "rows": rows}],
        )

    async def _on_category(self, ctx: FlowContext, message: IncomingMessage) -> None:
        category = self.selection_or_text(message, CATEGORY_OPTIONS, id_prefix="cat_")
        if category is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please choose a category from the list.")
            return
        ctx.temp["category"] = None if category == "all" else category
        await self.go_to(ctx, BrowseStep.SELECT_RADIUS)

    async def _ask_radius(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            "📏 How far should we look?",
            [
                {"id": "radius_2", "title": "2 km"},
                {"id": "radius_5", "title": "5 km"},
                {"id": "radius_10", "title": "10 km"},
            ],
        )

    async def _on_radius(self, ctx: FlowContext, message: IncomingMessage) -> None:
        radius = self.selection_or_text(message, RADIUS_OPTIONS, id_prefix="radius_")
        if radius is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please choose 2, 5 or 10 km.")
            return
        ctx.temp["radius_km"] = int(radius)
        await self.go_to(ctx, BrowseStep.SHOW_OFFERS)

    # ── show_offers ──────────────────────────────────────────

    async def _find_offers(self, ctx: FlowContext) -> list[OfferRecord]:
        user = ctx.user
        radius = ctx.temp.get("radius_km", settings.OFFER_DEFAULT_RADIUS_KM)
        offers = await self.services.offers.browse(
            user.latitude, user.longitude, radius, ctx.temp.get("category")
        )
        return offers[:MAX_OFFERS_SHOWN]

    async def _show_offers(self, ctx: FlowContext) -> None:
        offers = await self._find_offers(ctx)
        await self.store.merge_temp_data(ctx.session, {"offer_ids": [o.id for o in offers]})
        category = category_title(ctx.temp.get("category"))
        radius = ctx.temp.get("radius_km", settings.OFFER_DEFAULT_RADIUS_KM)
        if not offers:
            await ctx.send.send_buttons(
                ctx.phone,
                f"😕 No offers in *{category}* within {radius} km right now.",
                [
                    {"id": "change_radius", "title": "📏 Change Distance"},
                    {"id": "change_category", "title": "📂 Change Category"},
                    MENU_BUTTON,
                ],
            )
            return
        await ctx.send.send_list(
            ctx.phone,
            f"🛍️ *{len(offers)} offers* in {category} within {radius} km",
            "View Offers",
            [{"title": "Offers", "rows": [offer_row(o) for o in offers]}],
            footer="Tap Back to change the distance",
        )

    async def _on_offers(self, ctx: FlowContext, message: IncomingMessage) -> None:
        selection = message.selection_id()
        empty_action = selection if selection in EMPTY_ACTIONS else match_keyword(message.text_content(), EMPTY_ACTIONS)
        if empty_action == "change_radius":
            await self.go_to(ctx, BrowseStep.SELECT_RADIUS)
            return
        if empty_action == "change_category":
            await self.go_to(ctx, BrowseStep.SELECT_CATEGORY)
            return

        offer_ids = ctx.temp.get("offer_ids") or []
        offer_id = None
        if selection and selection.startswith("offer_"):
            candidate = selection[len("offer_"):]
            if candidate.isdigit() and int(candidate) in offer_ids:
                offer_id = int(candidate)
        else:
            text = (message.text_content() or "").strip()
            if text.isdigit() and 1 <= int(text) <= len(offer_ids):
                offer_id = offer_ids[int(text) - 1]
        if offer_id is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please pick an offer from the list.")
            return
        ctx.temp["offer_id"] = offer_id
        await self.go_to(ctx, BrowseStep.VIEW_OFFER)

    # ── view_offer ───────────────────────────────────────────

    async def _load_offer(self, ctx: FlowContext) -> OfferRecord | None:
        user = ctx.user
        result = await self.services.offers.get_offer(
            int(ctx.temp.get("offer_id", 0)), user.latitude, user.longitude
        )
        if result.is_ok:
            return result.value
        # Expired between listing and viewing
        ctx.temp.pop("offer_id", None)
        await ctx.send.send_text(ctx.phone, "⌛ Sorry, that offer is no longer available.")
        await self.go_to(ctx, BrowseStep.SHOW_OFFERS)
        return None

    async def _show_offer(self, ctx: FlowContext) -> None:
        offer = await self._load_offer(ctx)
        if offer is None:
            return
        caption = f"🏪 *{offer.shop_name}*"
        if offer.caption:
            caption += f"\n{offer.caption}"
        if offer.distance_km is not None:
            caption += f"\n📍 {offer.distance_km:.1f} km away"
        await ctx.send.send_image(ctx.phone, offer.image_url, caption=caption)
        await ctx.send.send_list(
            ctx.phone,
            "What would you like to do?",
            "Options",
            [
                {
                    "title": "Offer",
                    "rows": [
                        {"id": "contact", "title": "💬 Contact Shop"},
                        {"id": "location", "title": "📍 Shop Location"},
                        {"id": BACK_ID, "title": "⬅️ Back to Offers"},
                        {"id": "main_menu", "title": "🏠 Main Menu"},
                    ],
                }
            ],
        )

    async def _on_view_offer(self, ctx: FlowContext, message: IncomingMessage) -> None:
        action = self.selection_or_text(message, OFFER_ACTIONS)
        if action is None:
            await self.handle_invalid_input(ctx, message)
            return
        offer = await self._load_offer(ctx)
        if offer is None:
            return
        if action == "location":
            await self.go_to(ctx, BrowseStep.SHOW_LOCATION)
            return
        logger.info("Offer %s contact requested by %s", offer.id, mask_phone(ctx.phone))
        await ctx.send.send_text(
            ctx.phone,
            f"💬 Contact *{offer.shop_name}* on WhatsApp:\nhttps://wa.me/{offer.shop_phone}",
        )
        await self.prompt_current_step(ctx)

    # ── show_location ────────────────────────────────────────

    async def _show_location(self, ctx: FlowContext) -> None:
        offer = await self._load_offer(ctx)
        if offer is None:
            return
        if offer.latitude is None or offer.longitude is None:
            await ctx.send.send_text(ctx.phone, "📍 This shop hasn't shared its location.")
        else:
            await ctx.send.send_location(ctx.phone, offer.latitude, offer.longitude, name=offer.shop_name)
        await ctx.send.send_buttons(ctx.phone, "Anything else?", [BACK_BUTTON, MENU_BUTTON])

    async def _on_show_location(self, ctx: FlowContext, message: IncomingMessage) -> None:
        await self.handle_invalid_input(ctx, message, "Tap *Back* to return to the offer.")
