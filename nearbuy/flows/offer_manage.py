# nearbuy/flows/offer_manage.py
"""
Shop owners managing their live offers.

    my_offers → manage_offer → choose_validity (extend)
                             → delete_confirm

Only offers that are still live are listed; one that expired or was
removed while the owner looked at it sends them back to the list.
"""

from __future__ import annotations

import logging
from enum import Enum

from nearbuy.domain.flow_types import FlowType
from nearbuy.domain.incoming_message import IncomingMessage
from nearbuy.domain.models import OfferRecord, ResultKind
from nearbuy.domain.services.pii_masking import mask_phone
from nearbuy.flows.base import BACK_BUTTON, BACK_ID, MENU_BUTTON, BaseFlowHandler
from nearbuy.flows.context import FlowContext
from nearbuy.flows.offer_upload import VALIDITY_OPTIONS, VALIDITY_TITLES

logger = logging.getLogger("nearbuy.flows.offer_manage")

MAX_OFFERS_LISTED = 9
UPLOAD_NEW_ID = "upload_new"

MANAGE_ACTIONS = {
    "extend_offer": ("extend", "renew", "more days"),
    "delete_offer": ("delete", "remove"),
}

DELETE_TEXT = {
    "confirm_delete": ("yes", "confirm", "delete", "1"),
    "cancel_delete": ("no", "cancel", "keep", "2"),
}


class ManageStep(str, Enum):
    MY_OFFERS = "my_offers"
    MANAGE_OFFER = "manage_offer"
    CHOOSE_VALIDITY = "choose_validity"
    DELETE_CONFIRM = "delete_confirm"


def format_expiry(offer: OfferRecord) -> str:
    return offer.expires_at.strftime("%d %b %H:%M") if offer.expires_at else "-"


class OfferManageHandler(BaseFlowHandler):
    flow = FlowType.OFFERS_MANAGE
    Step = ManageStep
    first_step = ManageStep.MY_OFFERS
    back_steps = {
        ManageStep.MANAGE_OFFER: ManageStep.MY_OFFERS,
        ManageStep.CHOOSE_VALIDITY: ManageStep.MANAGE_OFFER,
        ManageStep.DELETE_CONFIRM: ManageStep.MANAGE_OFFER,
    }

    def step_handlers(self):
        return {
            ManageStep.MY_OFFERS: self._on_my_offers,
            ManageStep.MANAGE_OFFER: self._on_manage,
            ManageStep.CHOOSE_VALIDITY: self._on_validity,
            ManageStep.DELETE_CONFIRM: self._on_delete_confirm,
        }

    def step_prompts(self):
        return {
            ManageStep.MY_OFFERS: self._show_my_offers,
            ManageStep.MANAGE_OFFER: self._show_manage,
            ManageStep.CHOOSE_VALIDITY: self._ask_validity,
            ManageStep.DELETE_CONFIRM: self._ask_delete_confirm,
        }

    # ── my_offers ────────────────────────────────────────────

    async def _show_my_offers(self, ctx: FlowContext) -> None:
        offers = (await self.services.offers.list_for_shop(ctx.user.shop.id))[:MAX_OFFERS_LISTED]
        ctx.temp.pop("manage_offer_id", None)
        await self.store.merge_temp_data(ctx.session, {"offer_ids": [o.id for o in offers]})
        if not offers:
            await ctx.send.send_buttons(
                ctx.phone,
                "🏷️ You have no active offers.",
                [{"id": UPLOAD_NEW_ID, "title": "📤 Upload Offer"}, MENU_BUTTON],
            )
            return
        rows = [
            {
                "id": f"manage_{o.id}",
                "title": (o.caption or f"Offer #{o.id}")[:24],
                "description": f"👁️ {o.view_count} views · until {format_expiry(o)}"[:72],
            }
            for o in offers
        ]
        rows.append({"id": UPLOAD_NEW_ID, "title": "📤 Upload New Offer"})
        await ctx.send.send_list(
            ctx.phone,
            f"🏷️ *Your active offers* ({len(offers)})\n\nPick one to extend or delete it.",
            "Manage Offers",
            [{"title": "Your Offers", "rows": rows}],
        )

    async def _on_my_offers(self, ctx: FlowContext, message: IncomingMessage) -> None:
        selection = message.selection_id()
        text = (message.text_content() or "").strip().lower()
        if selection == UPLOAD_NEW_ID or (selection is None and text in ("upload", "new")):
            await self.router.start_flow(ctx, FlowType.OFFERS_UPLOAD)
            return

        offer_ids = ctx.temp.get("offer_ids") or []
        offer_id = None
        if selection and selection.startswith("manage_"):
            candidate = selection[len("manage_"):]
            if candidate.isdigit() and int(candidate) in offer_ids:
                offer_id = int(candidate)
        elif text.isdigit() and 1 <= int(text) <= len(offer_ids):
            offer_id = offer_ids[int(text) - 1]
        if offer_id is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please pick an offer from the list.")
            return
        ctx.temp["manage_offer_id"] = offer_id
        await self.go_to(ctx, ManageStep.MANAGE_OFFER)

    # ── manage_offer ─────────────────────────────────────────

    async def _load_offer(self, ctx: FlowContext) -> OfferRecord | None:
        offer_id = ctx.temp.get("manage_offer_id")
        offers = await self.services.offers.list_for_shop(ctx.user.shop.id)
        offer = next((o for o in offers if o.id == offer_id), None)
        if offer is not None:
            return offer
        await ctx.send.send_text(ctx.phone, "❌ That offer is no longer active.")
        await self.go_to(ctx, ManageStep.MY_OFFERS)
        return None

    async def _show_manage(self, ctx: FlowContext) -> None:
        offer = await self._load_offer(ctx)
        if offer is None:
            return
        await ctx.send.send_image(ctx.phone, offer.image_url, caption=offer.caption or "Your offer")
        await ctx.send.send_buttons(
            ctx.phone,
            "📊 *Offer details*\n\n"
            f"👁️ Views: {offer.view_count}\n"
            f"⏰ Valid until: {format_expiry(offer)}\n\n"
            "What would you like to do?",
            [
                {"id": "extend_offer", "title": "⏳ Extend"},
                {"id": "delete_offer", "title": "🗑️ Delete"},
                {"id": BACK_ID, "title": "⬅️ Back to Offers"},
            ],
        )

    async def _on_manage(self, ctx: FlowContext, message: IncomingMessage) -> None:
        action = self.selection_or_text(message, MANAGE_ACTIONS)
        if action is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please tap one of the buttons below.")
            return
        if action == "extend_offer":
            await self.go_to(ctx, ManageStep.CHOOSE_VALIDITY)
        else:
            await self.go_to(ctx, ManageStep.DELETE_CONFIRM)

    # ── choose_validity ──────────────────────────────────────

    async def _ask_validity(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            "⏳ Keep this offer running until when? The new period starts today.",
            [{"id": code, "title": title} for code, title in VALIDITY_TITLES.items()],
        )

    async def _on_validity(self, ctx: FlowContext, message: IncomingMessage) -> None:
        validity = self.selection_or_text(message, VALIDITY_OPTIONS)
        if validity is None:
            await self.handle_invalid_input(ctx, message)
            return
        result = await self.services.offers.extend_offer(
            int(ctx.temp.get("manage_offer_id", 0)), ctx.user.shop.id, validity
        )
        if result.kind == ResultKind.NOT_FOUND:
            await ctx.send.send_text(ctx.phone, "❌ That offer is no longer active.")
            await self.go_to(ctx, ManageStep.MY_OFFERS)
            return
        if not result.is_ok:
            await self.fail(ctx, result.message, "extend_offer")
            return
        logger.info("Offer %s extended (%s) by %s", result.value.id, validity, mask_phone(ctx.phone))
        await ctx.send.send_text(ctx.phone, f"✅ Offer extended: {VALIDITY_TITLES[validity]}.")
        await self.go_to(ctx, ManageStep.MANAGE_OFFER)

    # ── delete_confirm ───────────────────────────────────────

    async def _ask_delete_confirm(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            "🗑️ Delete this offer? Customers will no longer see it.",
            [
                {"id": "confirm_delete", "title": "🗑️ Yes, Delete"},
                {"id": "cancel_delete", "title": "↩️ Keep It"},
                BACK_BUTTON,
            ],
        )

    async def _on_delete_confirm(self, ctx: FlowContext, message: IncomingMessage) -> None:
        choice = self.selection_or_text(message, DELETE_TEXT)
        if choice is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please tap *Yes, Delete* or *Keep It*.")
            return
        if choice == "cancel_delete":
            await ctx.send.send_text(ctx.phone, "✅ Deletion cancelled.")
            await self.go_to(ctx, ManageStep.MANAGE_OFFER)
            return
        offer_id = int(ctx.temp.get("manage_offer_id", 0))
        result = await self.services.offers.delete_offer(offer_id, ctx.user.shop.id)
        if result.kind == ResultKind.ERROR:
            await self.fail(ctx, result.message, "delete_offer")
            return
        if result.is_ok:
            logger.info("Offer %s deleted by %s", offer_id, mask_phone(ctx.phone))
            await ctx.send.send_text(ctx.phone, "🗑️ Offer deleted.")
        else:
            await ctx.send.send_text(ctx.phone, "❌ That offer is no longer active.")
        await self.go_to(ctx, ManageStep.MY_OFFERS)
