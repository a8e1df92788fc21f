# nearbuy/flows/offer_upload.py
"""
Offer upload for shop owners.

    ask_image → ask_caption (optional) → ask_validity → review → done

Skipping the caption stores none; a caption typed on the photo itself is
offered as a separate one-tap choice.

The image is pulled from WhatsApp into the media store as soon as it
arrives, so only its public URL is kept in temp data.
"""

from __future__ import annotations

import logging
from enum import Enum

from nearbuy.domain.flow_types import FlowType
from nearbuy.domain.incoming_message import IncomingMessage
from nearbuy.domain.services.pii_masking import mask_phone
from nearbuy.domain.services.validators import DESCRIPTION_MAX_LENGTH, is_skip, validate_description
from nearbuy.flows.base import (
    BACK_BUTTON,
    MENU_BUTTON,
    REVIEW_CANCEL,
    REVIEW_CONFIRM,
    REVIEW_EDIT,
    SKIP_BUTTON,
    BaseFlowHandler,
)
from nearbuy.flows.context import FlowContext

logger = logging.getLogger("nearbuy.flows.offer_upload")

USE_PHOTO_CAPTION_ID = "use_photo_caption"
USE_PHOTO_CAPTION_BUTTON = {"id": USE_PHOTO_CAPTION_ID, "title": "📝 Use Photo Caption"}


class OfferStep(str, Enum):
    ASK_IMAGE = "ask_image"
    ASK_CAPTION = "ask_caption"
    ASK_VALIDITY = "ask_validity"
    REVIEW = "review"
    DONE = "done"


VALIDITY_OPTIONS = {
    "today": ("today", "1 day", "1"),
    "3days": ("3 days", "three days", "3days", "2"),
    "week": ("week", "7 days", "3"),
}

VALIDITY_TITLES = {
    "today": "📅 Today only",
    "3days": "📆 3 days",
    "week": "🗓️ 1 week",
}

REVIEW_IDS = {
    "publish": REVIEW_CONFIRM,
    "edit": REVIEW_EDIT,
    "cancel": REVIEW_CANCEL,
}

REVIEW_TEXT = {
    REVIEW_CONFIRM: ("publish", "post", "yes", "ok", "1"),
    REVIEW_EDIT: ("edit", "change", "2"),
    REVIEW_CANCEL: ("cancel", "no", "3"),
}

DONE_TEXT = {
    "upload_another": ("another", "new", "again"),
    "my_offers": ("my offers", "offers"),
}


class OfferUploadHandler(BaseFlowHandler):
    flow = FlowType.OFFERS_UPLOAD
    Step = OfferStep
    first_step = OfferStep.ASK_IMAGE
    back_steps = {
        OfferStep.ASK_CAPTION: OfferStep.ASK_IMAGE,
        OfferStep.ASK_VALIDITY: OfferStep.ASK_CAPTION,
        OfferStep.REVIEW: OfferStep.ASK_VALIDITY,
    }

    def step_handlers(self):
        return {
            OfferStep.ASK_IMAGE: self._on_image,
            OfferStep.ASK_CAPTION: self._on_caption,
            OfferStep.ASK_VALIDITY: self._on_validity,
            OfferStep.REVIEW: self._on_review,
            OfferStep.DONE: self._on_done,
        }

    def step_prompts(self):
        return {
            OfferStep.ASK_IMAGE: self._ask_image,
            OfferStep.ASK_CAPTION: self._ask_caption,
            OfferStep.ASK_VALIDITY: self._ask_validity,
            OfferStep.REVIEW: self._show_review,
            OfferStep.DONE: self._show_done,
        }

    async def _ask_image(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            "📸 *Upload an offer*\n\nSend a photo of your offer (poster, product or price board).",
            [MENU_BUTTON],
        )

    async def _on_image(self, ctx: FlowContext, message: IncomingMessage) -> None:
        if not message.is_image:
            await self.handle_invalid_input(ctx, message, "📸 Please send the offer as a photo.")
            return
        stored = await self.services.media.download_and_store(message.media_id(), "offers")
        if not stored.success:
            logger.warning("Offer image upload failed for %s: %s", mask_phone(ctx.phone), stored.error)
            await self.handle_invalid_input(ctx, message, "😕 We couldn't save that photo. Please send it again.")
            return
        ctx.temp["image_url"] = stored.url
        if message.caption:
            ctx.temp["suggested_caption"] = message.caption[:DESCRIPTION_MAX_LENGTH]
        await self.go_to(ctx, OfferStep.ASK_CAPTION)

    async def _ask_caption(self, ctx: FlowContext) -> None:
        body = "✍️ Add a short caption for the offer (e.g. *20% off on all rice*), or tap Skip."
        suggested = ctx.temp.get("suggested_caption")
        if not suggested:
            await ctx.send.send_buttons(ctx.phone, body, [SKIP_BUTTON, BACK_BUTTON, MENU_BUTTON])
            return
        body += f"\n\nPhoto caption: _{suggested}_"
        # WhatsApp allows three buttons; menu is still reachable by typing it
        await ctx.send.send_buttons(ctx.phone, body, [USE_PHOTO_CAPTION_BUTTON, SKIP_BUTTON, BACK_BUTTON])

    async def _on_caption(self, ctx: FlowContext, message: IncomingMessage) -> None:
        suggested = ctx.temp.get("suggested_caption")
        if message.selection_id() == USE_PHOTO_CAPTION_ID and suggested:
            ctx.temp["caption"] = ctx.temp.pop("suggested_caption")
            await self.go_to(ctx, OfferStep.ASK_VALIDITY)
            return
        if is_skip(message):
            ctx.temp["caption"] = None
            ctx.temp.pop("suggested_caption", None)
            await self.go_to(ctx, OfferStep.ASK_VALIDITY)
            return
        caption = validate_description(message.text_content())
        if caption is None:
            await self.handle_invalid_input(
                ctx, message, f"⚠️ Caption must be 1-{DESCRIPTION_MAX_LENGTH} characters, or tap Skip."
            )
            return
        ctx.temp["caption"] = caption
        ctx.temp.pop("suggested_caption", None)
        await self.go_to(ctx, OfferStep.ASK_VALIDITY)

    async def _ask_validity(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            "⏳ How long is this offer valid?",
            [{"id": code, "title": title} for code, title in VALIDITY_TITLES.items()],
        )

    async def _on_validity(self, ctx: FlowContext, message: IncomingMessage) -> None:
        validity = self.selection_or_text(message, VALIDITY_OPTIONS)
        if validity is None:
            await self.handle_invalid_input(ctx, message)
            return
        ctx.temp["validity"] = validity
        await self.go_to(ctx, OfferStep.REVIEW)

    async def _show_review(self, ctx: FlowContext) -> None:
        t = ctx.temp
        await ctx.send.send_image(ctx.phone, t.get("image_url", ""), caption=t.get("caption"))
        await ctx.send.send_buttons(
            ctx.phone,
            "📋 *Review your offer*\n\n"
            f"Caption: {t.get('caption') or '-'}\n"
            f"Valid: {VALIDITY_TITLES.get(t.get('validity'), t.get('validity'))}",
            [
                {"id": "publish", "title": "✅ Publish"},
                {"id": "edit", "title": "✏️ Edit"},
                {"id": "cancel", "title": "❌ Cancel"},
            ],
        )

    async def _on_review(self, ctx: FlowContext, message: IncomingMessage) -> None:
        await self.handle_review(ctx, message, self._publish, text_table=REVIEW_TEXT, ids=REVIEW_IDS)

    async def _publish(self, ctx: FlowContext) -> None:
        t = ctx.temp
        result = await self.services.offers.create_offer(
            ctx.user.shop, t["image_url"], t.get("caption"), t.get("validity", "today")
        )
        if not result.is_ok:
            await self.fail(ctx, result.message, "create_offer")
            return
        logger.info("Offer %s published by %s", result.value.id, mask_phone(ctx.phone))
        await self.complete(ctx, OfferStep.DONE)
        await ctx.send.send_text(ctx.phone, "🎉 *Offer published!* Nearby customers can see it now.")
        await self._show_done(ctx)

    async def _show_done(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            "What would you like to do next?",
            [
                {"id": "upload_another", "title": "📤 Upload Another"},
                {"id": "my_offers", "title": "🏷️ My Offers"},
                MENU_BUTTON,
            ],
        )

    async def _on_done(self, ctx: FlowContext, message: IncomingMessage) -> None:
        await self.handle_terminal(
            ctx,
            message,
            {"upload_another": self.start, "my_offers": self._manage_offers},
            DONE_TEXT,
        )

    async def _manage_offers(self, ctx: FlowContext) -> None:
        await self.router.start_flow(ctx, FlowType.OFFERS_MANAGE)
