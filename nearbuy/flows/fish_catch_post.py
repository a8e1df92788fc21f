# nearbuy/flows/fish_catch_post.py
"""
Fish sellers posting today's catch.

    select_fish → enter_quantity → enter_price → upload_photo (optional)
    → review → add_another
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal
from enum import Enum

from nearbuy.domain.flow_types import FlowType
from nearbuy.domain.incoming_message import IncomingMessage
from nearbuy.domain.models import FishTypeRecord
from nearbuy.domain.services.pii_masking import mask_phone
from nearbuy.domain.services.validators import format_amount, is_skip, parse_amount
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

logger = logging.getLogger("nearbuy.flows.fish_catch_post")

MAX_PRICE_PER_KG = Decimal("100000")

QUANTITY_RANGES = {
    "5_10": "5-10 kg",
    "10_20": "10-20 kg",
    "20_50": "20-50 kg",
    "50_plus": "50+ kg",
}

_RANGE_RE = re.compile(r"^(\d+)\s*(?:-|to)\s*(\d+)\s*(?:kg|kgs)?$")
_SINGLE_RE = re.compile(r"^(\d+)\s*\+?\s*(?:kg|kgs)?$")

REVIEW_IDS = {
    "confirm_post": REVIEW_CONFIRM,
    "edit_details": REVIEW_EDIT,
    "cancel_post": REVIEW_CANCEL,
}

REVIEW_TEXT = {
    REVIEW_CONFIRM: ("post", "confirm", "yes", "ok", "1"),
    REVIEW_EDIT: ("edit", "change", "2"),
    REVIEW_CANCEL: ("cancel", "discard", "no", "3"),
}

ADD_ANOTHER_TEXT = {
    "post_another": ("another", "more", "again", "yes"),
}


class CatchStep(str, Enum):
    SELECT_FISH = "select_fish"
    ENTER_QUANTITY = "enter_quantity"
    ENTER_PRICE = "enter_price"
    UPLOAD_PHOTO = "upload_photo"
    REVIEW = "review"
    ADD_ANOTHER = "add_another"


def parse_quantity(text: str | None) -> str | None:
    """Map "10-20", "10 to 20 kg", "35" or "50+" onto a quantity range code."""
    if not text:
        return None
    value = text.strip().lower()
    match = _RANGE_RE.match(value) or _SINGLE_RE.match(value)
    if not match:
        return None
    low = int(match.group(1))
    if low <= 0:
        return None
    if low < 10:
        return "5_10"
    if low < 20:
        return "10_20"
    if low < 50:
        return "20_50"
    return "50_plus"


def fish_label(fish: FishTypeRecord | None, code: str | None) -> str:
    if fish is None:
        return code or ""
    return f"{fish.name} ({fish.local_name})" if fish.local_name else fish.name


class FishCatchPostHandler(BaseFlowHandler):
    flow = FlowType.FISH_POST_CATCH
    Step = CatchStep
    first_step = CatchStep.SELECT_FISH
    back_steps = {
        CatchStep.ENTER_QUANTITY: CatchStep.SELECT_FISH,
        CatchStep.ENTER_PRICE: CatchStep.ENTER_QUANTITY,
        CatchStep.UPLOAD_PHOTO: CatchStep.ENTER_PRICE,
        CatchStep.REVIEW: CatchStep.UPLOAD_PHOTO,
    }

    def step_handlers(self):
        return {
            CatchStep.SELECT_FISH: self._on_fish,
            CatchStep.ENTER_QUANTITY: self._on_quantity,
            CatchStep.ENTER_PRICE: self._on_price,
            CatchStep.UPLOAD_PHOTO: self._on_photo,
            CatchStep.REVIEW: self._on_review,
            CatchStep.ADD_ANOTHER: self._on_add_another,
        }

    def step_prompts(self):
        return {
            CatchStep.SELECT_FISH: self._ask_fish,
            CatchStep.ENTER_QUANTITY: self._ask_quantity,
            CatchStep.ENTER_PRICE: self._ask_price,
            CatchStep.UPLOAD_PHOTO: self._ask_photo,
            CatchStep.REVIEW: self._show_review,
            CatchStep.ADD_ANOTHER: self._show_add_another,
        }

    async def _fish_types(self) -> dict[str, FishTypeRecord]:
        return {f.code: f for f in await self.services.fish.list_fish_types()}

    # ── select_fish ──────────────────────────────────────────

    async def _ask_fish(self, ctx: FlowContext) -> None:
        fish_types = await self._fish_types()
        rows = [
            {"id": f"fish_{f.code}", "title": f.name[:24], "description": f.local_name}
            for f in list(fish_types.values())[:10]
        ]
        await ctx.send.send_list(
            ctx.phone,
            "🎣 *Post today's catch*\n\nWhich fish did you get? You can also type its name.",
            "Select Fish",
            [{"title": "Fish", "rows": rows}],
        )

    async def _on_fish(self, ctx: FlowContext, message: IncomingMessage) -> None:
        fish_types = await self._fish_types()
        table = {
            code: tuple(n.lower() for n in (f.name, f.local_name) if n)
            for code, f in fish_types.items()
        }
        code = self.selection_or_text(message, table, id_prefix="fish_")
        if code is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please choose a fish from the list.")
            return
        ctx.temp["fish_type"] = code
        await self.go_to(ctx, CatchStep.ENTER_QUANTITY)

    # ── enter_quantity / enter_price ─────────────────────────

    async def _ask_quantity(self, ctx: FlowContext) -> None:
        rows = [{"id": f"qty_{code}", "title": title} for code, title in QUANTITY_RANGES.items()]
        await ctx.send.send_list(
            ctx.phone,
            "⚖️ How much do you have? Pick a range or type it (e.g. *10-20*).",
            "Quantity",
            [{"title": "Quantity", "rows": rows}],
        )

    async def _on_quantity(self, ctx: FlowContext, message: IncomingMessage) -> None:
        selection = message.selection_id()
        if selection:
            code = selection[len("qty_"):] if selection.startswith("qty_") else None
            if code not in QUANTITY_RANGES:
                code = None
        else:
            code = parse_quantity(message.text_content())
        if code is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please pick a quantity range, or type e.g. *10-20*.")
            return
        ctx.temp["quantity_range"] = code
        await self.go_to(ctx, CatchStep.ENTER_PRICE)

    async def _ask_price(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone, "💰 Price per kg? (e.g. *250*)", [BACK_BUTTON, MENU_BUTTON]
        )

    async def _on_price(self, ctx: FlowContext, message: IncomingMessage) -> None:
        price = parse_amount(message.text_content(), max_amount=int(MAX_PRICE_PER_KG))
        if price is None or price >= MAX_PRICE_PER_KG:
            await self.handle_invalid_input(ctx, message, "⚠️ Please enter a price per kg between 1 and 99,999.")
            return
        ctx.temp["price_per_kg"] = str(price)
        await self.go_to(ctx, CatchStep.UPLOAD_PHOTO)

    # ── upload_photo ─────────────────────────────────────────

    async def _ask_photo(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone, "📸 Send a photo of the catch, or tap Skip.", [SKIP_BUTTON, BACK_BUTTON, MENU_BUTTON]
        )

    async def _on_photo(self, ctx: FlowContext, message: IncomingMessage) -> None:
        if is_skip(message):
            ctx.temp["photo_url"] = None
            await self.go_to(ctx, CatchStep.REVIEW)
            return
        if not message.is_image:
            await self.handle_invalid_input(ctx, message, "📸 Please send a photo, or tap Skip.")
            return
        stored = await self.services.media.download_and_store(message.media_id(), "fish")
        if not stored.success:
            logger.warning("Catch photo upload failed for %s: %s", mask_phone(ctx.phone), stored.error)
            await self.handle_invalid_input(ctx, message, "😕 We couldn't save that photo. Send it again or tap Skip.")
            return
        ctx.temp["photo_url"] = stored.url
        await self.go_to(ctx, CatchStep.REVIEW)

    # ── review ───────────────────────────────────────────────

    async def _show_review(self, ctx: FlowContext) -> None:
        t = ctx.temp
        fish_types = await self._fish_types()
        await ctx.send.send_buttons(
            ctx.phone,
            "📋 *Review your catch*\n\n"
            f"🐟 {fish_label(fish_types.get(t.get('fish_type')), t.get('fish_type'))}\n"
            f"⚖️ {QUANTITY_RANGES.get(t.get('quantity_range'), '-')}\n"
            f"💰 {format_amount(t.get('price_per_kg'))}/kg\n"
            f"📸 {'Photo added' if t.get('photo_url') else 'No photo'}",
            [
                {"id": "confirm_post", "title": "✅ Post"},
                {"id": "edit_details", "title": "✏️ Edit"},
                {"id": "cancel_post", "title": "❌ Cancel"},
            ],
        )

    async def _on_review(self, ctx: FlowContext, message: IncomingMessage) -> None:
        await self.handle_review(ctx, message, self._post, text_table=REVIEW_TEXT, ids=REVIEW_IDS)

    async def _post(self, ctx: FlowContext) -> None:
        t = ctx.temp
        result = await self.services.fish.create_catch(
            ctx.user.fish_seller,
            t["fish_type"],
            t["quantity_range"],
            Decimal(t["price_per_kg"]),
            t.get("photo_url"),
        )
        if not result.is_ok:
            await self.fail(ctx, result.message, "create_catch")
            return
        logger.info("Catch %s posted by %s", result.value.id, mask_phone(ctx.phone))
        await self.complete(ctx, CatchStep.ADD_ANOTHER)
        await ctx.send.send_text(ctx.phone, "🎉 *Catch posted!* Customers nearby can see it now.")
        await self._show_add_another(ctx)

    # ── add_another ──────────────────────────────────────────

    async def _show_add_another(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            "Got more fish to post?",
            [{"id": "post_another", "title": "🎣 Post Another"}, MENU_BUTTON],
        )

    async def _on_add_another(self, ctx: FlowContext, message: IncomingMessage) -> None:
        await self.handle_terminal(ctx, message, {"post_another": self.start}, ADD_ANOTHER_TEXT)
