# nearbuy/flows/product_response.py
"""
Shop owners answering customer product requests.

    view_requests → awaiting_decision → ask_price → ask_photo → done
                                      ↘ (no) → done

Shops usually arrive through ``start_with_request`` (a ``respond_yes_<id>``
/ ``respond_no_<id>`` notification button) or already seeded at
``awaiting_decision`` by the product search flow.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from enum import Enum

from nearbuy.domain.catalog import category_title
from nearbuy.domain.flow_types import FlowType
from nearbuy.domain.incoming_message import IncomingMessage
from nearbuy.domain.models import ProductRequestRecord, ProductResponseRecord
from nearbuy.domain.services.keyword_matcher import match_keyword
from nearbuy.domain.services.pii_masking import mask_phone
from nearbuy.domain.services.validators import (
    DESCRIPTION_MAX_LENGTH,
    format_amount,
    is_skip,
    parse_amount,
)
from nearbuy.flows.base import BACK_BUTTON, MENU_BUTTON, SKIP_BUTTON, BaseFlowHandler
from nearbuy.flows.context import FlowContext

logger = logging.getLogger("nearbuy.flows.product_response")

PRICE_SEPARATORS = (" - ", ", ", " ")

# "not available" contains "available": "no" must be scanned first
DECISION_TEXT = {
    "no": ("no", "not available", "don't have", "dont have", "2"),
    "yes": ("yes", "available", "have", "1"),
}

DONE_TEXT = {
    "product_requests": ("more", "requests", "next"),
}


class ResponseStep(str, Enum):
    VIEW_REQUESTS = "view_requests"
    AWAITING_DECISION = "awaiting_decision"
    ASK_PRICE = "ask_price"
    ASK_PHOTO = "ask_photo"
    DONE = "done"


def parse_price_and_details(text: str | None) -> tuple[Decimal, str | None] | None:
    """``"1500"`` -> (1500, None); ``"1500, Samsung model"`` -> (1500, "Samsung model")."""
    if not text:
        return None
    text = text.strip()
    for sep in PRICE_SEPARATORS:
        if sep in text:
            head, tail = text.split(sep, 1)
            price = parse_amount(head)
            if price is not None:
                details = tail.strip()[:DESCRIPTION_MAX_LENGTH]
                return price, details or None
    price = parse_amount(text)
    return (price, None) if price is not None else None


def request_notification_text(request: ProductRequestRecord) -> str:
    return (
        "🔍 *New product request nearby*\n\n"
        f"Category: {category_title(request.category)}\n"
        f"Looking for: _{request.description}_\n"
        f"Ref: {request.request_number}\n\n"
        "Do you have this product?"
    )


def decision_buttons(request_id: int) -> list[dict]:
    return [
        {"id": f"respond_yes_{request_id}", "title": "✅ Yes, Available"},
        {"id": f"respond_no_{request_id}", "title": "❌ Not Available"},
    ]


def response_summary(response: ProductResponseRecord) -> str:
    lines = [f"🏪 *{response.shop_name}*"]
    if response.price is not None:
        lines.append(f"💰 {format_amount(response.price)}")
    if response.details:
        lines.append(response.details)
    return "\n".join(lines)


class ProductResponseHandler(BaseFlowHandler):
    flow = FlowType.PRODUCT_RESPOND
    Step = ResponseStep
    first_step = ResponseStep.VIEW_REQUESTS
    back_steps = {
        ResponseStep.AWAITING_DECISION: ResponseStep.VIEW_REQUESTS,
        ResponseStep.ASK_PRICE: ResponseStep.AWAITING_DECISION,
        ResponseStep.ASK_PHOTO: ResponseStep.ASK_PRICE,
    }

    def step_handlers(self):
        return {
            ResponseStep.VIEW_REQUESTS: self._on_view_requests,
            ResponseStep.AWAITING_DECISION: self._on_decision,
            ResponseStep.ASK_PRICE: self._on_price,
            ResponseStep.ASK_PHOTO: self._on_photo,
            ResponseStep.DONE: self._on_done,
        }

    def step_prompts(self):
        return {
            ResponseStep.VIEW_REQUESTS: self._show_requests,
            ResponseStep.AWAITING_DECISION: self._ask_decision,
            ResponseStep.ASK_PRICE: self._ask_price,
            ResponseStep.ASK_PHOTO: self._ask_photo,
            ResponseStep.DONE: self._show_done,
        }

    # ── Entry from a notification ────────────────────────────

    async def start_with_request(self, ctx: FlowContext, request_id: int, action: str | None = None) -> None:
        request = await self._load_actionable(ctx, request_id)
        if request is None:
            return
        ctx.session.temp_data = {"respond_request_id": request.id}
        await self.store.set_flow_step(ctx.session, self.flow, ResponseStep.AWAITING_DECISION)
        if action == "yes":
            await self.go_to(ctx, ResponseStep.ASK_PRICE)
        elif action == "no":
            await self._record(ctx, available=False)
        else:
            await self._ask_decision(ctx)

    async def _load_actionable(self, ctx: FlowContext, request_id) -> ProductRequestRecord | None:
        shop = ctx.user.shop
        products = self.services.products
        request_id = int(request_id)
        if await products.has_responded(request_id, shop.id):
            await self._dead_end(ctx, "✅ You've already responded to this request.")
            return None
        result = await products.get_request(request_id)
        request = result.value
        if not result.is_ok or not request.is_open or request.user_id == ctx.user.id:
            await self._dead_end(ctx, "⌛ This request is no longer open.")
            return None
        return request

    async def _dead_end(self, ctx: FlowContext, text: str) -> None:
        await self.store.reset_to_main_menu(ctx.session)
        await ctx.send.send_buttons(
            ctx.phone,
            text,
            [{"id": "product_requests", "title": "📬 Other Requests"}, MENU_BUTTON],
        )

    # ── view_requests ────────────────────────────────────────

    async def _open_requests(self, ctx: FlowContext) -> list[ProductRequestRecord]:
        requests = await self.services.products.list_open_for_shop(ctx.user.shop)
        return [r for r in requests if r.user_id != ctx.user.id][:10]

    async def _show_requests(self, ctx: FlowContext) -> None:
        requests = await self._open_requests(ctx)
        if not requests:
            await self.store.reset_to_main_menu(ctx.session)
            await ctx.send.send_buttons(ctx.phone, "📭 No open customer requests near you right now.", [MENU_BUTTON])
            return
        rows = [
            {
                "id": f"request_{r.id}",
                "title": r.description[:24],
                "description": f"{category_title(r.category)} · {r.request_number}"[:72],
            }
            for r in requests
        ]
        await ctx.send.send_list(
            ctx.phone,
            f"📬 *{len(requests)} customer requests* near your shop",
            "View Requests",
            [{"title": "Requests", "rows": rows}],
        )

    async def _on_view_requests(self, ctx: FlowContext, message: IncomingMessage) -> None:
        requests = await self._open_requests(ctx)
        chosen = None
        selection = message.selection_id()
        if selection and selection.startswith("request_"):
            chosen = next((r for r in requests if f"request_{r.id}" == selection), None)
        else:
            text = (message.text_content() or "").strip()
            if text.isdigit() and 1 <= int(text) <= len(requests):
                chosen = requests[int(text) - 1]
        if chosen is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please pick a request from the list.")
            return
        ctx.temp["respond_request_id"] = chosen.id
        await self.go_to(ctx, ResponseStep.AWAITING_DECISION)

    # ── awaiting_decision ────────────────────────────────────

    async def _ask_decision(self, ctx: FlowContext) -> None:
        request = await self._load_actionable(ctx, ctx.temp.get("respond_request_id", 0))
        if request is None:
            return
        await ctx.send.send_buttons(ctx.phone, request_notification_text(request), decision_buttons(request.id))

    async def _on_decision(self, ctx: FlowContext, message: IncomingMessage) -> None:
        decision = match_keyword(message.text_content(), DECISION_TEXT)
        if decision is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please reply *yes* or *no*.")
            return
        request = await self._load_actionable(ctx, ctx.temp.get("respond_request_id", 0))
        if request is None:
            return
        if decision == "yes":
            await self.go_to(ctx, ResponseStep.ASK_PRICE)
        else:
            await self._record(ctx, available=False)

    # ── ask_price / ask_photo ────────────────────────────────

    async def _ask_price(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            "💰 What's the price?\n\nYou can add details after a comma, e.g. *1500, Samsung model*",
            [BACK_BUTTON, MENU_BUTTON],
        )

    async def _on_price(self, ctx: FlowContext, message: IncomingMessage) -> None:
        parsed = parse_price_and_details(message.text_content())
        if parsed is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please enter a valid price, e.g. *1500*.")
            return
        price, details = parsed
        ctx.temp["price"] = str(price)
        ctx.temp["details"] = details
        await self.go_to(ctx, ResponseStep.ASK_PHOTO)

    async def _ask_photo(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone, "📸 Send a photo of the product, or tap Skip.", [SKIP_BUTTON, BACK_BUTTON, MENU_BUTTON]
        )

    async def _on_photo(self, ctx: FlowContext, message: IncomingMessage) -> None:
        if is_skip(message):
            await self._record(ctx, available=True)
            return
        if not message.is_image:
            await self.handle_invalid_input(ctx, message, "📸 Please send a photo, or tap Skip.")
            return
        stored = await self.services.media.download_and_store(message.media_id(), "responses")
        if not stored.success:
            logger.warning("Response photo upload failed for %s: %s", mask_phone(ctx.phone), stored.error)
            await self.handle_invalid_input(ctx, message, "😕 We couldn't save that photo. Send it again or tap Skip.")
            return
        ctx.temp["photo_url"] = stored.url
        await self._record(ctx, available=True)

    # ── Recording ────────────────────────────────────────────

    async def _record(self, ctx: FlowContext, available: bool) -> None:
        t = ctx.temp
        request_id = int(t.get("respond_request_id", 0))
        price = Decimal(t["price"]) if available and t.get("price") else None
        result = await self.services.products.create_response(
            request_id,
            ctx.user.shop,
            available,
            price=price,
            details=t.get("details") if available else None,
            photo_url=t.get("photo_url") if available else None,
        )
        if not result.is_ok:
            await self.fail(ctx, result.message, "create_response")
            return
        response = result.value
        logger.info(
            "Shop %s responded to request %s (available=%s)", response.shop_id, request_id, available
        )
        if available:
            await self._notify_customer(ctx, request_id, response)
        await self.complete(ctx, ResponseStep.DONE)
        if available:
            await ctx.send.send_text(ctx.phone, "✅ *Response sent!* The customer will contact you if interested.")
        else:
            await ctx.send.send_text(ctx.phone, "👍 Noted. Thanks for letting us know.")
        await self._show_done(ctx)

    async def _notify_customer(self, ctx: FlowContext, request_id: int, response: ProductResponseRecord) -> None:
        try:
            request = await self.services.products.get_request(request_id)
            if not request.is_ok:
                return
            phone = request.value.customer_phone
            text = (
                f"📬 *New response to your request {request.value.request_number}*\n\n"
                f"{response_summary(response)}"
            )
            if response.photo_url:
                await ctx.send.send_image(phone, response.photo_url, caption=text)
            else:
                await ctx.send.send_text(phone, text)
            await ctx.send.send_buttons(
                phone,
                "See all responses under *My Requests*.",
                [{"id": "my_requests", "title": "📬 My Requests"}, MENU_BUTTON],
            )
        except Exception:
            logger.exception("Could not notify customer about response %s", response.id)

    # ── done ─────────────────────────────────────────────────

    async def _show_done(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            "What would you like to do next?",
            [{"id": "product_requests", "title": "📬 More Requests"}, MENU_BUTTON],
        )

    async def _on_done(self, ctx: FlowContext, message: IncomingMessage) -> None:
        await self.handle_terminal(ctx, message, {"product_requests": self.start}, DONE_TEXT)
