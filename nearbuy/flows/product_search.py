# nearbuy/flows/product_search.py
"""
Customer product search.

    ask_category → ask_description → review → waiting
    my_requests → view_responses → response_detail

Confirming a request broadcasts it to eligible nearby shops: each shop's
session is seeded at ``product_respond:awaiting_decision`` so a plain "yes"
or "no" reply is understood, and the shop also gets one-tap buttons.
"""

from __future__ import annotations

import logging
from enum import Enum

from nearbuy.domain.catalog import SHOP_CATEGORY_KEYWORDS, category_rows, category_title
from nearbuy.domain.flow_types import FlowType
from nearbuy.domain.incoming_message import IncomingMessage
from nearbuy.domain.models import ProductRequestRecord, ProductResponseRecord
from nearbuy.domain.services.pii_masking import mask_phone
from nearbuy.domain.services.validators import DESCRIPTION_MAX_LENGTH, phones_match, validate_description
from nearbuy.flows.base import BACK_BUTTON, BACK_ID, MENU_BUTTON, BaseFlowHandler, review_buttons
from nearbuy.flows.context import FlowContext
from nearbuy.flows.product_response import (
    ResponseStep,
    decision_buttons,
    request_notification_text,
    response_summary,
)

logger = logging.getLogger("nearbuy.flows.product_search")

DESCRIPTION_MIN_LENGTH = 3

REVIEW_TEXT = {
    "confirm": ("send", "confirm", "yes", "ok", "1"),
    "edit": ("edit", "change", "2"),
    "cancel": ("cancel", "no", "3"),
}

WAITING_TEXT = {
    "my_requests": ("my requests", "responses", "status"),
}

DETAIL_ACTIONS = {
    "contact": ("contact", "call", "chat"),
    "location": ("location", "map", "where"),
}


class SearchStep(str, Enum):
    ASK_CATEGORY = "ask_category"
    ASK_DESCRIPTION = "ask_description"
    REVIEW = "review"
    WAITING = "waiting"
    MY_REQUESTS = "my_requests"
    VIEW_RESPONSES = "view_responses"
    RESPONSE_DETAIL = "response_detail"


class ProductSearchHandler(BaseFlowHandler):
    flow = FlowType.PRODUCT_SEARCH
    Step = SearchStep
    first_step = SearchStep.ASK_CATEGORY
    back_steps = {
        SearchStep.ASK_DESCRIPTION: SearchStep.ASK_CATEGORY,
        SearchStep.REVIEW: SearchStep.ASK_DESCRIPTION,
        SearchStep.VIEW_RESPONSES: SearchStep.MY_REQUESTS,
        SearchStep.RESPONSE_DETAIL: SearchStep.VIEW_RESPONSES,
    }

    def step_handlers(self):
        return {
            SearchStep.ASK_CATEGORY: self._on_category,
            SearchStep.ASK_DESCRIPTION: self._on_description,
            SearchStep.REVIEW: self._on_review,
            SearchStep.WAITING: self._on_waiting,
            SearchStep.MY_REQUESTS: self._on_my_requests,
            SearchStep.VIEW_RESPONSES: self._on_view_responses,
            SearchStep.RESPONSE_DETAIL: self._on_response_detail,
        }

    def step_prompts(self):
        return {
            SearchStep.ASK_CATEGORY: self._ask_category,
            SearchStep.ASK_DESCRIPTION: self._ask_description,
            SearchStep.REVIEW: self._show_review,
            SearchStep.WAITING: self._show_waiting,
            SearchStep.MY_REQUESTS: self._show_my_requests,
            SearchStep.VIEW_RESPONSES: self._show_responses,
            SearchStep.RESPONSE_DETAIL: self._show_response_detail,
        }

    # ── New request ──────────────────────────────────────────

    async def _ask_category(self, ctx: FlowContext) -> None:
        await ctx.send.send_list(
            ctx.phone,
            "🔍 *Find a product*\n\nWhich kind of shop would have it?",
            "Choose Category",
            [{"title": "Categories", "rows": category_rows()}],
        )

    async def _on_category(self, ctx: FlowContext, message: IncomingMessage) -> None:
        category = self.selection_or_text(message, SHOP_CATEGORY_KEYWORDS, id_prefix="cat_")
        if category is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please choose a category from the list.")
            return
        ctx.temp["category"] = category
        await self.go_to(ctx, SearchStep.ASK_DESCRIPTION)

    async def _ask_description(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            "✍️ Describe what you're looking for (brand, model, size...).\n\n"
            "Example: _Samsung 1.5 ton inverter AC_",
            [BACK_BUTTON, MENU_BUTTON],
        )

    async def _on_description(self, ctx: FlowContext, message: IncomingMessage) -> None:
        description = validate_description(message.text_content(), min_length=DESCRIPTION_MIN_LENGTH)
        if description is None:
            await self.handle_invalid_input(
                ctx,
                message,
                f"⚠️ Please describe the product in {DESCRIPTION_MIN_LENGTH}-{DESCRIPTION_MAX_LENGTH} characters.",
            )
            return
        ctx.temp["description"] = description
        await self.go_to(ctx, SearchStep.REVIEW)

    async def _show_review(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            "📋 *Review your request*\n\n"
            f"Category: {category_title(ctx.temp.get('category'))}\n"
            f"Looking for: {ctx.temp.get('description')}\n\n"
            "We'll send this to shops near you.",
            review_buttons(confirm_title="✅ Send"),
        )

    async def _on_review(self, ctx: FlowContext, message: IncomingMessage) -> None:
        await self.handle_review(ctx, message, self._submit, text_table=REVIEW_TEXT)

    async def _submit(self, ctx: FlowContext) -> None:
        products = self.services.products
        result = await products.create_request(ctx.user, ctx.temp["category"], ctx.temp["description"])
        if not result.is_ok:
            await self.fail(ctx, result.message, "create_request")
            return
        request = result.value
        shops = await products.find_eligible_shops(request)
        notified = 0
        for shop in shops:
            if phones_match(shop.owner_phone, ctx.phone):
                # Seeding our own phone would wipe this session
                continue
            if await self._notify_shop(ctx, request, shop.owner_phone):
                notified += 1
        logger.info(
            "Request %s from %s sent to %d shops", request.request_number, mask_phone(ctx.phone), notified
        )

        await self.complete(ctx, SearchStep.WAITING)
        if notified:
            text = (
                f"✅ *Request sent to {notified} shop(s)!*\n\nRef: {request.request_number}\n"
                "You'll get a message here as soon as a shop responds."
            )
        else:
            text = (
                f"📭 Request {request.request_number} saved, but no shops nearby sell "
                f"{category_title(request.category)} yet. We'll keep it open."
            )
        await ctx.send.send_text(ctx.phone, text)
        await self._show_waiting(ctx)

    async def _notify_shop(self, ctx: FlowContext, request: ProductRequestRecord, shop_phone: str) -> bool:
        try:
            await self.router.seed_session(
                shop_phone,
                FlowType.PRODUCT_RESPOND,
                ResponseStep.AWAITING_DECISION,
                {"respond_request_id": request.id},
            )
            await ctx.send.send_buttons(shop_phone, request_notification_text(request), decision_buttons(request.id))
            return True
        except Exception:
            logger.exception("Could not notify shop %s of request %s", mask_phone(shop_phone), request.request_number)
            return False

    async def _show_waiting(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            "What would you like to do next?",
            [{"id": "my_requests", "title": "📬 My Requests"}, MENU_BUTTON],
        )

    async def _on_waiting(self, ctx: FlowContext, message: IncomingMessage) -> None:
        await self.handle_terminal(ctx, message, {"my_requests": self.start_my_requests}, WAITING_TEXT)

    # ── My requests ──────────────────────────────────────────

    async def start_my_requests(self, ctx: FlowContext) -> None:
        requests = await self.services.products.list_for_user(ctx.user.id)
        if not requests:
            await self.store.reset_to_main_menu(ctx.session)
            await ctx.send.send_buttons(
                ctx.phone,
                "📭 You haven't asked for any products yet.",
                [{"id": "search_product", "title": "🔍 Find Product"}, MENU_BUTTON],
            )
            return
        await self.begin(ctx, SearchStep.MY_REQUESTS)

    async def _requests(self, ctx: FlowContext) -> list[ProductRequestRecord]:
        return (await self.services.products.list_for_user(ctx.user.id))[:10]

    async def _show_my_requests(self, ctx: FlowContext) -> None:
        requests = await self._requests(ctx)
        rows = [
            {
                "id": f"request_{r.id}",
                "title": r.description[:24],
                "description": f"{r.response_count} response(s) · {r.status} · {r.request_number}"[:72],
            }
            for r in requests
        ]
        await ctx.send.send_list(
            ctx.phone,
            "📬 *Your product requests*",
            "View",
            [{"title": "Requests", "rows": rows}],
        )

    async def _on_my_requests(self, ctx: FlowContext, message: IncomingMessage) -> None:
        requests = await self._requests(ctx)
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
        ctx.temp["view_request_id"] = chosen.id
        await self.go_to(ctx, SearchStep.VIEW_RESPONSES)

    async def _available_responses(self, ctx: FlowContext) -> list[ProductResponseRecord]:
        responses = await self.services.products.list_responses(int(ctx.temp.get("view_request_id", 0)))
        available = [r for r in responses if r.available]
        # Cheapest first, unpriced last
        available.sort(key=lambda r: (r.price is None, r.price or 0))
        return available[:10]

    async def _show_responses(self, ctx: FlowContext) -> None:
        responses = await self._available_responses(ctx)
        if not responses:
            await ctx.send.send_buttons(
                ctx.phone, "⏳ No shop has this yet. We'll message you when one responds.", [BACK_BUTTON, MENU_BUTTON]
            )
            return
        rows = [
            {
                "id": f"response_{r.id}",
                "title": r.shop_name[:24],
                "description": response_summary(r).split("\n", 1)[-1][:72],
            }
            for r in responses
        ]
        await ctx.send.send_list(
            ctx.phone,
            f"📬 *{len(responses)} shop(s) have it*",
            "View Responses",
            [{"title": "Responses", "rows": rows}],
        )

    async def _on_view_responses(self, ctx: FlowContext, message: IncomingMessage) -> None:
        responses = await self._available_responses(ctx)
        chosen = None
        selection = message.selection_id()
        if selection and selection.startswith("response_"):
            chosen = next((r for r in responses if f"response_{r.id}" == selection), None)
        else:
            text = (message.text_content() or "").strip()
            if text.isdigit() and 1 <= int(text) <= len(responses):
                chosen = responses[int(text) - 1]
        if chosen is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please pick a response from the list.")
            return
        ctx.temp["response_id"] = chosen.id
        await self.go_to(ctx, SearchStep.RESPONSE_DETAIL)

    async def _load_response(self, ctx: FlowContext) -> ProductResponseRecord | None:
        result = await self.services.products.get_response(int(ctx.temp.get("response_id", 0)))
        if result.is_ok:
            return result.value
        await ctx.send.send_text(ctx.phone, "⚠️ That response is no longer available.")
        await self.go_to(ctx, SearchStep.VIEW_RESPONSES)
        return None

    async def _show_response_detail(self, ctx: FlowContext) -> None:
        response = await self._load_response(ctx)
        if response is None:
            return
        if response.photo_url:
            await ctx.send.send_image(ctx.phone, response.photo_url, caption=response_summary(response))
        else:
            await ctx.send.send_text(ctx.phone, response_summary(response))
        await ctx.send.send_list(
            ctx.phone,
            "What would you like to do?",
            "Options",
            [
                {
                    "title": "Response",
                    "rows": [
                        {"id": "contact", "title": "💬 Contact Shop"},
                        {"id": "location", "title": "📍 Shop Location"},
                        {"id": BACK_ID, "title": "⬅️ Back"},
                        {"id": "main_menu", "title": "🏠 Main Menu"},
                    ],
                }
            ],
        )

    async def _on_response_detail(self, ctx: FlowContext, message: IncomingMessage) -> None:
        action = self.selection_or_text(message, DETAIL_ACTIONS)
        if action is None:
            await self.handle_invalid_input(ctx, message)
            return
        response = await self._load_response(ctx)
        if response is None:
            return
        if action == "contact":
            await ctx.send.send_text(
                ctx.phone, f"💬 Chat with *{response.shop_name}*:\nhttps://wa.me/{response.shop_phone}"
            )
        elif response.latitude is not None and response.longitude is not None:
            await ctx.send.send_location(ctx.phone, response.latitude, response.longitude, name=response.shop_name)
        else:
            await ctx.send.send_text(ctx.phone, "📍 This shop hasn't shared its location.")
        await ctx.send.send_buttons(ctx.phone, "Anything else?", [BACK_BUTTON, MENU_BUTTON])
