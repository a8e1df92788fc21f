# nearbuy/flows/router.py
"""
Flow registry and the single top-level error boundary.

``process()`` is what the webhook (or the arq job) calls for every inbound
message: it serialises work per phone through the session store lock,
de-duplicates redeliveries, builds the ``FlowContext`` and routes.  A message
id is only recorded once routing finished, so a delivery that failed before
reaching a flow is handled again when redelivered.  Nothing raised by
a flow escapes ``route()``; the session is forced back to the main menu and
the user always gets some reply.
"""

from __future__ import annotations

import contextvars
import logging
import re
from typing import Any, NamedTuple, Optional

from nearbuy.domain.errors import SessionLockTimeout, UnknownFlowError
from nearbuy.domain.flow_types import FlowType
from nearbuy.domain.incoming_message import IncomingMessage
from nearbuy.domain.services.contracts import FlowServices, MessageSender
from nearbuy.domain.services.pii_masking import mask_for_log, mask_phone
from nearbuy.domain.session import ConversationSession
from nearbuy.flows.context import FlowContext

logger = logging.getLogger("nearbuy.flows.router")

# Notification buttons that jump straight into another flow
PRODUCT_RESPONSE_RE = re.compile(r"^respond_(yes|no)_(\d+)$")
AGREEMENT_DECISION_RE = re.compile(r"^agree_(confirm|reject|unknown)_(\d+)$")

MAIN_MENU_IDS = {"main_menu", "menu", "retry"}

# selection id -> (flow, entry point on that flow's handler)
MENU_ROUTES: dict[str, tuple[FlowType, str]] = {
    "register": (FlowType.REGISTRATION, "start"),
    "browse_offers": (FlowType.OFFERS_BROWSE, "start"),
    "upload_offer": (FlowType.OFFERS_UPLOAD, "start"),
    "my_offers": (FlowType.OFFERS_MANAGE, "start"),
    "search_product": (FlowType.PRODUCT_SEARCH, "start"),
    "my_requests": (FlowType.PRODUCT_SEARCH, "start_my_requests"),
    "product_requests": (FlowType.PRODUCT_RESPOND, "start"),
    "create_agreement": (FlowType.AGREEMENT_CREATE, "start"),
    "my_agreements": (FlowType.AGREEMENT_LIST, "start"),
    "pending_agreements": (FlowType.AGREEMENT_CONFIRM, "start"),
    "settings": (FlowType.SETTINGS, "start"),
    "shop_profile": (FlowType.SETTINGS, "start_shop_profile"),
    "fish_post_catch": (FlowType.FISH_POST_CATCH, "start"),
    "fish_browse": (FlowType.FISH_BROWSE, "start"),
    "become_worker": (FlowType.WORKER_REGISTRATION, "start"),
}

APOLOGY_TEXT = "😔 Sorry, something went wrong. Please try again."
BUSY_TEXT = "⏳ Still working on your previous message. Please send that again in a moment."
REGISTER_FIRST_TEXT = "📝 Please register first to use this feature. It only takes a minute!"
SHOP_ONLY_TEXT = "🏪 This feature is only for registered shop owners."
FISH_SELLER_ONLY_TEXT = "🐟 This feature is only for registered fish sellers."
UNKNOWN_OPTION_TEXT = "⚠️ That option isn't available. Here is the main menu."


class _Seed(NamedTuple):
    phone: str
    flow: FlowType
    step: Any
    temp_data: Optional[dict]


class _SeedQueue:
    """Seeds requested while ``owner``'s lock is held, applied once it is released."""

    def __init__(self, owner: str):
        self.owner = owner
        self.seeds: list[_Seed] = []


_pending_seeds: contextvars.ContextVar[Optional[_SeedQueue]] = contextvars.ContextVar(
    "nearbuy_pending_seeds", default=None
)


class FlowRouter:
    def __init__(self, store, services: FlowServices, sender: MessageSender):
        self.store = store
        self.services = services
        self.sender = sender
        self._handlers: dict[FlowType, Any] = {}

    # ── Registry ──────────────────────────────────────────────

    def register(self, handler) -> None:
        handler.router = self
        self._handlers[handler.flow] = handler

    def handler_for(self, flow: FlowType):
        try:
            return self._handlers[flow]
        except KeyError:
            raise UnknownFlowError(f"no handler registered for {flow}") from None

    @property
    def main_menu(self):
        return self.handler_for(FlowType.MAIN_MENU)

    # ── Inbound entry point ───────────────────────────────────

    async def process(self, message: IncomingMessage) -> None:
        """Handle one inbound message end to end.  Never raises."""
        phone = message.phone
        queue = _SeedQueue(phone)
        token = _pending_seeds.set(queue)
        try:
            async with self.store.locked(phone):
                if await self.store.was_processed(message.message_id):
                    logger.info("Duplicate delivery %s from %s ignored", message.message_id, mask_phone(phone))
                    return
                session = await self.store.get(phone)
                resumed = not session.is_idle and not session.seeded and self.store.is_soft_expired(session)
                session.seeded = False
                self.store.touch(session)
                user = await self.services.users.get_by_phone(phone)
                session.user_id = user.id if user else session.user_id
                await self.store.save(session)
                ctx = FlowContext(session=session, user=user, send=self.sender)
                await self.route(message, ctx, resumed=resumed)
                await self.store.mark_processed(message.message_id)
        except SessionLockTimeout as exc:
            logger.warning("Session busy for %s: %s", mask_phone(phone), exc)
            await self._safe_send_text(phone, BUSY_TEXT)
        except Exception:
            # Failures before a context exists (store unreachable, user lookup)
            logger.exception("Inbound processing failed for %s", mask_phone(phone))
            await self._safe_send_text(phone, APOLOGY_TEXT)
        finally:
            _pending_seeds.reset(token)
        await self._apply_seeds(queue.seeds)

    async def route(self, message: IncomingMessage, ctx: FlowContext, resumed: bool = False) -> None:
        session = ctx.session
        try:
            if await self._intercept_deep_link(ctx, message):
                return

            handler = self._handlers.get(session.flow) if session.flow else None
            if handler is None:
                if not session.is_idle:
                    logger.warning(
                        "Unknown flow %r for %s, falling back to main menu",
                        session.current_flow, mask_phone(ctx.phone),
                    )
                    await self.store.reset_to_main_menu(session)
                handler = self.main_menu
            elif not self._has_access(ctx, handler.flow):
                # e.g. the account was deactivated mid-flow
                await self.store.reset_to_main_menu(session)
                handler = self.main_menu

            if resumed and handler is not self.main_menu and not handler.is_navigation(message):
                await handler.resume(ctx)

            await handler.handle(ctx, message)
        except Exception as exc:
            await self._recover(ctx, message, exc)

    async def _recover(self, ctx: FlowContext, message: IncomingMessage, exc: Exception) -> None:
        session = ctx.session
        logger.exception(
            "Flow error for %s in %s:%s on %s message %r: %s",
            mask_phone(ctx.phone),
            session.current_flow,
            session.current_step,
            message.kind.value,
            mask_for_log(message.text_content() or message.selection_id() or ""),
            exc,
        )
        try:
            await self.store.reset_to_main_menu(session)
            await self.sender.send_buttons(
                ctx.phone,
                APOLOGY_TEXT,
                [{"id": "retry", "title": "🔄 Try Again"}, {"id": "main_menu", "title": "🏠 Main Menu"}],
            )
        except Exception:
            logger.exception("Recovery failed for %s", mask_phone(ctx.phone))

    async def _safe_send_text(self, phone: str, body: str) -> None:
        try:
            await self.sender.send_text(phone, body)
        except Exception:
            logger.exception("Could not notify %s", mask_phone(phone))

    # ── Deep links from notification buttons ──────────────────

    async def _intercept_deep_link(self, ctx: FlowContext, message: IncomingMessage) -> bool:
        selection = message.selection_id()
        if not selection:
            return False

        match = PRODUCT_RESPONSE_RE.match(selection)
        if match:
            action, request_id = match.group(1), int(match.group(2))
            await self.start_flow(ctx, FlowType.PRODUCT_RESPOND, "start_with_request", request_id, action)
            return True

        match = AGREEMENT_DECISION_RE.match(selection)
        if match:
            action, agreement_id = match.group(1), int(match.group(2))
            await self.start_flow(ctx, FlowType.AGREEMENT_CONFIRM, "start_with_agreement", agreement_id, action)
            return True

        return False

    # ── Explicit entry ────────────────────────────────────────

    def _has_access(self, ctx: FlowContext, flow: FlowType) -> bool:
        user = ctx.user
        if flow.requires_auth and user is None:
            return False
        if flow.is_shop_only and not (user and user.is_shop_owner()):
            return False
        if flow.is_fish_seller_only and not (user and user.is_fish_seller()):
            return False
        return True

    async def _deny(self, ctx: FlowContext, flow: FlowType) -> None:
        await self.store.reset_to_main_menu(ctx.session)
        if ctx.user is None:
            await ctx.send.send_buttons(
                ctx.phone,
                REGISTER_FIRST_TEXT,
                [{"id": "register", "title": "📝 Register"}, {"id": "main_menu", "title": "🏠 Main Menu"}],
            )
            return
        text = FISH_SELLER_ONLY_TEXT if flow.is_fish_seller_only else SHOP_ONLY_TEXT
        await ctx.send.send_text(ctx.phone, text)
        await self.main_menu.start(ctx)

    async def start_flow(self, ctx: FlowContext, flow: FlowType, entry: str = "start", *args) -> bool:
        """Enter ``flow`` through ``entry`` after the role guards pass."""
        handler = self.handler_for(flow)
        if not self._has_access(ctx, flow):
            logger.info("Access to %s denied for %s", flow.value, mask_phone(ctx.phone))
            await self._deny(ctx, flow)
            return False
        await getattr(handler, entry)(ctx, *args)
        return True

    async def handle_menu_selection(self, ctx: FlowContext, selection_id: str) -> None:
        logger.info("Menu selection %s from %s", selection_id, mask_phone(ctx.phone))
        if selection_id in MAIN_MENU_IDS:
            await self.show_main_menu(ctx)
            return
        if selection_id == "about":
            await self.main_menu.show_about(ctx)
            return
        route = MENU_ROUTES.get(selection_id)
        if route is None:
            await ctx.send.send_text(ctx.phone, UNKNOWN_OPTION_TEXT)
            await self.show_main_menu(ctx)
            return
        flow, entry = route
        await self.start_flow(ctx, flow, entry)

    async def show_main_menu(self, ctx: FlowContext) -> None:
        await self.store.reset_to_main_menu(ctx.session)
        await self.main_menu.start(ctx)

    # ── Cross-session trigger ─────────────────────────────────

    async def seed_session(
        self,
        target_phone: str,
        flow: FlowType,
        step,
        temp_data: Optional[dict] = None,
    ) -> Optional[ConversationSession]:
        """Put ``target_phone`` straight into (flow, step), replacing whatever it was doing.

        Called while another phone's lock is held, the seed is queued and
        applied after that lock is released, so two users seeding each other
        never wait on each other's locks.  Returns the session only when the
        seed was applied immediately.
        """
        self.handler_for(flow)
        queue = _pending_seeds.get()
        if queue is not None and queue.owner != target_phone:
            queue.seeds.append(_Seed(target_phone, flow, step, temp_data))
            return None
        return await self.store.seed_session(target_phone, flow, step, temp_data)

    async def _apply_seeds(self, seeds: list[_Seed]) -> None:
        for seed in seeds:
            try:
                await self.store.seed_session(seed.phone, seed.flow, seed.step, seed.temp_data)
            except Exception:
                logger.exception(
                    "Could not seed %s into %s:%s", mask_phone(seed.phone), seed.flow.value, getattr(seed.step, "value", seed.step)
                )
