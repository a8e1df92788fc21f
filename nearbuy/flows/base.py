# nearbuy/flows/base.py
"""
Common machinery for every conversational flow.

A concrete flow declares:

* ``flow``         – its ``FlowType``
* ``Step``         – a ``str`` Enum of every step it can persist
* ``first_step``   – where ``start()`` lands
* ``back_steps``   – step -> predecessor, used by the ``back`` button
* ``step_handlers()`` / ``step_prompts()`` – one coroutine per step

Both tables must cover every ``Step`` member; a gap raises
``IncompleteStepTableError`` when the handler is constructed, so a step that
can be persisted but not handled never reaches production.

``handle()`` runs the global-navigation interceptor, then the back table,
then dispatches on ``session.current_step``.  A step name the flow no longer
knows (left behind by an older deploy) restarts the flow.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, Optional

from nearbuy.domain.errors import IncompleteStepTableError
from nearbuy.domain.flow_types import FlowType
from nearbuy.domain.incoming_message import IncomingMessage, MessageKind
from nearbuy.domain.services.contracts import FlowServices
from nearbuy.domain.services.keyword_matcher import match_keyword, normalize
from nearbuy.domain.services.pii_masking import mask_phone
from nearbuy.flows.context import FlowContext

if TYPE_CHECKING:
    from nearbuy.flows.router import FlowRouter
    from nearbuy.infrastructure.cache.session_store import SessionStore

logger = logging.getLogger("nearbuy.flows.base")

StepHandler = Callable[[FlowContext, IncomingMessage], Awaitable[None]]
StepPrompt = Callable[[FlowContext], Awaitable[None]]

# ── Global navigation tokens ─────────────────────────────────
MENU_TOKENS = frozenset({"menu", "home", "start", "0", "hi", "hello", "main", "reset"})
MENU_BUTTON_IDS = frozenset({"main_menu", "menu"})
CANCEL_TOKENS = frozenset({"cancel", "exit", "quit", "stop", "end"})
HELP_TOKENS = frozenset({"help", "?", "support", "how"})
BACK_ID = "back"

# ── Review step ──────────────────────────────────────────────
REVIEW_CONFIRM = "confirm"
REVIEW_EDIT = "edit"
REVIEW_CANCEL = "cancel"

REVIEW_TEXT = {
    REVIEW_CONFIRM: ("confirm", "create", "yes", "ok", "1"),
    REVIEW_EDIT: ("edit", "change", "2"),
    REVIEW_CANCEL: ("cancel", "no", "3"),
}

MENU_BUTTON = {"id": "main_menu", "title": "🏠 Main Menu"}
BACK_BUTTON = {"id": BACK_ID, "title": "⬅️ Back"}
SKIP_BUTTON = {"id": "skip", "title": "⏭️ Skip"}

HELP_TEXT = (
    "ℹ️ *How this works*\n\n"
    "• Tap the buttons or type your answer\n"
    "• Type *menu* to go to the main menu\n"
    "• Type *cancel* to stop what you are doing\n"
    "• Tap *Back* to change your previous answer"
)
CANCELLED_TEXT = "❌ Cancelled. Nothing was saved."
DEFAULT_INVALID_TEXT = "⚠️ Sorry, I didn't understand that."
UNSUPPORTED_TEXT = "⚠️ Sorry, I can't use that type of message here."
FAILURE_TEXT = "😕 Something went wrong on our side. Let's start this again."
RESUME_TEXT = "👋 Welcome back! Continuing where you left off..."


def review_buttons(confirm_title: str = "✅ Confirm", edit_title: str = "✏️ Edit", cancel_title: str = "❌ Cancel") -> list[dict]:
    return [
        {"id": REVIEW_CONFIRM, "title": confirm_title},
        {"id": REVIEW_EDIT, "title": edit_title},
        {"id": REVIEW_CANCEL, "title": cancel_title},
    ]


class BaseFlowHandler:
    flow: FlowType
    Step: type[Enum]
    first_step: Enum
    back_steps: Mapping[Enum, Enum] = {}

    def __init__(self, store: "SessionStore", services: FlowServices):
        self.store = store
        self.services = services
        self.router: Optional["FlowRouter"] = None
        self._handlers = self.step_handlers()
        self._prompts = self.step_prompts()
        for table_name, table in (("step_handlers", self._handlers), ("step_prompts", self._prompts)):
            missing = [s.value for s in self.Step if s not in table]
            if missing:
                raise IncompleteStepTableError(
                    f"{type(self).__name__}.{table_name} is missing steps: {', '.join(missing)}"
                )

    # ── Declarations (overridden per flow) ────────────────────

    def step_handlers(self) -> dict[Enum, StepHandler]:
        raise NotImplementedError

    def step_prompts(self) -> dict[Enum, StepPrompt]:
        raise NotImplementedError

    # ── Entry ─────────────────────────────────────────────────

    async def start(self, ctx: FlowContext) -> None:
        """Begin (or restart) the flow from its first step with empty temp data."""
        await self.begin(ctx)

    async def begin(self, ctx: FlowContext, step: Enum | None = None, temp_data: dict | None = None) -> None:
        ctx.session.temp_data = dict(temp_data or {})
        await self.store.set_flow_step(ctx.session, self.flow, step or self.first_step)
        await self.prompt_current_step(ctx)

    async def resume(self, ctx: FlowContext) -> None:
        """Greet a returning user; the message that woke the session is still handled."""
        await ctx.send.send_text(ctx.phone, RESUME_TEXT)

    # ── Dispatch ──────────────────────────────────────────────

    def current_step(self, ctx: FlowContext) -> Enum | None:
        try:
            return self.Step(ctx.session.current_step)
        except ValueError:
            return None

    async def handle(self, ctx: FlowContext, message: IncomingMessage) -> None:
        if await self.intercept_navigation(ctx, message):
            return

        step = self.current_step(ctx)
        if step is None:
            logger.warning(
                "Unknown step %r in flow %s for %s, restarting",
                ctx.session.current_step, self.flow.value, mask_phone(ctx.phone),
            )
            await self.start(ctx)
            return

        if self._is_back(message) and step in self.back_steps:
            await self.go_to(ctx, self.back_steps[step])
            return

        await self._handlers[step](ctx, message)

    async def handle_invalid_input(self, ctx: FlowContext, message: IncomingMessage, error: str | None = None) -> None:
        """Re-prompt the current step without touching the session."""
        if error is None:
            error = UNSUPPORTED_TEXT if message.kind == MessageKind.UNSUPPORTED else DEFAULT_INVALID_TEXT
        await ctx.send.send_text(ctx.phone, error)
        await self.prompt_current_step(ctx)

    async def prompt_current_step(self, ctx: FlowContext) -> None:
        step = self.current_step(ctx)
        if step is None:
            await self.start(ctx)
            return
        await self._prompts[step](ctx)

    async def go_to(self, ctx: FlowContext, step: Enum) -> None:
        """Move to ``step`` of this flow and show its prompt."""
        await self.store.set_step(ctx.session, step)
        await self.prompt_current_step(ctx)

    # ── Global navigation ─────────────────────────────────────

    def is_navigation(self, message: IncomingMessage) -> bool:
        text = normalize(message.text_content())
        return (
            message.selection_id() in MENU_BUTTON_IDS
            or text in MENU_TOKENS
            or text in CANCEL_TOKENS
            or text in HELP_TOKENS
        )

    async def intercept_navigation(self, ctx: FlowContext, message: IncomingMessage) -> bool:
        text = normalize(message.text_content())
        if message.selection_id() in MENU_BUTTON_IDS or text in MENU_TOKENS:
            await self.exit_to_main_menu(ctx)
            return True
        if text in CANCEL_TOKENS:
            await ctx.send.send_text(ctx.phone, CANCELLED_TEXT)
            await self.exit_to_main_menu(ctx)
            return True
        if text in HELP_TOKENS:
            await ctx.send.send_text(ctx.phone, HELP_TEXT)
            await self.prompt_current_step(ctx)
            return True
        return False

    def _is_back(self, message: IncomingMessage) -> bool:
        return message.selection_id() == BACK_ID or normalize(message.text_content()) == BACK_ID

    async def exit_to_main_menu(self, ctx: FlowContext) -> None:
        await self.router.show_main_menu(ctx)

    # ── Shared step patterns ──────────────────────────────────

    def selection_or_text(
        self,
        message: IncomingMessage,
        table: Mapping[str, Any],
        id_prefix: str = "",
    ) -> str | None:
        """Canonical value from a tapped id (``id_prefix`` + key) or typed synonym."""
        selection = message.selection_id()
        if selection:
            if id_prefix and selection.startswith(id_prefix):
                selection = selection[len(id_prefix):]
            return selection if selection in table else None
        return match_keyword(message.text_content(), table)

    async def handle_review(
        self,
        ctx: FlowContext,
        message: IncomingMessage,
        on_confirm: Callable[[FlowContext], Awaitable[None]],
        text_table: Mapping[str, tuple] = REVIEW_TEXT,
        ids: Mapping[str, str] | None = None,
    ) -> None:
        """Confirm commits, edit restarts the flow, cancel returns to the menu.

        ``ids`` maps flow-specific button ids onto the three actions.
        """
        choice = None
        selection = message.selection_id()
        if selection:
            choice = (ids or {}).get(selection, selection)
            if choice not in (REVIEW_CONFIRM, REVIEW_EDIT, REVIEW_CANCEL):
                choice = None
        else:
            choice = match_keyword(message.text_content(), text_table)

        if choice == REVIEW_CONFIRM:
            await on_confirm(ctx)
        elif choice == REVIEW_EDIT:
            await self.start(ctx)
        elif choice == REVIEW_CANCEL:
            await ctx.send.send_text(ctx.phone, CANCELLED_TEXT)
            await self.exit_to_main_menu(ctx)
        else:
            await self.handle_invalid_input(ctx, message, "⚠️ Please tap one of the buttons below.")

    async def handle_terminal(
        self,
        ctx: FlowContext,
        message: IncomingMessage,
        choices: Mapping[str, Callable[[FlowContext], Awaitable[None]]],
        text_table: Mapping[str, tuple] | None = None,
    ) -> None:
        """Small "what next" menu on a completed flow; anything else shows the main menu."""
        selection = message.selection_id()
        if selection is None and text_table:
            selection = match_keyword(message.text_content(), text_table)
        action = choices.get(selection) if selection else None
        if action is None:
            await self.exit_to_main_menu(ctx)
            return
        await action(ctx)

    async def complete(self, ctx: FlowContext, terminal_step: Enum) -> None:
        """Clear temp data and park the session on the terminal step in one write."""
        ctx.session.temp_data = {}
        await self.store.set_step(ctx.session, terminal_step)

    async def fail(self, ctx: FlowContext, reason: Any, action: str) -> None:
        """Domain failure at a step boundary: log, tell the user, restart the flow."""
        logger.error(
            "%s failed in %s:%s for %s: %s",
            action, self.flow.value, ctx.session.current_step, mask_phone(ctx.phone), reason,
        )
        await ctx.send.send_text(ctx.phone, FAILURE_TEXT)
        await self.start(ctx)
