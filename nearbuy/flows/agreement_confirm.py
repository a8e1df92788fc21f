# nearbuy/flows/agreement_confirm.py
"""
Agreement confirmation by the counterparty.

Steps handled:
    pending_list      : choose one of several pending agreements
    view_pending      : details of the chosen agreement
    awaiting_confirm  : yes / no / don't know decision
    confirm_done      : "what next" after a decision

Entered three ways: from the menu (``start``), from a notification button
(``start_with_agreement``), or by being seeded at ``awaiting_confirm`` when
the creator confirms.  The counterparty does not need to be registered.
"""

from __future__ import annotations

import logging
from enum import Enum

from nearbuy.domain.flow_types import FlowType
from nearbuy.domain.incoming_message import IncomingMessage
from nearbuy.domain.models import AgreementRecord, ResultKind, ServiceResult
from nearbuy.domain.services.keyword_matcher import match_keyword
from nearbuy.domain.services.pii_masking import mask_phone
from nearbuy.domain.services.validators import format_amount, phones_match
from nearbuy.flows.agreement_create import PURPOSE_TITLES, counterparty_request_text
from nearbuy.flows.base import BACK_BUTTON, MENU_BUTTON, BaseFlowHandler
from nearbuy.flows.context import FlowContext

logger = logging.getLogger("nearbuy.flows.agreement_confirm")


class ConfirmStep(str, Enum):
    PENDING_LIST = "pending_list"
    VIEW_PENDING = "view_pending"
    AWAITING_CONFIRM = "awaiting_confirm"
    CONFIRM_DONE = "confirm_done"


CONFIRM = "confirm"
REJECT = "reject"
UNKNOWN = "unknown"

# "incorrect" contains "correct": reject must be scanned before confirm
DECISIONS = {
    UNKNOWN: ("unknown", "dont know", "don't know", "not sure", "3"),
    REJECT: ("reject", "incorrect", "wrong", "no", "2"),
    CONFIRM: ("yes", "confirm", "correct", "ok", "1"),
}

DONE_TEXT = {
    "more_pending": ("more", "pending", "next"),
    "my_agreements": ("my agreements", "list"),
    "register": ("register", "join"),
}

NOT_AVAILABLE_TEXT = "⚠️ This agreement is no longer available."


def decision_buttons() -> list[dict]:
    return [
        {"id": CONFIRM, "title": "✅ Yes, Confirm"},
        {"id": REJECT, "title": "❌ Incorrect"},
        {"id": UNKNOWN, "title": "❓ Don't Know"},
    ]


class AgreementConfirmHandler(BaseFlowHandler):
    flow = FlowType.AGREEMENT_CONFIRM
    Step = ConfirmStep
    first_step = ConfirmStep.PENDING_LIST
    back_steps = {
        ConfirmStep.VIEW_PENDING: ConfirmStep.PENDING_LIST,
    }

    def step_handlers(self):
        return {
            ConfirmStep.PENDING_LIST: self._on_pending_list,
            ConfirmStep.VIEW_PENDING: self._on_view_pending,
            ConfirmStep.AWAITING_CONFIRM: self._on_awaiting_confirm,
            ConfirmStep.CONFIRM_DONE: self._on_done,
        }

    def step_prompts(self):
        return {
            ConfirmStep.PENDING_LIST: self._show_pending_list,
            ConfirmStep.VIEW_PENDING: self._show_pending_detail,
            ConfirmStep.AWAITING_CONFIRM: self._ask_decision,
            ConfirmStep.CONFIRM_DONE: self._show_done,
        }

    # ── Entry points ─────────────────────────────────────────

    async def start(self, ctx: FlowContext) -> None:
        pending = await self.services.agreements.list_pending_for_phone(ctx.phone)
        if not pending:
            await self.store.reset_to_main_menu(ctx.session)
            buttons = [MENU_BUTTON]
            if ctx.user is not None:
                buttons.insert(0, {"id": "my_agreements", "title": "📋 My Agreements"})
            await ctx.send.send_buttons(ctx.phone, "✅ You have no agreements waiting for your confirmation.", buttons)
            return
        if len(pending) == 1:
            await self.start_with_agreement(ctx, pending[0].id)
            return
        await self.begin(ctx)

    async def start_with_agreement(self, ctx: FlowContext, agreement_id: int, action: str | None = None) -> None:
        """Jump to the decision for one agreement; ``action`` applies it immediately."""
        agreement = await self._load_actionable(ctx, agreement_id)
        if agreement is None:
            return
        ctx.session.temp_data = {"confirm_agreement_id": agreement.id}
        await self.store.set_flow_step(ctx.session, self.flow, ConfirmStep.AWAITING_CONFIRM)
        if action in (CONFIRM, REJECT, UNKNOWN):
            await self._apply_decision(ctx, agreement, action)
            return
        await self._ask_decision(ctx)

    async def _load_actionable(self, ctx: FlowContext, agreement_id) -> AgreementRecord | None:
        result = await self.services.agreements.get_agreement(int(agreement_id))
        agreement = result.value
        if (
            not result.is_ok
            or not phones_match(agreement.counterparty_phone, ctx.phone)
            or not agreement.is_pending
        ):
            await self._not_available(ctx, result)
            return None
        return agreement

    async def _not_available(self, ctx: FlowContext, result: ServiceResult | None = None) -> None:
        if result is not None and result.kind == ResultKind.ERROR:
            logger.error("Agreement lookup failed for %s: %s", mask_phone(ctx.phone), result.message)
        text = NOT_AVAILABLE_TEXT
        if result is not None and result.kind == ResultKind.NOT_ACTIONABLE and result.message:
            text += f"\n\n{result.message}"
        await self.store.reset_to_main_menu(ctx.session)
        await ctx.send.send_buttons(
            ctx.phone,
            text,
            [{"id": "pending_agreements", "title": "📋 Other Pending"}, MENU_BUTTON],
        )

    # ── pending_list ─────────────────────────────────────────

    async def _show_pending_list(self, ctx: FlowContext) -> None:
        pending = await self.services.agreements.list_pending_for_phone(ctx.phone)
        if not pending:
            await self.start(ctx)
            return
        rows = [
            {
                "id": f"pending_{a.id}",
                "title": f"{format_amount(a.amount)} - {a.creator_name}"[:24],
                "description": f"{PURPOSE_TITLES.get(a.purpose, a.purpose)} · {a.agreement_number}",
            }
            for a in pending[:10]
        ]
        await ctx.send.send_list(
            ctx.phone,
            f"📋 You have *{len(pending)}* agreements waiting for your confirmation.",
            "View Agreements",
            [{"title": "Pending", "rows": rows}],
        )

    async def _on_pending_list(self, ctx: FlowContext, message: IncomingMessage) -> None:
        pending = await self.services.agreements.list_pending_for_phone(ctx.phone)
        chosen = None
        selection = message.selection_id()
        if selection and selection.startswith("pending_"):
            chosen = next((a for a in pending if f"pending_{a.id}" == selection), None)
        else:
            text = (message.text_content() or "").strip()
            if text.isdigit() and 1 <= int(text) <= len(pending):
                chosen = pending[int(text) - 1]
        if chosen is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please pick an agreement from the list.")
            return
        ctx.temp["confirm_agreement_id"] = chosen.id
        await self.go_to(ctx, ConfirmStep.VIEW_PENDING)

    # ── view_pending ─────────────────────────────────────────

    async def _show_pending_detail(self, ctx: FlowContext) -> None:
        agreement = await self._load_actionable(ctx, ctx.temp.get("confirm_agreement_id", 0))
        if agreement is None:
            return
        await ctx.send.send_buttons(
            ctx.phone,
            counterparty_request_text(agreement),
            [{"id": "respond", "title": "✍️ Respond"}, BACK_BUTTON, MENU_BUTTON],
        )

    async def _on_view_pending(self, ctx: FlowContext, message: IncomingMessage) -> None:
        if message.selection_id() == "respond" or match_keyword(message.text_content(), {"respond": ("respond", "reply")}):
            await self.go_to(ctx, ConfirmStep.AWAITING_CONFIRM)
            return
        # A decision typed straight away is accepted too
        decision = self._decision(message)
        if decision is not None:
            agreement = await self._load_actionable(ctx, ctx.temp.get("confirm_agreement_id", 0))
            if agreement is not None:
                await self.store.set_step(ctx.session, ConfirmStep.AWAITING_CONFIRM)
                await self._apply_decision(ctx, agreement, decision)
            return
        await self.handle_invalid_input(ctx, message)

    # ── awaiting_confirm ─────────────────────────────────────

    async def _ask_decision(self, ctx: FlowContext) -> None:
        agreement = await self._load_actionable(ctx, ctx.temp.get("confirm_agreement_id", 0))
        if agreement is None:
            return
        await ctx.send.send_buttons(ctx.phone, counterparty_request_text(agreement), decision_buttons())

    def _decision(self, message: IncomingMessage) -> str | None:
        selection = message.selection_id()
        if selection:
            return selection if selection in (CONFIRM, REJECT, UNKNOWN) else None
        return match_keyword(message.text_content(), DECISIONS)

    async def _on_awaiting_confirm(self, ctx: FlowContext, message: IncomingMessage) -> None:
        decision = self._decision(message)
        if decision is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please reply *yes*, *no* or *don't know*.")
            return
        agreement = await self._load_actionable(ctx, ctx.temp.get("confirm_agreement_id", 0))
        if agreement is None:
            return
        await self._apply_decision(ctx, agreement, decision)

    async def _apply_decision(self, ctx: FlowContext, agreement: AgreementRecord, decision: str) -> None:
        service = self.services.agreements
        if decision == CONFIRM:
            result = await service.confirm_by_counterparty(agreement.id, ctx.phone)
        elif decision == REJECT:
            result = await service.reject_by_counterparty(agreement.id, ctx.phone)
        else:
            result = await service.dispute_by_counterparty(agreement.id, ctx.phone)

        if result.kind in (ResultKind.NOT_FOUND, ResultKind.NOT_ACTIONABLE):
            await self._not_available(ctx, result)
            return
        if not result.is_ok:
            await self.fail(ctx, result.message, f"{decision}_agreement")
            return

        updated = result.value or agreement
        logger.info(
            "Agreement %s %s by %s", updated.agreement_number, decision, mask_phone(ctx.phone)
        )
        pdf_url = None
        if decision == CONFIRM:
            pdf_url = await self._send_pdf(ctx, updated)
        await self._notify_creator(ctx, updated, decision, pdf_url)
        await self.complete(ctx, ConfirmStep.CONFIRM_DONE)

        if decision == CONFIRM:
            text = f"✅ *Agreement confirmed!*\n\nRef: {updated.agreement_number}\n{updated.creator_name} has been notified."
        elif decision == REJECT:
            text = f"❌ Marked as incorrect. {updated.creator_name} has been notified."
        else:
            text = f"❓ Noted. {updated.creator_name} has been told you don't recognise this agreement."
        await ctx.send.send_text(ctx.phone, text)
        await self._show_done(ctx)

    async def _send_pdf(self, ctx: FlowContext, agreement: AgreementRecord) -> str | None:
        pdf = await self.services.agreements.generate_pdf(agreement.id)
        if not pdf.is_ok:
            logger.warning("PDF generation failed for %s: %s", agreement.agreement_number, pdf.message)
            await ctx.send.send_text(ctx.phone, "📄 The agreement PDF isn't ready yet. You'll find it under My Agreements.")
            return None
        await ctx.send.send_document(
            ctx.phone,
            pdf.value,
            filename=f"agreement_{agreement.agreement_number}.pdf",
            caption=f"📄 Agreement {agreement.agreement_number}",
        )
        return pdf.value

    async def _notify_creator(self, ctx: FlowContext, agreement: AgreementRecord, decision: str, pdf_url: str | None) -> None:
        who = agreement.counterparty_name
        amount = format_amount(agreement.amount)
        if decision == CONFIRM:
            text = f"✅ *{who}* confirmed your agreement of {amount}.\nRef: {agreement.agreement_number}"
        elif decision == REJECT:
            text = f"❌ *{who}* says your agreement of {amount} is incorrect.\nRef: {agreement.agreement_number}"
        else:
            text = f"❓ *{who}* doesn't recognise your agreement of {amount}.\nRef: {agreement.agreement_number}"
        try:
            await ctx.send.send_text(agreement.creator_phone, text)
            if pdf_url:
                await ctx.send.send_document(
                    agreement.creator_phone, pdf_url, filename=f"agreement_{agreement.agreement_number}.pdf"
                )
        except Exception:
            logger.exception("Could not notify creator %s", mask_phone(agreement.creator_phone))

    # ── confirm_done ─────────────────────────────────────────

    async def _show_done(self, ctx: FlowContext) -> None:
        second = (
            {"id": "my_agreements", "title": "📋 My Agreements"}
            if ctx.user is not None
            else {"id": "register", "title": "📝 Register"}
        )
        await ctx.send.send_buttons(
            ctx.phone,
            "What would you like to do next?",
            [{"id": "more_pending", "title": "📋 More Pending"}, second, MENU_BUTTON],
        )

    async def _on_done(self, ctx: FlowContext, message: IncomingMessage) -> None:
        await self.handle_terminal(
            ctx,
            message,
            {
                "more_pending": self.start,
                "my_agreements": lambda c: self.router.start_flow(c, FlowType.AGREEMENT_LIST),
                "register": lambda c: self.router.start_flow(c, FlowType.REGISTRATION),
            },
            DONE_TEXT,
        )
