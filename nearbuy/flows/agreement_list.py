# nearbuy/flows/agreement_list.py
"""My Agreements: list the user's agreements and open one for details / PDF."""

from __future__ import annotations

import logging
from enum import Enum

from nearbuy.domain.flow_types import FlowType
from nearbuy.domain.incoming_message import IncomingMessage
from nearbuy.domain.models import AgreementRecord, AgreementStatus
from nearbuy.domain.services.keyword_matcher import match_keyword
from nearbuy.domain.services.validators import format_amount, phones_match
from nearbuy.flows.agreement_create import PURPOSE_TITLES
from nearbuy.flows.base import BACK_BUTTON, MENU_BUTTON, BaseFlowHandler
from nearbuy.flows.context import FlowContext

logger = logging.getLogger("nearbuy.flows.agreement_list")

LIST_LIMIT = 10

STATUS_ICONS = {
    AgreementStatus.PENDING.value: "⏳",
    AgreementStatus.CONFIRMED.value: "✅",
    AgreementStatus.REJECTED.value: "❌",
    AgreementStatus.DISPUTED.value: "❓",
    AgreementStatus.EXPIRED.value: "⌛",
}

DETAIL_TEXT = {
    "download_pdf": ("pdf", "download"),
}


class ListStep(str, Enum):
    SHOW_LIST = "show_list"
    VIEW_AGREEMENT = "view_agreement"


def agreement_row(agreement: AgreementRecord, viewer_phone: str) -> dict:
    icon = STATUS_ICONS.get(agreement.status, "•")
    other = agreement.creator_name if phones_match(agreement.counterparty_phone, viewer_phone) else agreement.counterparty_name
    return {
        "id": f"agreement_{agreement.id}",
        "title": f"{icon} {format_amount(agreement.amount)}"[:24],
        "description": f"{other} · {agreement.agreement_number}"[:72],
    }


def agreement_detail_text(agreement: AgreementRecord, viewer_phone: str) -> str:
    i_am_counterparty = phones_match(agreement.counterparty_phone, viewer_phone)
    giving = agreement.direction == "giving"
    if i_am_counterparty:
        giving = not giving
        other = agreement.creator_name
    else:
        other = agreement.counterparty_name
    direction = f"💸 You gave to {other}" if giving else f"💰 You received from {other}"
    due = agreement.due_date.strftime("%d %b %Y") if agreement.due_date else "No fixed date"
    lines = [
        f"📝 *Agreement {agreement.agreement_number}*",
        "",
        direction,
        f"Amount: *{format_amount(agreement.amount)}*",
        f"Purpose: {PURPOSE_TITLES.get(agreement.purpose, agreement.purpose)}",
    ]
    if agreement.description:
        lines.append(f"Description: {agreement.description}")
    lines.append(f"Due date: {due}")
    lines.append(f"Status: {STATUS_ICONS.get(agreement.status, '')} {agreement.status.title()}")
    return "\n".join(lines)


class AgreementListHandler(BaseFlowHandler):
    flow = FlowType.AGREEMENT_LIST
    Step = ListStep
    first_step = ListStep.SHOW_LIST
    back_steps = {
        ListStep.VIEW_AGREEMENT: ListStep.SHOW_LIST,
    }

    def step_handlers(self):
        return {
            ListStep.SHOW_LIST: self._on_list,
            ListStep.VIEW_AGREEMENT: self._on_view,
        }

    def step_prompts(self):
        return {
            ListStep.SHOW_LIST: self._show_list,
            ListStep.VIEW_AGREEMENT: self._show_agreement,
        }

    async def _agreements(self, ctx: FlowContext) -> list[AgreementRecord]:
        return (await self.services.agreements.list_for_user(ctx.user))[:LIST_LIMIT]

    async def _show_list(self, ctx: FlowContext) -> None:
        agreements = await self._agreements(ctx)
        if not agreements:
            await self.store.reset_to_main_menu(ctx.session)
            await ctx.send.send_buttons(
                ctx.phone,
                "📋 You don't have any agreements yet.",
                [{"id": "create_agreement", "title": "📝 New Agreement"}, MENU_BUTTON],
            )
            return
        await ctx.send.send_list(
            ctx.phone,
            f"📋 *Your agreements* ({len(agreements)})\n\nSelect one to see the details.",
            "View",
            [{"title": "Agreements", "rows": [agreement_row(a, ctx.phone) for a in agreements]}],
        )

    async def _on_list(self, ctx: FlowContext, message: IncomingMessage) -> None:
        agreements = await self._agreements(ctx)
        chosen = None
        selection = message.selection_id()
        if selection and selection.startswith("agreement_"):
            chosen = next((a for a in agreements if f"agreement_{a.id}" == selection), None)
        else:
            text = (message.text_content() or "").strip()
            if text.isdigit() and 1 <= int(text) <= len(agreements):
                chosen = agreements[int(text) - 1]
        if chosen is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please pick an agreement from the list.")
            return
        ctx.temp["view_agreement_id"] = chosen.id
        await self.go_to(ctx, ListStep.VIEW_AGREEMENT)

    async def _load(self, ctx: FlowContext) -> AgreementRecord | None:
        result = await self.services.agreements.get_agreement(int(ctx.temp.get("view_agreement_id", 0)))
        if not result.is_ok:
            return None
        return result.value

    async def _show_agreement(self, ctx: FlowContext) -> None:
        agreement = await self._load(ctx)
        if agreement is None:
            await ctx.send.send_text(ctx.phone, "⚠️ That agreement could not be found.")
            await self.start(ctx)
            return
        buttons = [BACK_BUTTON, MENU_BUTTON]
        if agreement.status == AgreementStatus.CONFIRMED.value:
            buttons.insert(0, {"id": "download_pdf", "title": "📄 Download PDF"})
        await ctx.send.send_buttons(ctx.phone, agreement_detail_text(agreement, ctx.phone), buttons)

    async def _on_view(self, ctx: FlowContext, message: IncomingMessage) -> None:
        choice = message.selection_id() or match_keyword(message.text_content(), DETAIL_TEXT)
        if choice != "download_pdf":
            await self.handle_invalid_input(ctx, message)
            return
        agreement = await self._load(ctx)
        if agreement is None or agreement.status != AgreementStatus.CONFIRMED.value:
            await self.handle_invalid_input(ctx, message, "⚠️ A PDF is only available for confirmed agreements.")
            return
        pdf = await self.services.agreements.generate_pdf(agreement.id)
        if not pdf.is_ok:
            logger.warning("PDF unavailable for %s: %s", agreement.agreement_number, pdf.message)
            await self.handle_invalid_input(ctx, message, "😕 The PDF isn't available right now. Please try later.")
            return
        await ctx.send.send_document(
            ctx.phone, pdf.value, filename=f"agreement_{agreement.agreement_number}.pdf"
        )
        await self.prompt_current_step(ctx)
