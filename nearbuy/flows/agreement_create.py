# nearbuy/flows/agreement_create.py
"""
Agreement creation: a registered user records money given to / received
from someone else, who may not be registered.

Steps:
    ask_direction → ask_amount → ask_name → ask_phone → ask_purpose
    → ask_description (optional) → ask_due_date → review → done

On confirm the agreement is created and the counterparty's session is seeded
straight into ``agreement_confirm:awaiting_confirm`` so their next reply
("yes", "no", ...) is read as the decision, even if they never messaged us.
"""

from __future__ import annotations

import calendar
import logging
from datetime import date, timedelta
from enum import Enum

from nearbuy.domain.flow_types import FlowType
from nearbuy.domain.incoming_message import IncomingMessage
from nearbuy.domain.models import AgreementRecord
from nearbuy.domain.services.pii_masking import mask_phone
from nearbuy.domain.services.validators import (
    DESCRIPTION_MAX_LENGTH,
    format_amount,
    is_skip,
    normalize_phone,
    parse_amount,
    phones_match,
    validate_description,
    validate_name,
)
from nearbuy.flows.base import (
    BACK_BUTTON,
    MENU_BUTTON,
    SKIP_BUTTON,
    BaseFlowHandler,
    review_buttons,
)
from nearbuy.flows.context import FlowContext

logger = logging.getLogger("nearbuy.flows.agreement_create")


class AgreementStep(str, Enum):
    ASK_DIRECTION = "ask_direction"
    ASK_AMOUNT = "ask_amount"
    ASK_NAME = "ask_name"
    ASK_PHONE = "ask_phone"
    ASK_PURPOSE = "ask_purpose"
    ASK_DESCRIPTION = "ask_description"
    ASK_DUE_DATE = "ask_due_date"
    REVIEW = "review"
    DONE = "done"


DIRECTIONS = {
    "giving": ("giving", "give", "gave", "lent", "1"),
    "receiving": ("receiving", "receive", "received", "borrowed", "got", "2"),
}

PURPOSES = {
    "loan": ("loan", "lend", "borrow"),
    "advance": ("advance", "salary"),
    "deposit": ("deposit", "security", "rent"),
    "business": ("business", "work", "trade"),
    "personal": ("personal", "friend", "family"),
    "other": ("other",),
}

PURPOSE_TITLES = {
    "loan": "💵 Loan",
    "advance": "💼 Advance Payment",
    "deposit": "🏠 Deposit",
    "business": "🤝 Business",
    "personal": "👨‍👩‍👧 Personal",
    "other": "📄 Other",
}

# Specific phrases before the generic "week" / "month"
DUE_DATES = {
    "2weeks": ("2 weeks", "2weeks", "two weeks", "fortnight"),
    "1week": ("1 week", "1week", "one week", "week"),
    "3months": ("3 months", "3months", "three months"),
    "6months": ("6 months", "6months", "six months"),
    "1month": ("1 month", "1month", "one month", "month"),
    "none": ("none", "no due", "no date", "no deadline", "no"),
}

DUE_DATE_TITLES = {
    "1week": "📅 1 Week",
    "2weeks": "📅 2 Weeks",
    "1month": "📅 1 Month",
    "3months": "📅 3 Months",
    "6months": "📅 6 Months",
    "none": "♾️ No Fixed Date",
}

DONE_TEXT = {
    "create_another": ("another", "new", "again"),
    "my_agreements": ("my agreements", "list", "view"),
}


def _add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def due_date_for(selection: str, today: date | None = None) -> date | None:
    today = today or date.today()
    if selection == "1week":
        return today + timedelta(days=7)
    if selection == "2weeks":
        return today + timedelta(days=14)
    if selection == "1month":
        return _add_months(today, 1)
    if selection == "3months":
        return _add_months(today, 3)
    if selection == "6months":
        return _add_months(today, 6)
    return None


def counterparty_request_text(agreement: AgreementRecord) -> str:
    # Direction is stored from the creator's side; flip it for the reader
    if agreement.direction == "giving":
        line = f"*{agreement.creator_name}* says they gave you *{format_amount(agreement.amount)}*."
    else:
        line = f"*{agreement.creator_name}* says they received *{format_amount(agreement.amount)}* from you."
    due = agreement.due_date.strftime("%d %b %Y") if agreement.due_date else "No fixed date"
    return (
        "📝 *Agreement Confirmation Request*\n\n"
        f"{line}\n\n"
        f"📋 Purpose: {PURPOSE_TITLES.get(agreement.purpose, agreement.purpose)}\n"
        f"📅 Due: {due}\n"
        f"🔖 Ref: {agreement.agreement_number}\n\n"
        "Is this correct?"
    )


def counterparty_buttons(agreement_id: int) -> list[dict]:
    return [
        {"id": f"agree_confirm_{agreement_id}", "title": "✅ Yes, Confirm"},
        {"id": f"agree_reject_{agreement_id}", "title": "❌ Incorrect"},
        {"id": f"agree_unknown_{agreement_id}", "title": "❓ Don't Know"},
    ]


class AgreementCreateHandler(BaseFlowHandler):
    flow = FlowType.AGREEMENT_CREATE
    Step = AgreementStep
    first_step = AgreementStep.ASK_DIRECTION
    back_steps = {
        AgreementStep.ASK_AMOUNT: AgreementStep.ASK_DIRECTION,
        AgreementStep.ASK_NAME: AgreementStep.ASK_AMOUNT,
        AgreementStep.ASK_PHONE: AgreementStep.ASK_NAME,
        AgreementStep.ASK_PURPOSE: AgreementStep.ASK_PHONE,
        AgreementStep.ASK_DESCRIPTION: AgreementStep.ASK_PURPOSE,
        AgreementStep.ASK_DUE_DATE: AgreementStep.ASK_DESCRIPTION,
        AgreementStep.REVIEW: AgreementStep.ASK_DUE_DATE,
    }

    def step_handlers(self):
        return {
            AgreementStep.ASK_DIRECTION: self._on_direction,
            AgreementStep.ASK_AMOUNT: self._on_amount,
            AgreementStep.ASK_NAME: self._on_name,
            AgreementStep.ASK_PHONE: self._on_phone,
            AgreementStep.ASK_PURPOSE: self._on_purpose,
            AgreementStep.ASK_DESCRIPTION: self._on_description,
            AgreementStep.ASK_DUE_DATE: self._on_due_date,
            AgreementStep.REVIEW: self._on_review,
            AgreementStep.DONE: self._on_done,
        }

    def step_prompts(self):
        return {
            AgreementStep.ASK_DIRECTION: self._ask_direction,
            AgreementStep.ASK_AMOUNT: self._ask_amount,
            AgreementStep.ASK_NAME: self._ask_name,
            AgreementStep.ASK_PHONE: self._ask_phone,
            AgreementStep.ASK_PURPOSE: self._ask_purpose,
            AgreementStep.ASK_DESCRIPTION: self._ask_description,
            AgreementStep.ASK_DUE_DATE: self._ask_due_date,
            AgreementStep.REVIEW: self._show_review,
            AgreementStep.DONE: self._show_done,
        }

    # ── ask_direction ────────────────────────────────────────

    async def _ask_direction(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            "📝 *New Agreement*\n\nAre you giving money or receiving money?",
            [
                {"id": "giving", "title": "💸 Giving Money"},
                {"id": "receiving", "title": "💰 Receiving Money"},
                MENU_BUTTON,
            ],
        )

    async def _on_direction(self, ctx: FlowContext, message: IncomingMessage) -> None:
        direction = self.selection_or_text(message, DIRECTIONS)
        if direction is None:
            await self.handle_invalid_input(ctx, message)
            return
        ctx.temp["direction"] = direction
        await self.go_to(ctx, AgreementStep.ASK_AMOUNT)

    # ── ask_amount ───────────────────────────────────────────

    async def _ask_amount(self, ctx: FlowContext) -> None:
        verb = "giving" if ctx.temp.get("direction") == "giving" else "receiving"
        await ctx.send.send_buttons(
            ctx.phone,
            f"💰 How much are you {verb}?\n\nType the amount, e.g. *20000* or *₹5,000*",
            [BACK_BUTTON, MENU_BUTTON],
        )

    async def _on_amount(self, ctx: FlowContext, message: IncomingMessage) -> None:
        amount = parse_amount(message.text_content())
        if amount is None:
            await self.handle_invalid_input(
                ctx, message, "⚠️ Please enter a valid amount greater than zero (numbers only)."
            )
            return
        ctx.temp["amount"] = str(amount)
        await self.go_to(ctx, AgreementStep.ASK_NAME)

    # ── ask_name ─────────────────────────────────────────────

    async def _ask_name(self, ctx: FlowContext) -> None:
        who = "you are giving to" if ctx.temp.get("direction") == "giving" else "you are receiving from"
        await ctx.send.send_buttons(
            ctx.phone, f"👤 What is the name of the person {who}?", [BACK_BUTTON, MENU_BUTTON]
        )

    async def _on_name(self, ctx: FlowContext, message: IncomingMessage) -> None:
        name = validate_name(message.text_content())
        if name is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please enter a name (2-100 characters).")
            return
        ctx.temp["other_party_name"] = name
        await self.go_to(ctx, AgreementStep.ASK_PHONE)

    # ── ask_phone ────────────────────────────────────────────

    async def _ask_phone(self, ctx: FlowContext) -> None:
        name = ctx.temp.get("other_party_name", "them")
        await ctx.send.send_buttons(
            ctx.phone,
            f"📱 What is {name}'s WhatsApp number?\n\nThey will be asked to confirm this agreement.",
            [BACK_BUTTON, MENU_BUTTON],
        )

    async def _on_phone(self, ctx: FlowContext, message: IncomingMessage) -> None:
        phone = normalize_phone(message.text_content())
        if phone is None:
            await self.handle_invalid_input(
                ctx, message, "⚠️ Please enter a valid phone number (10-15 digits)."
            )
            return
        if phones_match(phone, ctx.phone):
            await self.handle_invalid_input(
                ctx, message, "⚠️ You can't create an agreement with yourself. Please enter the other person's number."
            )
            return
        ctx.temp["other_party_phone"] = phone
        await self.go_to(ctx, AgreementStep.ASK_PURPOSE)

    # ── ask_purpose ──────────────────────────────────────────

    async def _ask_purpose(self, ctx: FlowContext) -> None:
        rows = [{"id": code, "title": title} for code, title in PURPOSE_TITLES.items()]
        rows.append({"id": "back", "title": "⬅️ Back"})
        await ctx.send.send_list(
            ctx.phone,
            "📋 What is this agreement for?",
            "Select Purpose",
            [{"title": "Purpose", "rows": rows}],
        )

    async def _on_purpose(self, ctx: FlowContext, message: IncomingMessage) -> None:
        purpose = self.selection_or_text(message, PURPOSES)
        if purpose is None:
            await self.handle_invalid_input(ctx, message)
            return
        ctx.temp["purpose"] = purpose
        await self.go_to(ctx, AgreementStep.ASK_DESCRIPTION)

    # ── ask_description ──────────────────────────────────────

    async def _ask_description(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            f"📝 Add a short description (optional, max {DESCRIPTION_MAX_LENGTH} characters), or tap Skip.",
            [SKIP_BUTTON, BACK_BUTTON, MENU_BUTTON],
        )

    async def _on_description(self, ctx: FlowContext, message: IncomingMessage) -> None:
        if is_skip(message):
            ctx.temp["description"] = None
            await self.go_to(ctx, AgreementStep.ASK_DUE_DATE)
            return
        description = validate_description(message.text_content())
        if description is None:
            await self.handle_invalid_input(
                ctx, message, f"⚠️ Please type a description up to {DESCRIPTION_MAX_LENGTH} characters, or tap Skip."
            )
            return
        ctx.temp["description"] = description
        await self.go_to(ctx, AgreementStep.ASK_DUE_DATE)

    # ── ask_due_date ─────────────────────────────────────────

    async def _ask_due_date(self, ctx: FlowContext) -> None:
        rows = [{"id": code, "title": title} for code, title in DUE_DATE_TITLES.items()]
        rows.append({"id": "back", "title": "⬅️ Back"})
        await ctx.send.send_list(
            ctx.phone,
            "📅 When should this be settled?",
            "Select Due Date",
            [{"title": "Due Date", "rows": rows}],
        )

    async def _on_due_date(self, ctx: FlowContext, message: IncomingMessage) -> None:
        selection = self.selection_or_text(message, DUE_DATES)
        if selection is None:
            await self.handle_invalid_input(ctx, message)
            return
        due = due_date_for(selection)
        ctx.temp["due_date_selection"] = selection
        ctx.temp["due_date"] = due.isoformat() if due else None
        await self.go_to(ctx, AgreementStep.REVIEW)

    # ── review ───────────────────────────────────────────────

    def _summary(self, ctx: FlowContext) -> str:
        t = ctx.temp
        direction = "💸 You are giving" if t.get("direction") == "giving" else "💰 You are receiving"
        due = t.get("due_date")
        due_text = date.fromisoformat(due).strftime("%d %b %Y") if due else "No fixed date"
        return (
            "📋 *Please review your agreement*\n\n"
            f"{direction}\n"
            f"Amount: *{format_amount(t.get('amount'))}*\n"
            f"Other party: {t.get('other_party_name')} ({t.get('other_party_phone')})\n"
            f"Purpose: {PURPOSE_TITLES.get(t.get('purpose'), t.get('purpose'))}\n"
            f"Description: {t.get('description') or '-'}\n"
            f"Due date: {due_text}"
        )

    async def _show_review(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(ctx.phone, self._summary(ctx), review_buttons())

    async def _on_review(self, ctx: FlowContext, message: IncomingMessage) -> None:
        await self.handle_review(ctx, message, self._create)

    async def _create(self, ctx: FlowContext) -> None:
        fields = dict(ctx.temp)
        result = await self.services.agreements.create_agreement(ctx.user, fields)
        if not result.is_ok:
            await self.fail(ctx, result.message, "create_agreement")
            return
        agreement = result.value
        logger.info(
            "Agreement %s created by %s for %s",
            agreement.agreement_number, mask_phone(ctx.phone), mask_phone(agreement.counterparty_phone),
        )
        await self._notify_counterparty(ctx, agreement)
        await self.complete(ctx, AgreementStep.DONE)
        await ctx.send.send_text(
            ctx.phone,
            "✅ *Agreement created!*\n\n"
            f"Ref: {agreement.agreement_number}\n"
            f"We've asked {agreement.counterparty_name} to confirm. You'll be notified when they respond.",
        )
        await self._show_done(ctx)

    async def _notify_counterparty(self, ctx: FlowContext, agreement: AgreementRecord) -> None:
        from nearbuy.flows.agreement_confirm import ConfirmStep

        try:
            await self.router.seed_session(
                agreement.counterparty_phone,
                FlowType.AGREEMENT_CONFIRM,
                ConfirmStep.AWAITING_CONFIRM,
                {"confirm_agreement_id": agreement.id},
            )
            await ctx.send.send_buttons(
                agreement.counterparty_phone,
                counterparty_request_text(agreement),
                counterparty_buttons(agreement.id),
            )
        except Exception:
            # The agreement stands; the counterparty still sees it under pending agreements
            logger.exception(
                "Could not notify counterparty %s of agreement %s",
                mask_phone(agreement.counterparty_phone), agreement.agreement_number,
            )

    # ── done ─────────────────────────────────────────────────

    async def _show_done(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            "What would you like to do next?",
            [
                {"id": "create_another", "title": "➕ New Agreement"},
                {"id": "my_agreements", "title": "📋 My Agreements"},
                MENU_BUTTON,
            ],
        )

    async def _on_done(self, ctx: FlowContext, message: IncomingMessage) -> None:
        await self.handle_terminal(
            ctx,
            message,
            {
                "create_another": self.start,
                "my_agreements": lambda c: self.router.start_flow(c, FlowType.AGREEMENT_LIST),
            },
            DONE_TEXT,
        )
