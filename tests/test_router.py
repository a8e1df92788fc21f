# tests/test_router.py
"""Tests for FlowRouter: dedupe, error boundary, guards, deep links, navigation and resume."""

import asyncio
import time

from fakes import CUSTOMER_PHONE, SHOP_PHONE, STRANGER_PHONE
from nearbuy.domain.flow_types import FlowType
from nearbuy.domain.incoming_message import IncomingMessage, MessageKind
from nearbuy.flows.base import CANCELLED_TEXT, HELP_TEXT, RESUME_TEXT
from nearbuy.flows.main_menu import CUSTOMER_ROWS, UNREGISTERED_ROWS
from nearbuy.flows.router import (
    APOLOGY_TEXT,
    BUSY_TEXT,
    FISH_SELLER_ONLY_TEXT,
    REGISTER_FIRST_TEXT,
    SHOP_ONLY_TEXT,
    UNKNOWN_OPTION_TEXT,
)


def _ids(rows):
    return [row["id"] for row in rows]


def _agreement_for(bot, creator, counterparty_phone=STRANGER_PHONE):
    return bot.services.agreements.create_agreement(
        creator,
        {
            "direction": "giving",
            "amount": "20000",
            "other_party_name": "Ravi",
            "other_party_phone": counterparty_phone,
            "purpose": "loan",
            "description": None,
            "due_date": None,
        },
    )


# ── 1. Main menu ──────────────────────────────────────────────────────

def test_unregistered_greeting_shows_guest_menu(event_loop, bot):
    event_loop.run_until_complete(bot.text(STRANGER_PHONE, "hi"))

    last = bot.sender.last(STRANGER_PHONE)
    assert last.kind == "list"
    assert last.extra["header"] == "🛒 NearBuy"
    assert last.ids == _ids(UNREGISTERED_ROWS)
    assert event_loop.run_until_complete(bot.state(STRANGER_PHONE)) == ("main_menu", None)


def test_registered_menu_mentions_pending_agreements(event_loop, bot):
    creator = bot.users.add_shop(SHOP_PHONE)
    bot.users.add_customer(CUSTOMER_PHONE)
    event_loop.run_until_complete(_agreement_for(bot, creator, CUSTOMER_PHONE))

    event_loop.run_until_complete(bot.text(CUSTOMER_PHONE, "menu"))

    last = bot.sender.last(CUSTOMER_PHONE)
    assert last.ids == _ids(CUSTOMER_ROWS)
    assert "*1* pending agreement(s)" in last.body


def test_number_shortcut_starts_flow(event_loop, bot):
    bot.users.add_customer(CUSTOMER_PHONE)

    event_loop.run_until_complete(bot.text(CUSTOMER_PHONE, "3"))

    assert event_loop.run_until_complete(bot.state(CUSTOMER_PHONE)) == ("agreement_create", "ask_direction")


def test_unknown_menu_option(event_loop, bot):
    bot.users.add_customer(CUSTOMER_PHONE)

    event_loop.run_until_complete(bot.tap(CUSTOMER_PHONE, "does_not_exist"))

    assert UNKNOWN_OPTION_TEXT in bot.sender.texts(CUSTOMER_PHONE)
    assert bot.sender.last(CUSTOMER_PHONE).kind == "list"


def test_about_for_guest_offers_registration(event_loop, bot):
    event_loop.run_until_complete(bot.tap(STRANGER_PHONE, "about"))

    assert bot.sender.last_options(STRANGER_PHONE) == ["register", "main_menu"]


# ── 2. Delivery handling ──────────────────────────────────────────────

def test_duplicate_delivery_is_ignored(event_loop, bot):
    message = IncomingMessage(phone=STRANGER_PHONE, kind=MessageKind.TEXT, message_id="wamid.dup", text="hi")

    async def scenario():
        await bot.send(message)
        await bot.send(message)

    event_loop.run_until_complete(scenario())

    assert len(bot.sender.to(STRANGER_PHONE)) == 1


def test_lock_timeout_tells_user_to_retry(event_loop, bot):
    bot.store.lock_wait_seconds = 0.05
    bot.redis.held.add(f"wa:lock:{STRANGER_PHONE}")

    event_loop.run_until_complete(bot.text(STRANGER_PHONE, "hi"))

    assert bot.sender.texts(STRANGER_PHONE) == [BUSY_TEXT]


def test_failure_before_routing_sends_apology(event_loop, bot):
    async def broken(phone):
        raise ConnectionError("database down")

    bot.services.users.get_by_phone = broken

    event_loop.run_until_complete(bot.text(STRANGER_PHONE, "hi"))

    assert bot.sender.texts(STRANGER_PHONE) == [APOLOGY_TEXT]


# ── 3. Error boundary ─────────────────────────────────────────────────

def test_flow_exception_resets_and_offers_retry(event_loop, bot):
    bot.users.add_customer(CUSTOMER_PHONE)

    async def broken(user):
        raise RuntimeError("boom")

    bot.services.agreements.list_for_user = broken

    event_loop.run_until_complete(bot.tap(CUSTOMER_PHONE, "my_agreements"))

    last = bot.sender.last(CUSTOMER_PHONE)
    assert last.kind == "buttons"
    assert last.body == APOLOGY_TEXT
    assert last.ids == ["retry", "main_menu"]
    session = event_loop.run_until_complete(bot.session(CUSTOMER_PHONE))
    assert session.is_idle
    assert session.temp_data == {}


def test_retry_button_shows_main_menu(event_loop, bot):
    bot.users.add_customer(CUSTOMER_PHONE)

    event_loop.run_until_complete(bot.tap(CUSTOMER_PHONE, "retry"))

    assert bot.sender.last(CUSTOMER_PHONE).kind == "list"


def test_unknown_flow_tag_falls_back_to_main_menu(event_loop, bot):
    bot.redis.data[f"wa:session:{CUSTOMER_PHONE}"] = (
        '{"phone": "%s", "current_flow": "loyalty_points", "current_step": "upload", '
        '"temp_data": {"x": 1}, "version": 2}' % CUSTOMER_PHONE
    )
    bot.users.add_customer(CUSTOMER_PHONE)

    event_loop.run_until_complete(bot.text(CUSTOMER_PHONE, "hello"))

    session = event_loop.run_until_complete(bot.session(CUSTOMER_PHONE))
    assert (session.current_flow, session.current_step) == ("main_menu", None)
    assert session.temp_data == {}
    assert bot.sender.last(CUSTOMER_PHONE).kind == "list"


def test_unknown_step_restarts_flow(event_loop, bot):
    bot.users.add_customer(CUSTOMER_PHONE)
    event_loop.run_until_complete(
        bot.store.seed_session(CUSTOMER_PHONE, FlowType.AGREEMENT_CREATE, "ask_witness")
    )

    event_loop.run_until_complete(bot.text(CUSTOMER_PHONE, "Ravi"))

    assert event_loop.run_until_complete(bot.state(CUSTOMER_PHONE)) == ("agreement_create", "ask_direction")


# ── 4. Role guards ────────────────────────────────────────────────────

def test_unregistered_user_is_asked_to_register(event_loop, bot):
    event_loop.run_until_complete(bot.tap(STRANGER_PHONE, "create_agreement"))

    last = bot.sender.last(STRANGER_PHONE)
    assert last.body == REGISTER_FIRST_TEXT
    assert last.ids == ["register", "main_menu"]
    assert event_loop.run_until_complete(bot.state(STRANGER_PHONE)) == ("main_menu", None)


def test_customer_cannot_upload_offers(event_loop, bot):
    bot.users.add_customer(CUSTOMER_PHONE)

    event_loop.run_until_complete(bot.tap(CUSTOMER_PHONE, "upload_offer"))

    assert SHOP_ONLY_TEXT in bot.sender.texts(CUSTOMER_PHONE)
    assert bot.sender.last(CUSTOMER_PHONE).kind == "list"
    assert event_loop.run_until_complete(bot.state(CUSTOMER_PHONE)) == ("main_menu", None)


def test_customer_cannot_post_fish(event_loop, bot):
    bot.users.add_customer(CUSTOMER_PHONE)

    event_loop.run_until_complete(bot.tap(CUSTOMER_PHONE, "fish_post_catch"))

    assert FISH_SELLER_ONLY_TEXT in bot.sender.texts(CUSTOMER_PHONE)


def test_losing_access_mid_flow_returns_to_menu(event_loop, bot):
    bot.users.add_customer(CUSTOMER_PHONE)
    event_loop.run_until_complete(
        bot.store.seed_session(CUSTOMER_PHONE, FlowType.OFFERS_UPLOAD, "ask_caption", {"image_url": "x"})
    )

    event_loop.run_until_complete(bot.text(CUSTOMER_PHONE, "Diwali sale"))

    session = event_loop.run_until_complete(bot.session(CUSTOMER_PHONE))
    assert session.is_idle
    assert session.temp_data == {}


# ── 5. Deep links from notification buttons ───────────────────────────

def test_agreement_deep_link_applies_decision(event_loop, bot):
    creator = bot.users.add_customer(CUSTOMER_PHONE)
    agreement = event_loop.run_until_complete(_agreement_for(bot, creator)).value

    event_loop.run_until_complete(bot.tap(STRANGER_PHONE, f"agree_confirm_{agreement.id}"))

    assert agreement.status == "confirmed"
    assert event_loop.run_until_complete(bot.state(STRANGER_PHONE)) == ("agreement_confirm", "confirm_done")
    assert any(s.kind == "document" for s in bot.sender.to(STRANGER_PHONE))


def test_agreement_deep_link_for_someone_else(event_loop, bot):
    creator = bot.users.add_customer(CUSTOMER_PHONE)
    agreement = event_loop.run_until_complete(_agreement_for(bot, creator, "919811122233")).value

    event_loop.run_until_complete(bot.tap(STRANGER_PHONE, f"agree_confirm_{agreement.id}"))

    assert agreement.status == "pending"
    assert bot.sender.last_options(STRANGER_PHONE) == ["pending_agreements", "main_menu"]


def test_product_deep_link_jumps_to_price(event_loop, bot):
    customer = bot.users.add_customer(CUSTOMER_PHONE)
    bot.users.add_shop(SHOP_PHONE)
    request = event_loop.run_until_complete(
        bot.services.products.create_request(customer, "electronics", "Samsung charger")
    ).value

    event_loop.run_until_complete(bot.tap(SHOP_PHONE, f"respond_yes_{request.id}"))

    session = event_loop.run_until_complete(bot.session(SHOP_PHONE))
    assert (session.current_flow, session.current_step) == ("product_respond", "ask_price")
    assert session.temp_data == {"respond_request_id": request.id}


def test_product_deep_link_requires_shop(event_loop, bot):
    bot.users.add_customer(CUSTOMER_PHONE)

    event_loop.run_until_complete(bot.tap(CUSTOMER_PHONE, "respond_no_1"))

    assert SHOP_ONLY_TEXT in bot.sender.texts(CUSTOMER_PHONE)


# ── 6. Global navigation ──────────────────────────────────────────────

def _start_agreement(event_loop, bot):
    bot.users.add_customer(CUSTOMER_PHONE)

    async def scenario():
        await bot.tap(CUSTOMER_PHONE, "create_agreement")
        await bot.tap(CUSTOMER_PHONE, "giving")

    event_loop.run_until_complete(scenario())
    assert event_loop.run_until_complete(bot.state(CUSTOMER_PHONE)) == ("agreement_create", "ask_amount")


def test_help_reprompts_without_moving(event_loop, bot):
    _start_agreement(event_loop, bot)

    event_loop.run_until_complete(bot.text(CUSTOMER_PHONE, "help"))

    assert HELP_TEXT in bot.sender.texts(CUSTOMER_PHONE)
    assert event_loop.run_until_complete(bot.state(CUSTOMER_PHONE)) == ("agreement_create", "ask_amount")
    assert "How much" in bot.sender.last(CUSTOMER_PHONE).body


def test_cancel_discards_progress(event_loop, bot):
    _start_agreement(event_loop, bot)

    event_loop.run_until_complete(bot.text(CUSTOMER_PHONE, "Cancel"))

    assert CANCELLED_TEXT in bot.sender.texts(CUSTOMER_PHONE)
    session = event_loop.run_until_complete(bot.session(CUSTOMER_PHONE))
    assert session.is_idle
    assert session.temp_data == {}


def test_menu_button_mid_flow(event_loop, bot):
    _start_agreement(event_loop, bot)

    event_loop.run_until_complete(bot.tap(CUSTOMER_PHONE, "main_menu"))

    assert event_loop.run_until_complete(bot.state(CUSTOMER_PHONE)) == ("main_menu", None)
    assert bot.sender.last(CUSTOMER_PHONE).kind == "list"


def test_back_returns_to_previous_step(event_loop, bot):
    _start_agreement(event_loop, bot)

    event_loop.run_until_complete(bot.tap(CUSTOMER_PHONE, "back"))

    assert event_loop.run_until_complete(bot.state(CUSTOMER_PHONE)) == ("agreement_create", "ask_direction")


# ── 7. Resume after inactivity ────────────────────────────────────────

def _age_session(event_loop, bot, phone):
    async def scenario():
        session = await bot.store.get(phone)
        session.last_active_ts = time.time() - bot.store.soft_expiry_seconds - 60
        await bot.store.save(session)

    event_loop.run_until_complete(scenario())


def test_stale_session_gets_welcome_back_and_still_advances(event_loop, bot):
    _start_agreement(event_loop, bot)
    _age_session(event_loop, bot, CUSTOMER_PHONE)

    event_loop.run_until_complete(bot.text(CUSTOMER_PHONE, "20000"))

    texts = bot.sender.texts(CUSTOMER_PHONE)
    assert RESUME_TEXT in texts
    session = event_loop.run_until_complete(bot.session(CUSTOMER_PHONE))
    assert session.current_step == "ask_name"
    assert session.temp_data["amount"] == "20000"


def test_stale_session_invalid_reply_still_reprompts(event_loop, bot):
    _start_agreement(event_loop, bot)
    _age_session(event_loop, bot, CUSTOMER_PHONE)

    event_loop.run_until_complete(bot.text(CUSTOMER_PHONE, "lots"))

    assert RESUME_TEXT in bot.sender.texts(CUSTOMER_PHONE)
    session = event_loop.run_until_complete(bot.session(CUSTOMER_PHONE))
    assert session.current_step == "ask_amount"
    assert "amount" not in session.temp_data


def test_stale_session_honours_navigation(event_loop, bot):
    _start_agreement(event_loop, bot)
    _age_session(event_loop, bot, CUSTOMER_PHONE)

    event_loop.run_until_complete(bot.text(CUSTOMER_PHONE, "menu"))

    assert RESUME_TEXT not in bot.sender.texts(CUSTOMER_PHONE)
    assert event_loop.run_until_complete(bot.state(CUSTOMER_PHONE)) == ("main_menu", None)


def test_seeded_session_answered_late_applies_decision(event_loop, bot):
    creator = bot.users.add_customer(CUSTOMER_PHONE)
    agreement = event_loop.run_until_complete(_agreement_for(bot, creator)).value
    event_loop.run_until_complete(
        bot.router.seed_session(
            STRANGER_PHONE, FlowType.AGREEMENT_CONFIRM, "awaiting_confirm", {"confirm_agreement_id": agreement.id}
        )
    )
    _age_session(event_loop, bot, STRANGER_PHONE)

    event_loop.run_until_complete(bot.text(STRANGER_PHONE, "yes"))

    assert agreement.status == "confirmed"
    assert RESUME_TEXT not in bot.sender.texts(STRANGER_PHONE)
    session = event_loop.run_until_complete(bot.session(STRANGER_PHONE))
    assert session.current_step == "confirm_done"
    assert session.seeded is False


# ── 8. Concurrency and redelivery ─────────────────────────────────────

def test_messages_arriving_together_each_advance(event_loop, bot):
    _start_agreement(event_loop, bot)

    async def scenario():
        await asyncio.gather(
            bot.send(IncomingMessage(phone=CUSTOMER_PHONE, kind=MessageKind.TEXT, message_id="wamid.a", text="20000")),
            bot.send(IncomingMessage(phone=CUSTOMER_PHONE, kind=MessageKind.TEXT, message_id="wamid.b", text="Ravi")),
        )
        return await bot.session(CUSTOMER_PHONE)

    session = event_loop.run_until_complete(scenario())

    assert session.current_step == "ask_phone"
    assert session.temp_data["amount"] == "20000"
    assert session.temp_data["other_party_name"] == "Ravi"


def test_two_users_seeding_each_other_at_once(event_loop, bot):
    bot.store.lock_wait_seconds = 0.5
    inside = []

    async def scenario():
        both_inside = asyncio.Event()

        async def route(message, ctx, resumed=False):
            inside.append(ctx.phone)
            if len(inside) == 2:
                both_inside.set()
            await asyncio.wait_for(both_inside.wait(), timeout=1)
            other = SHOP_PHONE if ctx.phone == CUSTOMER_PHONE else CUSTOMER_PHONE
            await bot.router.seed_session(other, FlowType.AGREEMENT_CONFIRM, "awaiting_confirm", {"from": ctx.phone})

        bot.router.route = route
        await asyncio.gather(bot.text(CUSTOMER_PHONE, "yes"), bot.text(SHOP_PHONE, "yes"))
        return await bot.session(CUSTOMER_PHONE), await bot.session(SHOP_PHONE)

    customer, shop = event_loop.run_until_complete(scenario())

    assert sorted(inside) == sorted([CUSTOMER_PHONE, SHOP_PHONE])
    assert (customer.current_flow, customer.current_step) == ("agreement_confirm", "awaiting_confirm")
    assert customer.temp_data == {"from": SHOP_PHONE}
    assert shop.temp_data == {"from": CUSTOMER_PHONE}
    assert BUSY_TEXT not in bot.sender.texts(CUSTOMER_PHONE) + bot.sender.texts(SHOP_PHONE)


def test_redelivery_after_early_failure_is_handled(event_loop, bot):
    lookup = bot.services.users.get_by_phone
    calls = []

    async def flaky(phone):
        calls.append(phone)
        if len(calls) == 1:
            raise ConnectionError("database down")
        return await lookup(phone)

    bot.services.users.get_by_phone = flaky
    message = IncomingMessage(phone=STRANGER_PHONE, kind=MessageKind.TEXT, message_id="wamid.retry", text="hi")

    async def scenario():
        await bot.send(message)
        await bot.send(message)
        await bot.send(message)

    event_loop.run_until_complete(scenario())

    assert bot.sender.texts(STRANGER_PHONE)[0] == APOLOGY_TEXT
    assert [s.kind for s in bot.sender.to(STRANGER_PHONE)] == ["text", "list"]
    assert len(calls) == 2
