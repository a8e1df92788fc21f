# tests/test_registration_flow.py
"""Registration: customer, fish seller and shop branches."""

from fakes import CUSTOMER_PHONE, STRANGER_PHONE


async def _name_and_location(bot, name="Meera"):
    await bot.tap(STRANGER_PHONE, "register")
    await bot.text(STRANGER_PHONE, name)
    await bot.location(STRANGER_PHONE, 9.93, 76.26)


def _registered(event_loop, bot):
    return event_loop.run_until_complete(bot.users.get_by_phone(STRANGER_PHONE))


# ── 1. Shared steps ───────────────────────────────────────────────────

def test_name_then_location_request(event_loop, bot):
    async def scenario():
        await bot.tap(STRANGER_PHONE, "register")
        await bot.text(STRANGER_PHONE, "Meera")

    event_loop.run_until_complete(scenario())

    last = bot.sender.last(STRANGER_PHONE)
    assert last.kind == "location_request"
    assert "Meera" in last.body
    session = event_loop.run_until_complete(bot.session(STRANGER_PHONE))
    assert session.current_step == "ask_location"
    assert session.temp_data == {"name": "Meera"}


def test_location_must_be_shared(event_loop, bot):
    async def scenario():
        await bot.tap(STRANGER_PHONE, "register")
        await bot.text(STRANGER_PHONE, "Meera")
        await bot.text(STRANGER_PHONE, "Kochi")

    event_loop.run_until_complete(scenario())

    assert event_loop.run_until_complete(bot.state(STRANGER_PHONE)) == ("registration", "ask_location")
    assert any("share your location" in t for t in bot.sender.texts(STRANGER_PHONE))


def test_invalid_name(event_loop, bot):
    async def scenario():
        await bot.tap(STRANGER_PHONE, "register")
        await bot.text(STRANGER_PHONE, "M")

    event_loop.run_until_complete(scenario())

    assert event_loop.run_until_complete(bot.state(STRANGER_PHONE)) == ("registration", "ask_name")


def test_already_registered(event_loop, bot):
    bot.users.add_customer(CUSTOMER_PHONE)

    event_loop.run_until_complete(bot.tap(CUSTOMER_PHONE, "register"))

    assert any(t.startswith("✅ You're already registered") for t in bot.sender.texts(CUSTOMER_PHONE))
    assert bot.sender.last(CUSTOMER_PHONE).kind == "list"
    assert event_loop.run_until_complete(bot.state(CUSTOMER_PHONE)) == ("main_menu", None)


# ── 2. Customer ───────────────────────────────────────────────────────

def test_customer_is_created_immediately(event_loop, bot):
    async def scenario():
        await _name_and_location(bot)
        await bot.tap(STRANGER_PHONE, "type_customer")

    event_loop.run_until_complete(scenario())

    user = _registered(event_loop, bot)
    assert user.name == "Meera"
    assert (user.latitude, user.longitude) == (9.93, 76.26)
    assert not user.is_shop_owner() and not user.is_fish_seller()

    session = event_loop.run_until_complete(bot.session(STRANGER_PHONE))
    assert (session.current_flow, session.current_step) == ("registration", "complete")
    assert session.temp_data == {}
    assert session.user_id == user.id
    assert bot.sender.last_options(STRANGER_PHONE) == ["browse_offers", "search_product", "main_menu"]


def test_typed_number_selects_customer(event_loop, bot):
    async def scenario():
        await _name_and_location(bot)
        await bot.text(STRANGER_PHONE, "1")

    event_loop.run_until_complete(scenario())

    assert _registered(event_loop, bot) is not None


def test_complete_step_routes_to_chosen_feature(event_loop, bot):
    async def scenario():
        await _name_and_location(bot)
        await bot.tap(STRANGER_PHONE, "type_customer")
        await bot.tap(STRANGER_PHONE, "search_product")

    event_loop.run_until_complete(scenario())

    assert event_loop.run_until_complete(bot.state(STRANGER_PHONE)) == ("product_search", "ask_category")


# ── 3. Fish seller ────────────────────────────────────────────────────

def test_fish_seller_branch(event_loop, bot):
    async def scenario():
        await _name_and_location(bot, "Joseph")
        await bot.text(STRANGER_PHONE, "fish seller")
        market_step = await bot.state(STRANGER_PHONE)
        await bot.text(STRANGER_PHONE, "Fort Kochi harbour")
        return market_step

    market_step = event_loop.run_until_complete(scenario())

    assert market_step == ("registration", "ask_market_name")
    user = _registered(event_loop, bot)
    assert user.is_fish_seller()
    assert user.fish_seller.market_name == "Fort Kochi harbour"
    assert bot.sender.last_options(STRANGER_PHONE) == ["browse_offers", "fish_post_catch", "main_menu"]


# ── 4. Shop owner ─────────────────────────────────────────────────────

def test_shop_branch_with_review(event_loop, bot):
    async def scenario():
        await _name_and_location(bot, "Ravi")
        await bot.tap(STRANGER_PHONE, "type_shop")
        await bot.text(STRANGER_PHONE, "Ravi Electronics")
        await bot.tap(STRANGER_PHONE, "cat_electronics")
        await bot.tap(STRANGER_PHONE, "same_location")
        await bot.tap(STRANGER_PHONE, "notif_daily")
        review = await bot.state(STRANGER_PHONE)
        await bot.tap(STRANGER_PHONE, "confirm")
        return review

    review = event_loop.run_until_complete(scenario())

    assert review == ("registration", "review")
    user = _registered(event_loop, bot)
    assert user.is_shop_owner()
    assert user.shop.name == "Ravi Electronics"
    assert user.shop.category == "electronics"
    assert (user.shop.latitude, user.shop.longitude) == (9.93, 76.26)
    assert user.shop.notification_frequency == "daily"
    assert bot.sender.last_options(STRANGER_PHONE) == ["browse_offers", "upload_offer", "main_menu"]


def test_shop_at_a_different_location(event_loop, bot):
    async def scenario():
        await _name_and_location(bot, "Ravi")
        await bot.text(STRANGER_PHONE, "shop owner")
        await bot.text(STRANGER_PHONE, "Ravi Stores")
        await bot.text(STRANGER_PHONE, "groceries")
        await bot.tap(STRANGER_PHONE, "different_location")
        asked = bot.sender.last(STRANGER_PHONE).kind
        await bot.location(STRANGER_PHONE, 9.5, 76.5)
        await bot.text(STRANGER_PHONE, "immediately")
        await bot.text(STRANGER_PHONE, "yes")
        return asked

    asked = event_loop.run_until_complete(scenario())

    assert asked == "location_request"
    user = _registered(event_loop, bot)
    assert user.shop.category == "grocery"
    assert (user.shop.latitude, user.shop.longitude) == (9.5, 76.5)
    assert (user.latitude, user.longitude) == (9.93, 76.26)
    assert user.shop.notification_frequency == "immediate"


def test_back_from_shop_name_returns_to_type(event_loop, bot):
    async def scenario():
        await _name_and_location(bot, "Ravi")
        await bot.tap(STRANGER_PHONE, "type_shop")
        await bot.tap(STRANGER_PHONE, "back")

    event_loop.run_until_complete(scenario())

    assert event_loop.run_until_complete(bot.state(STRANGER_PHONE)) == ("registration", "ask_type")
    assert bot.sender.last_options(STRANGER_PHONE) == ["type_customer", "type_shop", "type_fish_seller"]
