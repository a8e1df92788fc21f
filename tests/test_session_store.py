# tests/test_session_store.py
"""Tests for the Redis session store: persistence, migration, locking and seeding."""

import asyncio
import json
import time

import pytest

from fakes import FakeRedis
from nearbuy.domain.errors import NoActiveFlowError, SessionLockTimeout
from nearbuy.domain.flow_types import FlowType
from nearbuy.domain.session import SESSION_VERSION, ConversationSession
from nearbuy.infrastructure.cache.session_store import SessionStore, _migrate_session

PHONE = "919876500001"


@pytest.fixture
def redis():
    return FakeRedis()


@pytest.fixture
def store(redis):
    return SessionStore(redis, lock_wait_seconds=1)


# ── 1. Read / write ───────────────────────────────────────────────────

def test_missing_session_is_fresh_and_idle(event_loop, store):
    session = event_loop.run_until_complete(store.get(PHONE))

    assert session.phone == PHONE
    assert session.current_flow == FlowType.MAIN_MENU.value
    assert session.current_step is None
    assert session.temp_data == {}
    assert session.is_idle


def test_save_round_trip_with_ttl(event_loop, store, redis):
    async def scenario():
        session = ConversationSession(phone=PHONE, current_flow="agreement_create", current_step="ask_amount")
        session.temp_data["direction"] = "giving"
        await store.save(session)
        return await store.get(PHONE)

    loaded = event_loop.run_until_complete(scenario())

    assert loaded.flow == FlowType.AGREEMENT_CREATE
    assert loaded.current_step == "ask_amount"
    assert loaded.temp_data == {"direction": "giving"}
    assert redis.expiry[f"wa:session:{PHONE}"] == store.ttl_seconds


def test_unreadable_session_is_discarded(event_loop, store, redis):
    redis.data[f"wa:session:{PHONE}"] = "{not json"

    session = event_loop.run_until_complete(store.get(PHONE))

    assert session.is_idle
    assert session.temp_data == {}


def test_unknown_flow_tag_still_loads(event_loop, store, redis):
    redis.data[f"wa:session:{PHONE}"] = json.dumps(
        {"phone": PHONE, "current_flow": "loyalty_points", "current_step": "x", "version": SESSION_VERSION}
    )

    session = event_loop.run_until_complete(store.get(PHONE))

    assert session.current_flow == "loyalty_points"
    assert session.flow is None
    assert not session.is_idle


def test_clear_session(event_loop, store, redis):
    async def scenario():
        await store.save(ConversationSession(phone=PHONE))
        await store.clear_session(PHONE)

    event_loop.run_until_complete(scenario())

    assert f"wa:session:{PHONE}" not in redis.data


# ── 2. Migration ──────────────────────────────────────────────────────

class TestMigrateSession:
    def test_v1_keys_are_renamed(self):
        v1 = {"flow": "registration", "step": "ask_name", "data": {"name": "Asha"}, "user_id": 4}
        migrated = _migrate_session(v1, PHONE)
        assert migrated["current_flow"] == "registration"
        assert migrated["current_step"] == "ask_name"
        assert migrated["temp_data"] == {"name": "Asha"}
        assert migrated["user_id"] == 4
        assert migrated["phone"] == PHONE
        assert migrated["version"] == SESSION_VERSION

    def test_v1_idle_steps_become_none(self):
        for step in ("idle", "show_menu", "awaiting_selection"):
            migrated = _migrate_session({"flow": "main_menu", "step": step}, PHONE)
            assert migrated["current_step"] is None

    def test_v1_without_flow_defaults_to_main_menu(self):
        migrated = _migrate_session({}, PHONE)
        assert migrated["current_flow"] == FlowType.MAIN_MENU.value
        assert migrated["temp_data"] == {}

    def test_current_version_untouched(self):
        data = {"phone": PHONE, "current_flow": "settings", "version": SESSION_VERSION}
        assert _migrate_session(data, PHONE) is data

    def test_stored_v1_payload_loads(self, event_loop, store, redis):
        redis.data[f"wa:session:{PHONE}"] = json.dumps({"flow": "settings", "step": "main", "data": {}})
        session = event_loop.run_until_complete(store.get(PHONE))
        assert session.flow == FlowType.SETTINGS
        assert session.current_step == "main"


# ── 3. Transitions ────────────────────────────────────────────────────

def test_set_step_requires_active_flow(event_loop, store):
    session = ConversationSession(phone=PHONE)

    with pytest.raises(NoActiveFlowError):
        event_loop.run_until_complete(store.set_step(session, "ask_amount"))


def test_set_flow_step_then_reset(event_loop, store):
    async def scenario():
        session = ConversationSession(phone=PHONE)
        await store.set_flow_step(session, FlowType.SETTINGS, "main")
        await store.merge_temp_data(session, {"a": 1})
        after_set = await store.get(PHONE)
        await store.reset_to_main_menu(session)
        return after_set, await store.get(PHONE)

    after_set, after_reset = event_loop.run_until_complete(scenario())

    assert (after_set.current_flow, after_set.current_step) == ("settings", "main")
    assert after_set.temp_data == {"a": 1}
    assert after_reset.is_idle
    assert after_reset.current_step is None
    assert after_reset.temp_data == {}


def test_temp_data_helpers(event_loop, store):
    async def scenario():
        session = ConversationSession(phone=PHONE, current_flow="settings", current_step="main")
        await store.merge_temp_data(session, {"a": 1, "b": 2})
        await store.remove_temp_data(session, "a", "missing")
        return session

    session = event_loop.run_until_complete(scenario())

    assert session.temp_data == {"b": 2}
    assert store.get_temp_data(session, "b") == 2
    assert store.get_temp_data(session, "a", "default") == "default"


def test_soft_expiry(store):
    session = ConversationSession(phone=PHONE)
    assert not store.is_soft_expired(session)
    session.last_active_ts = time.time() - store.soft_expiry_seconds - 5
    assert store.is_soft_expired(session)
    store.touch(session)
    assert not store.is_soft_expired(session)


def test_mark_processed_dedupes(event_loop, store):
    async def scenario():
        return [
            await store.mark_processed("wamid.1"),
            await store.mark_processed("wamid.1"),
            await store.mark_processed("wamid.2"),
            await store.mark_processed(None),
        ]

    assert event_loop.run_until_complete(scenario()) == [True, False, True, True]


# ── 4. Seeding ────────────────────────────────────────────────────────

def test_seed_replaces_flow_and_temp_data(event_loop, store):
    async def scenario():
        session = ConversationSession(phone=PHONE)
        await store.set_flow_step(session, FlowType.AGREEMENT_CREATE, "ask_amount")
        await store.merge_temp_data(session, {"direction": "giving", "amount": "500"})
        await store.seed_session(PHONE, FlowType.PRODUCT_RESPOND, "awaiting_decision", {"respond_request_id": 9})
        return await store.get(PHONE)

    session = event_loop.run_until_complete(scenario())

    assert (session.current_flow, session.current_step) == ("product_respond", "awaiting_decision")
    assert session.temp_data == {"respond_request_id": 9}


def test_seed_creates_session_for_unknown_phone(event_loop, store, redis):
    event_loop.run_until_complete(
        store.seed_session(PHONE, FlowType.AGREEMENT_CONFIRM, "awaiting_confirm", {"confirm_agreement_id": 3})
    )

    stored = json.loads(redis.data[f"wa:session:{PHONE}"])
    assert stored["current_flow"] == "agreement_confirm"
    assert stored["temp_data"] == {"confirm_agreement_id": 3}


# ── 5. Locking ────────────────────────────────────────────────────────

def test_lock_is_reentrant_within_a_task(event_loop, store, redis):
    async def scenario():
        async with store.locked(PHONE):
            async with store.locked(PHONE):
                await store.seed_session(PHONE, FlowType.SETTINGS, "main")
            return set(redis.held)

    held_inside = event_loop.run_until_complete(scenario())

    assert held_inside == {f"wa:lock:{PHONE}"}
    assert redis.held == set()


def test_lock_serialises_same_phone_in_arrival_order(event_loop, store):
    order = []

    async def worker(name, delay):
        async with store.locked(PHONE):
            order.append(f"{name}-in")
            await asyncio.sleep(delay)
            order.append(f"{name}-out")

    async def scenario():
        first = asyncio.ensure_future(worker("a", 0.03))
        await asyncio.sleep(0)
        second = asyncio.ensure_future(worker("b", 0))
        await asyncio.gather(first, second)

    event_loop.run_until_complete(scenario())

    assert order == ["a-in", "a-out", "b-in", "b-out"]


def test_different_phones_do_not_block_each_other(event_loop, store):
    order = []

    async def worker(phone, delay):
        async with store.locked(phone):
            order.append(f"{phone}-in")
            await asyncio.sleep(delay)
            order.append(f"{phone}-out")

    async def scenario():
        await asyncio.gather(worker("A", 0.03), worker("B", 0))

    event_loop.run_until_complete(scenario())

    assert order.index("B-out") < order.index("A-out")


def test_lock_held_elsewhere_times_out(event_loop, store, redis):
    redis.held.add(f"wa:lock:{PHONE}")

    async def scenario():
        async with store.locked(PHONE):
            pass

    with pytest.raises(SessionLockTimeout):
        event_loop.run_until_complete(scenario())
    assert store._local_locks == {}
