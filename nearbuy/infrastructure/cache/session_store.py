# nearbuy/infrastructure/cache/session_store.py
"""
Redis-backed conversation session store.

One JSON document per phone under ``wa:session:{phone}``.  All writes for a
phone happen inside ``locked(phone)``, which combines an in-process
``asyncio.Lock`` (FIFO, so messages from one phone are handled in arrival
order) with a Redis lock for multi-process deployments.  The lock is
re-entrant within one task so a handler already holding a phone's lock can
call store helpers that lock again.
"""

from __future__ import annotations

import asyncio
import contextvars
import json
import time
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional

import redis.asyncio as redis
from loguru import logger
from pydantic import ValidationError
from redis.exceptions import LockError

from nearbuy.core.config import settings
from nearbuy.domain.errors import NoActiveFlowError, SessionLockTimeout
from nearbuy.domain.flow_types import FlowType
from nearbuy.domain.services.pii_masking import mask_phone
from nearbuy.domain.session import SESSION_VERSION, ConversationSession

PROCESSED_MESSAGE_TTL_SECONDS = 24 * 60 * 60

_held_phones: contextvars.ContextVar[frozenset] = contextvars.ContextVar(
    "nearbuy_held_session_locks", default=frozenset()
)


def _value(step) -> Optional[str]:
    if step is None:
        return None
    if isinstance(step, Enum):
        return step.value
    return str(step)


def _migrate_session(data: Dict[str, Any], phone: str) -> Dict[str, Any]:
    """Bring an older stored payload up to SESSION_VERSION.

    v1 payloads used ``flow`` / ``step`` / ``data`` keys.
    """
    if data.get("version", 1) >= SESSION_VERSION:
        return data
    migrated = {
        "phone": data.get("phone") or phone,
        "current_flow": data.get("current_flow") or data.get("flow") or FlowType.MAIN_MENU.value,
        "current_step": data.get("current_step", data.get("step")),
        "temp_data": data.get("temp_data") or data.get("data") or {},
        "user_id": data.get("user_id"),
        "version": SESSION_VERSION,
        "last_active_ts": data.get("last_active_ts") or time.time(),
    }
    if migrated["current_step"] in ("idle", "show_menu", "awaiting_selection"):
        migrated["current_step"] = None
    return migrated


class _LocalLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class SessionStore:
    def __init__(
        self,
        client,
        *,
        ttl_seconds: int | None = None,
        soft_expiry_seconds: int | None = None,
        lock_timeout_seconds: int | None = None,
        lock_wait_seconds: int | None = None,
    ):
        self._r = client
        self.ttl_seconds = ttl_seconds or settings.SESSION_TTL_SECONDS
        self.soft_expiry_seconds = soft_expiry_seconds or settings.SOFT_EXPIRY_SECONDS
        self.lock_timeout_seconds = lock_timeout_seconds or settings.SESSION_LOCK_TIMEOUT_SECONDS
        self.lock_wait_seconds = lock_wait_seconds or settings.SESSION_LOCK_WAIT_SECONDS
        self._local_locks: Dict[str, _LocalLock] = {}

    @classmethod
    def from_url(cls, redis_url: str, **kwargs) -> "SessionStore":
        if not redis_url:
            raise RuntimeError("REDIS_URL is not set")
        return cls(redis.from_url(redis_url, decode_responses=True), **kwargs)

    def _key(self, phone: str) -> str:
        return f"wa:session:{phone}"

    def _lock_key(self, phone: str) -> str:
        return f"wa:lock:{phone}"

    # ── Read / write ──────────────────────────────────────────

    async def get(self, phone: str) -> ConversationSession:
        """Return the stored session or a fresh idle one (not yet persisted)."""
        raw = await self._r.get(self._key(phone))
        if not raw:
            return ConversationSession(phone=phone)
        try:
            data = _migrate_session(json.loads(raw), phone)
            return ConversationSession.model_validate(data)
        except (ValueError, TypeError, ValidationError) as exc:
            logger.warning("Discarding unreadable session for {}: {}", mask_phone(phone), exc)
            return ConversationSession(phone=phone)

    async def save(self, session: ConversationSession) -> None:
        await self._r.set(
            self._key(session.phone),
            session.model_dump_json(),
            ex=self.ttl_seconds,
        )

    async def clear_session(self, phone: str) -> None:
        await self._r.delete(self._key(phone))
        logger.info("Session cleared for {}", mask_phone(phone))

    # ── Flow / step transitions ───────────────────────────────

    async def set_flow_step(self, session: ConversationSession, flow: FlowType, step) -> None:
        """Switch flow and step together in one write."""
        session.current_flow = _value(flow)
        session.current_step = _value(step)
        await self.save(session)
        logger.debug(
            "Session {} -> {}:{}", mask_phone(session.phone), session.current_flow, session.current_step
        )

    async def set_step(self, session: ConversationSession, step) -> None:
        """Move to another step of the current flow."""
        if session.is_idle:
            raise NoActiveFlowError(
                f"set_step({_value(step)!r}) with no active flow for {mask_phone(session.phone)}"
            )
        session.current_step = _value(step)
        await self.save(session)
        logger.debug(
            "Session {} step -> {}:{}", mask_phone(session.phone), session.current_flow, session.current_step
        )

    async def reset_to_main_menu(self, session: ConversationSession) -> None:
        session.current_flow = FlowType.MAIN_MENU.value
        session.current_step = None
        session.temp_data = {}
        await self.save(session)

    async def link_user(self, session: ConversationSession, user_id: int | None) -> None:
        session.user_id = user_id
        await self.save(session)

    # ── Temp data ─────────────────────────────────────────────

    async def merge_temp_data(self, session: ConversationSession, partial: Dict[str, Any]) -> None:
        session.temp_data.update(partial)
        await self.save(session)

    def get_temp_data(self, session: ConversationSession, key: str, default: Any = None) -> Any:
        return session.temp_data.get(key, default)

    async def remove_temp_data(self, session: ConversationSession, *keys: str) -> None:
        for key in keys:
            session.temp_data.pop(key, None)
        await self.save(session)

    async def clear_temp_data(self, session: ConversationSession) -> None:
        session.temp_data = {}
        await self.save(session)

    # ── Activity ──────────────────────────────────────────────

    def touch(self, session: ConversationSession) -> None:
        session.last_active_ts = time.time()

    def is_soft_expired(self, session: ConversationSession) -> bool:
        return (time.time() - session.last_active_ts) > self.soft_expiry_seconds

    def _processed_key(self, message_id: str) -> str:
        return f"wa:msg:{message_id}"

    async def was_processed(self, message_id: str | None) -> bool:
        if not message_id:
            return False
        return bool(await self._r.get(self._processed_key(message_id)))

    async def mark_processed(self, message_id: str | None) -> bool:
        """Record a webhook message id; False if it was already seen."""
        if not message_id:
            return True
        created = await self._r.set(
            self._processed_key(message_id), "1", nx=True, ex=PROCESSED_MESSAGE_TTL_SECONDS
        )
        return bool(created)

    # ── Locking & cross-session seeding ───────────────────────

    @asynccontextmanager
    async def locked(self, phone: str) -> AsyncIterator[None]:
        held = _held_phones.get()
        if phone in held:
            yield
            return

        local = self._local_locks.get(phone)
        if local is None:
            local = self._local_locks[phone] = _LocalLock()
        local.users += 1
        try:
            try:
                await asyncio.wait_for(local.lock.acquire(), timeout=self.lock_wait_seconds)
            except asyncio.TimeoutError:
                raise SessionLockTimeout(mask_phone(phone)) from None
            try:
                remote = self._r.lock(
                    self._lock_key(phone),
                    timeout=self.lock_timeout_seconds,
                    blocking_timeout=self.lock_wait_seconds,
                )
                if not await remote.acquire():
                    raise SessionLockTimeout(mask_phone(phone))
                token = _held_phones.set(held | {phone})
                try:
                    yield
                finally:
                    _held_phones.reset(token)
                    try:
                        await remote.release()
                    except LockError:
                        logger.warning("Session lock for {} expired before release", mask_phone(phone))
            finally:
                local.lock.release()
        finally:
            local.users -= 1
            if local.users == 0:
                self._local_locks.pop(phone, None)

    async def seed_session(
        self,
        phone: str,
        flow: FlowType,
        step,
        temp_data: Optional[Dict[str, Any]] = None,
    ) -> ConversationSession:
        """Place another phone's session at (flow, step) with ``temp_data``.

        The target needs no prior message.  Whatever flow it was in is
        replaced, temp data included.
        """
        async with self.locked(phone):
            session = await self.get(phone)
            previous = (session.current_flow, session.current_step)
            session.current_flow = _value(flow)
            session.current_step = _value(step)
            session.temp_data = dict(temp_data or {})
            session.seeded = True
            self.touch(session)
            await self.save(session)
        if previous[0] != FlowType.MAIN_MENU.value and previous != (session.current_flow, session.current_step):
            logger.info(
                "Seeded {} into {}:{} replacing {}:{}",
                mask_phone(phone), session.current_flow, session.current_step, *previous,
            )
        else:
            logger.info("Seeded {} into {}:{}", mask_phone(phone), session.current_flow, session.current_step)
        return session
