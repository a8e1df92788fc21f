# nearbuy/infrastructure/db/services.py
"""
SQLAlchemy-backed implementations of the domain service protocols.

Each call opens its own ``AsyncSession`` from the session factory and
commits before returning.  Database failures are logged and reported as
``ServiceResult.error``; list lookups degrade to an empty list.
"""

from __future__ import annotations

import random
import string
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nearbuy.core.config import settings
from nearbuy.domain.catalog import DEFAULT_FISH_TYPES
from nearbuy.domain.models import (
    AgreementRecord,
    AgreementStatus,
    FishCatchRecord,
    FishSellerRecord,
    FishTypeRecord,
    OfferRecord,
    ProductRequestRecord,
    ProductResponseRecord,
    RequestStatus,
    ServiceResult,
    ShopRecord,
    UserRecord,
    UserType,
    WorkerRecord,
)
from nearbuy.domain.services.agreement_pdf import build_agreement_pdf
from nearbuy.domain.services.contracts import FlowServices, MediaStore
from nearbuy.domain.services.geo import bounding_box, haversine_km
from nearbuy.domain.services.pii_masking import mask_phone
from nearbuy.domain.services.validators import phones_match
from nearbuy.infrastructure.db.models import (
    Agreement,
    FishCatch,
    FishSeller,
    FishType,
    JobWorker,
    Offer,
    ProductRequest,
    ProductResponse,
    Shop,
    User,
)
from nearbuy.infrastructure.db.repositories import (
    AgreementRepository,
    FishRepository,
    OfferRepository,
    ProductRepository,
    UserRepository,
)

SessionFactory = async_sessionmaker[AsyncSession]

REQUEST_RADIUS_KM = 5.0
MAX_ELIGIBLE_SHOPS = 20
FISH_CATCH_EXPIRY_HOURS = 12
WORKER_FIELDS = {"photo_url", "vehicle_type", "job_types", "availability"}
SHOP_FIELDS = {"name", "category", "latitude", "longitude", "notification_frequency"}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _suffix(phone: str) -> str:
    digits = "".join(ch for ch in phone or "" if ch.isdigit())
    return digits[-10:]


# ── Row -> record ────────────────────────────────────────────

def shop_record(shop: Shop) -> ShopRecord:
    return ShopRecord(
        id=shop.id,
        owner_id=shop.owner_id,
        name=shop.name,
        category=shop.category,
        latitude=shop.latitude,
        longitude=shop.longitude,
        notification_frequency=shop.notification_frequency or "immediate",
        owner_phone=shop.owner.phone if shop.owner is not None else "",
    )


def worker_record(row: JobWorker) -> WorkerRecord:
    return WorkerRecord(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        vehicle_type=row.vehicle_type or "none",
        job_types=list(row.job_types or []),
        availability=row.availability or "flexible",
        photo_url=row.photo_url,
        is_available=row.is_available,
    )


def user_record(user: User) -> UserRecord:
    shop = user.shop if user.shop is not None and user.shop.is_active else None
    seller = user.fish_seller
    worker = user.worker if user.worker is not None and user.worker.is_available else None
    return UserRecord(
        id=user.id,
        phone=user.phone,
        name=user.name,
        user_type=user.user_type,
        latitude=user.latitude,
        longitude=user.longitude,
        notification_frequency=user.notification_frequency or "immediate",
        shop=shop_record(shop) if shop is not None else None,
        fish_seller=(
            FishSellerRecord(id=seller.id, user_id=seller.user_id, market_name=seller.market_name, is_active=seller.is_active)
            if seller is not None
            else None
        ),
        worker=worker_record(worker) if worker is not None else None,
    )


def agreement_record(row: Agreement) -> AgreementRecord:
    creator = row.creator
    return AgreementRecord(
        id=row.id,
        agreement_number=row.agreement_number,
        creator_id=row.creator_id,
        creator_phone=creator.phone if creator else "",
        creator_name=creator.name if creator else "",
        direction=row.direction,
        amount=Decimal(row.amount),
        counterparty_name=row.counterparty_name,
        counterparty_phone=row.counterparty_phone,
        purpose=row.purpose,
        description=row.description,
        due_date=row.due_date,
        status=row.status,
        created_at=row.created_at,
        expires_at=row.expires_at,
        pdf_url=row.pdf_url,
    )


def offer_record(row: Offer, lat: Optional[float] = None, lng: Optional[float] = None) -> OfferRecord:
    shop = row.shop
    distance = None
    if lat is not None and lng is not None and shop.latitude is not None and shop.longitude is not None:
        distance = haversine_km(lat, lng, shop.latitude, shop.longitude)
    return OfferRecord(
        id=row.id,
        shop_id=row.shop_id,
        shop_name=shop.name,
        image_url=row.image_url,
        caption=row.caption,
        validity=row.validity,
        expires_at=row.expires_at,
        category=shop.category,
        latitude=shop.latitude,
        longitude=shop.longitude,
        shop_phone=shop.owner.phone if shop.owner is not None else "",
        distance_km=distance,
        view_count=row.view_count or 0,
    )


def request_record(row: ProductRequest, response_count: int = 0) -> ProductRequestRecord:
    return ProductRequestRecord(
        id=row.id,
        request_number=row.request_number,
        user_id=row.user_id,
        customer_phone=row.user.phone if row.user is not None else "",
        category=row.category,
        description=row.description,
        status=row.status,
        expires_at=row.expires_at,
        latitude=row.latitude,
        longitude=row.longitude,
        response_count=response_count,
    )


def response_record(row: ProductResponse) -> ProductResponseRecord:
    shop = row.shop
    return ProductResponseRecord(
        id=row.id,
        request_id=row.request_id,
        shop_id=row.shop_id,
        shop_name=shop.name if shop else "",
        available=row.available,
        price=Decimal(row.price) if row.price is not None else None,
        details=row.details,
        photo_url=row.photo_url,
        shop_phone=shop.owner.phone if shop is not None and shop.owner is not None else "",
        latitude=shop.latitude if shop else None,
        longitude=shop.longitude if shop else None,
    )


def fish_catch_record(row: FishCatch, lat: Optional[float] = None, lng: Optional[float] = None) -> FishCatchRecord:
    seller = row.seller
    user = seller.user if seller is not None else None
    seller_lat = user.latitude if user is not None else None
    seller_lng = user.longitude if user is not None else None
    distance = None
    if lat is not None and lng is not None and seller_lat is not None and seller_lng is not None:
        distance = haversine_km(lat, lng, seller_lat, seller_lng)
    return FishCatchRecord(
        id=row.id,
        seller_id=row.seller_id,
        fish_type=row.fish_type,
        quantity_range=row.quantity_range,
        price_per_kg=Decimal(row.price_per_kg),
        photo_url=row.photo_url,
        status=row.status,
        fish_name=row.fish.name if row.fish is not None else row.fish_type,
        seller_name=user.name if user is not None else "",
        seller_phone=user.phone if user is not None else "",
        market_name=seller.market_name if seller is not None else "",
        latitude=seller_lat,
        longitude=seller_lng,
        distance_km=distance,
        expires_at=_aware(row.expires_at),
    )


def offer_expiry(validity: str, now: Optional[datetime] = None) -> datetime:
    """End of today, of the third day, or of the seventh day."""
    now = now or _now()
    days = {"today": 0, "3days": 3, "week": 7}.get(validity, 3)
    end_day = (now + timedelta(days=days)).date()
    return datetime.combine(end_day, time(23, 59, 59), tzinfo=now.tzinfo or timezone.utc)


class _SqlService:
    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def _run(self, action: str, fn: Callable[[AsyncSession], Awaitable[ServiceResult]]) -> ServiceResult:
        try:
            async with self._session_factory() as db:
                return await fn(db)
        except SQLAlchemyError as exc:
            logger.error("{} failed: {}", action, exc)
            return ServiceResult.error(f"{action} failed")

    async def _list(self, action: str, fn: Callable[[AsyncSession], Awaitable[list]]) -> list:
        try:
            async with self._session_factory() as db:
                return await fn(db)
        except SQLAlchemyError as exc:
            logger.error("{} failed: {}", action, exc)
            return []


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class SqlUserService(_SqlService):
    async def get_by_phone(self, phone: str) -> Optional[UserRecord]:
        async with self._session_factory() as db:
            user = await UserRepository(db).get_by_phone(phone)
            return user_record(user) if user else None

    async def get_by_id(self, user_id: int) -> Optional[UserRecord]:
        async with self._session_factory() as db:
            user = await UserRepository(db).get_by_id(user_id)
            return user_record(user) if user else None

    async def _create(self, db: AsyncSession, phone: str, name: str, lat: float, lng: float, user_type: str):
        repo = UserRepository(db)
        user = await repo.get_any_by_phone(phone)
        if user is not None and user.is_active:
            return None, ServiceResult.not_actionable("phone already registered", user_record(user))
        if user is None:
            user = await repo.add(User(phone=phone, name=name, shop=None, fish_seller=None, worker=None))
        user.name = name
        user.user_type = user_type
        user.latitude = lat
        user.longitude = lng
        user.is_active = True
        user.deleted_at = None
        return user, None

    async def create_customer(self, phone: str, name: str, latitude: float, longitude: float) -> ServiceResult[UserRecord]:
        async def op(db: AsyncSession):
            user, refused = await self._create(db, phone, name, latitude, longitude, UserType.CUSTOMER.value)
            if refused:
                return refused
            await db.commit()
            logger.info("Customer registered {}", mask_phone(phone))
            return ServiceResult.ok(user_record(user))

        return await self._run("create_customer", op)

    async def create_shop_owner(
        self, phone: str, name: str, latitude: float, longitude: float, shop: dict[str, Any]
    ) -> ServiceResult[UserRecord]:
        async def op(db: AsyncSession):
            user, refused = await self._create(db, phone, name, latitude, longitude, UserType.SHOP.value)
            if refused:
                return refused
            repo = UserRepository(db)
            row = await repo.get_shop_for_owner(user.id)
            if row is None:
                row = Shop(owner=user)
                db.add(row)
            row.name = shop.get("name") or name
            row.category = shop.get("category") or "grocery"
            row.latitude = shop.get("latitude", latitude)
            row.longitude = shop.get("longitude", longitude)
            row.notification_frequency = shop.get("notification_frequency") or "immediate"
            row.is_active = True
            user.notification_frequency = row.notification_frequency
            await db.commit()
            logger.info("Shop owner registered {}", mask_phone(phone))
            return ServiceResult.ok(user_record(user))

        return await self._run("create_shop_owner", op)

    async def create_fish_seller(
        self, phone: str, name: str, latitude: float, longitude: float, market_name: str
    ) -> ServiceResult[UserRecord]:
        async def op(db: AsyncSession):
            user, refused = await self._create(db, phone, name, latitude, longitude, UserType.FISH_SELLER.value)
            if refused:
                return refused
            seller = await UserRepository(db).get_fish_seller(user.id)
            if seller is None:
                seller = FishSeller(user=user)
                db.add(seller)
            seller.market_name = market_name
            seller.is_active = True
            await db.commit()
            logger.info("Fish seller registered {}", mask_phone(phone))
            return ServiceResult.ok(user_record(user))

        return await self._run("create_fish_seller", op)

    async def register_worker(
        self, phone: str, name: str, latitude: float, longitude: float, worker: dict[str, Any]
    ) -> ServiceResult[UserRecord]:
        unknown = set(worker) - WORKER_FIELDS
        if unknown:
            return ServiceResult.error(f"unknown worker fields: {', '.join(sorted(unknown))}")

        async def op(db: AsyncSession):
            repo = UserRepository(db)
            user = await repo.get_any_by_phone(phone)
            if user is not None and user.is_active:
                if user.worker is not None and user.worker.is_available:
                    return ServiceResult.not_actionable("already registered as worker", user_record(user))
                if user.latitude is None or user.longitude is None:
                    user.latitude = latitude
                    user.longitude = longitude
            else:
                user, refused = await self._create(db, phone, name, latitude, longitude, UserType.WORKER.value)
                if refused:
                    return refused
            row = await repo.get_worker(user.id)
            if row is None:
                row = JobWorker(user=user)
                db.add(row)
            row.name = name or user.name
            row.photo_url = worker.get("photo_url")
            row.vehicle_type = worker.get("vehicle_type") or "none"
            row.job_types = list(worker.get("job_types") or [])
            row.availability = worker.get("availability") or "flexible"
            row.is_available = True
            await db.commit()
            logger.info("Worker registered {}", mask_phone(phone))
            return ServiceResult.ok(user_record(user))

        return await self._run("register_worker", op)

    async def update_location(self, user_id: int, latitude: float, longitude: float) -> ServiceResult[UserRecord]:
        async def op(db: AsyncSession):
            user = await UserRepository(db).get_by_id(user_id)
            if user is None:
                return ServiceResult.not_found("user not found")
            user.latitude = latitude
            user.longitude = longitude
            await db.commit()
            return ServiceResult.ok(user_record(user))

        return await self._run("update_location", op)

    async def update_notification_frequency(self, user_id: int, frequency: str) -> ServiceResult[UserRecord]:
        async def op(db: AsyncSession):
            user = await UserRepository(db).get_by_id(user_id)
            if user is None:
                return ServiceResult.not_found("user not found")
            user.notification_frequency = frequency
            if user.shop is not None:
                user.shop.notification_frequency = frequency
            await db.commit()
            return ServiceResult.ok(user_record(user))

        return await self._run("update_notification_frequency", op)

    async def update_shop(self, user_id: int, **fields: Any) -> ServiceResult[ShopRecord]:
        unknown = set(fields) - SHOP_FIELDS
        if unknown:
            return ServiceResult.error(f"unknown shop fields: {', '.join(sorted(unknown))}")

        async def op(db: AsyncSession):
            shop = await UserRepository(db).get_shop_for_owner(user_id)
            if shop is None or not shop.is_active:
                return ServiceResult.not_found("shop not found")
            for key, value in fields.items():
                setattr(shop, key, value)
            await db.commit()
            return ServiceResult.ok(shop_record(shop))

        return await self._run("update_shop", op)

    async def set_fish_seller_active(self, user_id: int, active: bool) -> ServiceResult[FishSellerRecord]:
        async def op(db: AsyncSession):
            seller = await UserRepository(db).get_fish_seller(user_id)
            if seller is None:
                return ServiceResult.not_found("fish seller not found")
            seller.is_active = active
            await db.commit()
            return ServiceResult.ok(
                FishSellerRecord(id=seller.id, user_id=seller.user_id, market_name=seller.market_name, is_active=active)
            )

        return await self._run("set_fish_seller_active", op)

    async def deactivate(self, user_id: int) -> ServiceResult[None]:
        async def op(db: AsyncSession):
            user = await UserRepository(db).get_by_id(user_id)
            if user is None:
                return ServiceResult.not_found("user not found")
            user.is_active = False
            user.deleted_at = _now()
            if user.shop is not None:
                user.shop.is_active = False
            if user.fish_seller is not None:
                user.fish_seller.is_active = False
            if user.worker is not None:
                user.worker.is_available = False
            await db.commit()
            logger.info("User {} deactivated", user_id)
            return ServiceResult.ok()

        return await self._run("deactivate", op)


# ---------------------------------------------------------------------------
# Agreements
# ---------------------------------------------------------------------------

class SqlAgreementService(_SqlService):
    def __init__(self, session_factory: SessionFactory, media: MediaStore):
        super().__init__(session_factory)
        self._media = media

    async def _next_number(self, repo: AgreementRepository) -> str:
        prefix = f"NB-AG-{_now().year}-"
        last = await repo.last_number_with_prefix(prefix)
        seq = int(last[len(prefix):]) + 1 if last and last[len(prefix):].isdigit() else 1
        return f"{prefix}{seq:04d}"

    @staticmethod
    def _expire_if_stale(row: Agreement) -> bool:
        expires = _aware(row.expires_at)
        if row.status == AgreementStatus.PENDING.value and expires is not None and expires <= _now():
            row.status = AgreementStatus.EXPIRED.value
            return True
        return False

    async def create_agreement(self, user: UserRecord, fields: dict[str, Any]) -> ServiceResult[AgreementRecord]:
        counterparty_phone = fields.get("other_party_phone") or ""
        if phones_match(counterparty_phone, user.phone):
            return ServiceResult.not_actionable("cannot create an agreement with yourself")
        due = fields.get("due_date")

        async def op(db: AsyncSession):
            repo = AgreementRepository(db)
            row = Agreement(
                agreement_number=await self._next_number(repo),
                creator_id=user.id,
                direction=fields["direction"],
                amount=Decimal(str(fields["amount"])),
                counterparty_name=fields["other_party_name"],
                counterparty_phone=counterparty_phone,
                purpose=fields["purpose"],
                description=fields.get("description"),
                due_date=date.fromisoformat(due) if due else None,
                status=AgreementStatus.PENDING.value,
                expires_at=_now() + timedelta(hours=settings.AGREEMENT_CONFIRM_HOURS),
            )
            await repo.add(row)
            await db.commit()
            await db.refresh(row)
            return ServiceResult.ok(agreement_record(row))

        return await self._run("create_agreement", op)

    async def get_agreement(self, agreement_id: int) -> ServiceResult[AgreementRecord]:
        async def op(db: AsyncSession):
            row = await AgreementRepository(db).get(agreement_id)
            if row is None:
                return ServiceResult.not_found("agreement not found")
            if self._expire_if_stale(row):
                await db.commit()
            return ServiceResult.ok(agreement_record(row))

        return await self._run("get_agreement", op)

    async def list_pending_for_phone(self, phone: str) -> list[AgreementRecord]:
        async def op(db: AsyncSession):
            rows = await AgreementRepository(db).pending_for_phone_suffix(_suffix(phone))
            return [agreement_record(r) for r in rows if phones_match(r.counterparty_phone, phone)]

        return await self._list("list_pending_for_phone", op)

    async def list_for_user(self, user: UserRecord) -> list[AgreementRecord]:
        async def op(db: AsyncSession):
            rows = await AgreementRepository(db).for_user(user.id, _suffix(user.phone))
            return [agreement_record(r) for r in rows]

        return await self._list("list_for_user", op)

    async def _decide(self, agreement_id: int, phone: str, status: AgreementStatus, action: str) -> ServiceResult[AgreementRecord]:
        async def op(db: AsyncSession):
            row = await AgreementRepository(db).get(agreement_id)
            if row is None:
                return ServiceResult.not_found("agreement not found")
            if not phones_match(row.counterparty_phone, phone):
                return ServiceResult.not_actionable("not the counterparty of this agreement")
            if self._expire_if_stale(row):
                await db.commit()
            if row.status != AgreementStatus.PENDING.value:
                return ServiceResult.not_actionable(f"This agreement is already {row.status}.", agreement_record(row))
            row.status = status.value
            row.responded_at = _now()
            await db.commit()
            logger.info("Agreement {} -> {} by {}", row.agreement_number, status.value, mask_phone(phone))
            return ServiceResult.ok(agreement_record(row))

        return await self._run(action, op)

    async def confirm_by_counterparty(self, agreement_id: int, phone: str) -> ServiceResult[AgreementRecord]:
        return await self._decide(agreement_id, phone, AgreementStatus.CONFIRMED, "confirm_agreement")

    async def reject_by_counterparty(self, agreement_id: int, phone: str) -> ServiceResult[AgreementRecord]:
        return await self._decide(agreement_id, phone, AgreementStatus.REJECTED, "reject_agreement")

    async def dispute_by_counterparty(self, agreement_id: int, phone: str) -> ServiceResult[AgreementRecord]:
        return await self._decide(agreement_id, phone, AgreementStatus.DISPUTED, "dispute_agreement")

    async def generate_pdf(self, agreement_id: int) -> ServiceResult[str]:
        async def op(db: AsyncSession):
            row = await AgreementRepository(db).get(agreement_id)
            if row is None:
                return ServiceResult.not_found("agreement not found")
            if row.status != AgreementStatus.CONFIRMED.value:
                return ServiceResult.not_actionable("PDF is only available for confirmed agreements")
            if row.pdf_url:
                return ServiceResult.ok(row.pdf_url)
            try:
                content = build_agreement_pdf(agreement_record(row), confirmed_at=row.responded_at)
            except Exception as exc:
                logger.exception("PDF build failed for {}", row.agreement_number)
                return ServiceResult.error(f"pdf build failed: {exc}")
            stored = await self._media.store_bytes(
                content, "agreements", f"agreement_{row.agreement_number}.pdf", "application/pdf"
            )
            if not stored.success:
                return ServiceResult.error(stored.error or "pdf upload failed")
            row.pdf_url = stored.url
            await db.commit()
            return ServiceResult.ok(stored.url)

        return await self._run("generate_pdf", op)


# ---------------------------------------------------------------------------
# Offers
# ---------------------------------------------------------------------------

class SqlOfferService(_SqlService):
    async def create_offer(
        self, shop: ShopRecord, image_url: str, caption: Optional[str], validity: str
    ) -> ServiceResult[OfferRecord]:
        async def op(db: AsyncSession):
            repo = OfferRepository(db)
            row = await repo.add(
                Offer(
                    shop_id=shop.id,
                    image_url=image_url,
                    caption=caption,
                    validity=validity,
                    expires_at=offer_expiry(validity),
                )
            )
            await db.commit()
            await db.refresh(row)
            return ServiceResult.ok(offer_record(row))

        return await self._run("create_offer", op)

    async def browse(
        self, latitude: float, longitude: float, radius_km: float, category: Optional[str] = None
    ) -> list[OfferRecord]:
        async def op(db: AsyncSession):
            rows = await OfferRepository(db).active_in_box(*bounding_box(latitude, longitude, radius_km), category)
            records = [offer_record(r, latitude, longitude) for r in rows]
            nearby = [r for r in records if r.distance_km is not None and r.distance_km <= radius_km]
            return sorted(nearby, key=lambda r: r.distance_km)

        return await self._list("browse_offers", op)

    async def get_offer(
        self, offer_id: int, latitude: Optional[float] = None, longitude: Optional[float] = None
    ) -> ServiceResult[OfferRecord]:
        async def op(db: AsyncSession):
            row = await OfferRepository(db).get(offer_id)
            if row is None:
                return ServiceResult.not_found("offer not found")
            if _aware(row.expires_at) <= _now():
                return ServiceResult.not_actionable("offer expired")
            row.view_count = (row.view_count or 0) + 1
            await db.commit()
            return ServiceResult.ok(offer_record(row, latitude, longitude))

        return await self._run("get_offer", op)

    async def list_for_shop(self, shop_id: int) -> list[OfferRecord]:
        async def op(db: AsyncSession):
            return [offer_record(r) for r in await OfferRepository(db).active_for_shop(shop_id)]

        return await self._list("list_shop_offers", op)

    async def extend_offer(self, offer_id: int, shop_id: int, validity: str) -> ServiceResult[OfferRecord]:
        async def op(db: AsyncSession):
            row = await OfferRepository(db).get(offer_id)
            if row is None or row.shop_id != shop_id:
                return ServiceResult.not_found("offer not found")
            row.validity = validity
            row.expires_at = offer_expiry(validity)
            await db.commit()
            logger.info("Offer {} extended to {}", offer_id, validity)
            return ServiceResult.ok(offer_record(row))

        return await self._run("extend_offer", op)

    async def delete_offer(self, offer_id: int, shop_id: int) -> ServiceResult[None]:
        async def op(db: AsyncSession):
            repo = OfferRepository(db)
            row = await repo.get(offer_id)
            if row is None or row.shop_id != shop_id:
                return ServiceResult.not_found("offer not found")
            await repo.delete(row)
            await db.commit()
            logger.info("Offer {} deleted by shop {}", offer_id, shop_id)
            return ServiceResult.ok()

        return await self._run("delete_offer", op)


# ---------------------------------------------------------------------------
# Product requests
# ---------------------------------------------------------------------------

class SqlProductService(_SqlService):
    async def _new_number(self, repo: ProductRepository) -> str:
        alphabet = string.ascii_uppercase + string.digits
        while True:
            number = "NB-" + "".join(random.choices(alphabet, k=4))
            if not await repo.request_number_exists(number):
                return number

    @staticmethod
    def _expire_if_stale(row: ProductRequest) -> bool:
        expires = _aware(row.expires_at)
        if row.status == RequestStatus.OPEN.value and expires is not None and expires <= _now():
            row.status = RequestStatus.EXPIRED.value
            return True
        return False

    async def create_request(self, user: UserRecord, category: str, description: str) -> ServiceResult[ProductRequestRecord]:
        if not user.has_location():
            return ServiceResult.not_actionable("location required")

        async def op(db: AsyncSession):
            repo = ProductRepository(db)
            row = await repo.add(
                ProductRequest(
                    request_number=await self._new_number(repo),
                    user_id=user.id,
                    category=category,
                    description=description,
                    latitude=user.latitude,
                    longitude=user.longitude,
                    radius_km=REQUEST_RADIUS_KM,
                    status=RequestStatus.OPEN.value,
                    expires_at=_now() + timedelta(hours=settings.REQUEST_EXPIRY_HOURS),
                )
            )
            await db.commit()
            await db.refresh(row)
            return ServiceResult.ok(request_record(row))

        return await self._run("create_request", op)

    async def find_eligible_shops(self, request: ProductRequestRecord) -> list[ShopRecord]:
        if request.latitude is None or request.longitude is None:
            return []

        async def op(db: AsyncSession):
            box = bounding_box(request.latitude, request.longitude, REQUEST_RADIUS_KM)
            shops = await UserRepository(db).shops_in_box(request.category, *box)
            ranked = []
            for shop in shops:
                if shop.owner_id == request.user_id:
                    continue
                distance = haversine_km(request.latitude, request.longitude, shop.latitude, shop.longitude)
                if distance <= REQUEST_RADIUS_KM:
                    ranked.append((distance, shop))
            ranked.sort(key=lambda pair: pair[0])
            return [shop_record(shop) for _, shop in ranked[:MAX_ELIGIBLE_SHOPS]]

        return await self._list("find_eligible_shops", op)

    async def get_request(self, request_id: int) -> ServiceResult[ProductRequestRecord]:
        async def op(db: AsyncSession):
            repo = ProductRepository(db)
            row = await repo.get_request(request_id)
            if row is None:
                return ServiceResult.not_found("request not found")
            if self._expire_if_stale(row):
                await db.commit()
            return ServiceResult.ok(request_record(row, await repo.count_responses(row.id)))

        return await self._run("get_request", op)

    async def list_for_user(self, user_id: int) -> list[ProductRequestRecord]:
        async def op(db: AsyncSession):
            repo = ProductRepository(db)
            rows = await repo.requests_for_user(user_id)
            return [request_record(r, await repo.count_responses(r.id)) for r in rows]

        return await self._list("list_user_requests", op)

    async def list_open_for_shop(self, shop: ShopRecord) -> list[ProductRequestRecord]:
        async def op(db: AsyncSession):
            rows = await ProductRepository(db).open_requests_in_category(shop.category, shop.id)
            result = []
            for row in rows:
                if row.user_id == shop.owner_id:
                    continue
                if None not in (shop.latitude, shop.longitude, row.latitude, row.longitude):
                    distance = haversine_km(shop.latitude, shop.longitude, row.latitude, row.longitude)
                    if distance > (row.radius_km or REQUEST_RADIUS_KM):
                        continue
                result.append(request_record(row))
            return result

        return await self._list("list_open_for_shop", op)

    async def has_responded(self, request_id: int, shop_id: int) -> bool:
        async with self._session_factory() as db:
            return await ProductRepository(db).response_for(request_id, shop_id) is not None

    async def create_response(
        self,
        request_id: int,
        shop: ShopRecord,
        available: bool,
        price: Optional[Decimal] = None,
        details: Optional[str] = None,
        photo_url: Optional[str] = None,
    ) -> ServiceResult[ProductResponseRecord]:
        async def op(db: AsyncSession):
            repo = ProductRepository(db)
            request = await repo.get_request(request_id)
            if request is None:
                return ServiceResult.not_found("request not found")
            self._expire_if_stale(request)
            if request.status != RequestStatus.OPEN.value:
                await db.commit()
                return ServiceResult.not_actionable("request is no longer open")
            if await repo.response_for(request_id, shop.id) is not None:
                return ServiceResult.not_actionable("already responded")
            try:
                row = await repo.add(
                    ProductResponse(
                        request_id=request_id,
                        shop_id=shop.id,
                        available=available,
                        price=price,
                        details=details,
                        photo_url=photo_url,
                    )
                )
                await db.commit()
            except IntegrityError:
                await db.rollback()
                return ServiceResult.not_actionable("already responded")
            await db.refresh(row)
            return ServiceResult.ok(response_record(row))

        return await self._run("create_response", op)

    async def list_responses(self, request_id: int) -> list[ProductResponseRecord]:
        async def op(db: AsyncSession):
            return [response_record(r) for r in await ProductRepository(db).responses_for(request_id)]

        return await self._list("list_responses", op)

    async def get_response(self, response_id: int) -> ServiceResult[ProductResponseRecord]:
        async def op(db: AsyncSession):
            row = await ProductRepository(db).get_response(response_id)
            if row is None:
                return ServiceResult.not_found("response not found")
            return ServiceResult.ok(response_record(row))

        return await self._run("get_response", op)


# ---------------------------------------------------------------------------
# Fish
# ---------------------------------------------------------------------------

class SqlFishService(_SqlService):
    async def list_fish_types(self) -> list[FishTypeRecord]:
        async def op(db: AsyncSession):
            rows = await FishRepository(db).active_types()
            return [FishTypeRecord(code=r.code, name=r.name, local_name=r.local_name or "") for r in rows]

        return await self._list("list_fish_types", op)

    async def create_catch(
        self,
        seller: FishSellerRecord,
        fish_type: str,
        quantity_range: str,
        price_per_kg: Decimal,
        photo_url: Optional[str],
    ) -> ServiceResult[FishCatchRecord]:
        async def op(db: AsyncSession):
            repo = FishRepository(db)
            if await repo.get_type(fish_type) is None:
                return ServiceResult.not_found("unknown fish type")
            row = await repo.add_catch(
                FishCatch(
                    seller_id=seller.id,
                    fish_type=fish_type,
                    quantity_range=quantity_range,
                    price_per_kg=price_per_kg,
                    photo_url=photo_url,
                    status="available",
                    expires_at=_now() + timedelta(hours=FISH_CATCH_EXPIRY_HOURS),
                )
            )
            await db.commit()
            await db.refresh(row)
            return ServiceResult.ok(fish_catch_record(row))

        return await self._run("create_catch", op)

    async def browse_catches(
        self, latitude: float, longitude: float, radius_km: float, fish_type: Optional[str] = None
    ) -> list[FishCatchRecord]:
        async def op(db: AsyncSession):
            rows = await FishRepository(db).active_catches_in_box(
                *bounding_box(latitude, longitude, radius_km), fish_type
            )
            records = [fish_catch_record(r, latitude, longitude) for r in rows]
            nearby = [r for r in records if r.distance_km is not None and r.distance_km <= radius_km]
            return sorted(nearby, key=lambda r: r.distance_km)

        return await self._list("browse_catches", op)

    async def get_catch(
        self, catch_id: int, latitude: Optional[float] = None, longitude: Optional[float] = None
    ) -> ServiceResult[FishCatchRecord]:
        async def op(db: AsyncSession):
            row = await FishRepository(db).get_catch(catch_id)
            if row is None:
                return ServiceResult.not_found("catch not found")
            if row.status != "available" or (row.expires_at is not None and _aware(row.expires_at) <= _now()):
                return ServiceResult.not_actionable("catch no longer available")
            return ServiceResult.ok(fish_catch_record(row, latitude, longitude))

        return await self._run("get_catch", op)

    async def seed_fish_types(self) -> int:
        """Insert the default fish list when the table is empty.  Returns rows added."""
        async with self._session_factory() as db:
            if await FishRepository(db).active_types():
                return 0
            for order, (code, name, local) in enumerate(DEFAULT_FISH_TYPES):
                db.add(FishType(code=code, name=name, local_name=local, sort_order=order))
            await db.commit()
            logger.info("Seeded {} fish types", len(DEFAULT_FISH_TYPES))
            return len(DEFAULT_FISH_TYPES)


def build_sql_services(session_factory: SessionFactory, media: MediaStore) -> FlowServices:
    return FlowServices(
        users=SqlUserService(session_factory),
        agreements=SqlAgreementService(session_factory, media),
        offers=SqlOfferService(session_factory),
        products=SqlProductService(session_factory),
        fish=SqlFishService(session_factory),
        media=media,
    )
