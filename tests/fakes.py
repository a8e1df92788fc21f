"""In-memory stand-ins for Redis, the WhatsApp sender and the domain services."""

import asyncio
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from redis.exceptions import LockError

from nearbuy.domain.models import (
    AgreementRecord,
    AgreementStatus,
    FishCatchRecord,
    FishSellerRecord,
    FishTypeRecord,
    MediaResult,
    OfferRecord,
    ProductRequestRecord,
    ProductResponseRecord,
    ServiceResult,
    ShopRecord,
    UserRecord,
    UserType,
    WorkerRecord,
)
from nearbuy.domain.services.contracts import FlowServices
from nearbuy.domain.services.geo import haversine_km
from nearbuy.domain.services.validators import phones_match

CUSTOMER_PHONE = "919876500001"
SHOP_PHONE = "919876500002"
FISH_PHONE = "919876500003"
STRANGER_PHONE = "919999900000"


# ── Redis ─────────────────────────────────────────────────────────────

class FakeLock:
    def __init__(self, redis, name, blocking_timeout=None):
        self._redis = redis
        self._name = name
        self._blocking_timeout = blocking_timeout

    async def acquire(self):
        waited = 0.0
        while self._name in self._redis.held:
            if self._blocking_timeout is not None and waited >= self._blocking_timeout:
                return False
            await asyncio.sleep(0.005)
            waited += 0.005
        self._redis.held.add(self._name)
        return True

    async def release(self):
        if self._name not in self._redis.held:
            raise LockError("lock not held")
        self._redis.held.discard(self._name)


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.expiry = {}
        self.held = set()

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None, nx=False):
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.expiry[key] = ex
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    async def ping(self):
        return True

    def lock(self, name, timeout=None, blocking_timeout=None):
        return FakeLock(self, name, blocking_timeout)


# ── Outbound messages ────────────────────────────────────────────────

@dataclass
class Sent:
    kind: str
    phone: str
    body: str = ""
    ids: list = field(default_factory=list)
    extra: dict = field(default_factory=dict)


class RecordingSender:
    def __init__(self):
        self.sent = []

    async def send_text(self, phone, body):
        self.sent.append(Sent("text", phone, body))

    async def send_buttons(self, phone, body, buttons, header=None, footer=None):
        self.sent.append(Sent("buttons", phone, body, [b["id"] for b in buttons]))

    async def send_list(self, phone, body, button_label, sections, header=None, footer=None):
        ids = [row["id"] for section in sections for row in section.get("rows", [])]
        self.sent.append(Sent("list", phone, body, ids, {"header": header}))

    async def send_image(self, phone, url, caption=None):
        self.sent.append(Sent("image", phone, caption or "", extra={"url": url}))

    async def send_document(self, phone, url, filename=None, caption=None):
        self.sent.append(Sent("document", phone, caption or "", extra={"url": url, "filename": filename}))

    async def send_location(self, phone, latitude, longitude, name=None, address=None):
        self.sent.append(Sent("location", phone, name or "", extra={"lat": latitude, "lng": longitude}))

    async def request_location(self, phone, body):
        self.sent.append(Sent("location_request", phone, body))

    # helpers

    def to(self, phone):
        return [s for s in self.sent if s.phone == phone]

    def last(self, phone):
        messages = self.to(phone)
        return messages[-1] if messages else None

    def texts(self, phone):
        return [s.body for s in self.to(phone) if s.kind == "text"]

    def last_options(self, phone):
        """Ids of the last buttons or list shown to ``phone``."""
        for s in reversed(self.to(phone)):
            if s.kind in ("buttons", "list"):
                return s.ids
        return []

    def clear(self):
        self.sent.clear()


class FailingSender(RecordingSender):
    """Raises on any message to ``bad_phone``."""

    def __init__(self, bad_phone):
        super().__init__()
        self.bad_phone = bad_phone

    async def send_buttons(self, phone, body, buttons, header=None, footer=None):
        if phone == self.bad_phone:
            raise RuntimeError("WhatsApp API unavailable")
        await super().send_buttons(phone, body, buttons, header, footer)


# ── Users ─────────────────────────────────────────────────────────────

class FakeUserService:
    def __init__(self):
        self.users = {}
        self._next_id = 1
        self.registered_workers = []
        self._next_shop_id = 1

    def _new_id(self):
        user_id = self._next_id
        self._next_id += 1
        return user_id

    def add_customer(self, phone, name="Asha", latitude=10.0, longitude=76.0):
        user = UserRecord(id=self._new_id(), phone=phone, name=name, latitude=latitude, longitude=longitude)
        self.users[user.id] = user
        return user

    def add_shop(self, phone, name="Ravi", shop_name="Ravi Stores", category="electronics",
                 latitude=10.0, longitude=76.0):
        user = UserRecord(
            id=self._new_id(), phone=phone, name=name, user_type=UserType.SHOP.value,
            latitude=latitude, longitude=longitude,
        )
        user.shop = ShopRecord(
            id=self._next_shop_id, owner_id=user.id, name=shop_name, category=category,
            latitude=latitude, longitude=longitude, owner_phone=phone,
        )
        self._next_shop_id += 1
        self.users[user.id] = user
        return user

    def add_fish_seller(self, phone, name="Joseph", market_name="Fort Kochi", latitude=9.96, longitude=76.24):
        user = UserRecord(
            id=self._new_id(), phone=phone, name=name, user_type=UserType.FISH_SELLER.value,
            latitude=latitude, longitude=longitude,
        )
        user.fish_seller = FishSellerRecord(id=user.id, user_id=user.id, market_name=market_name)
        self.users[user.id] = user
        return user

    def add_worker(self, phone, name="Manoj", job_types=("parcel_delivery",), latitude=10.0, longitude=76.0):
        user = UserRecord(
            id=self._new_id(), phone=phone, name=name, user_type=UserType.WORKER.value,
            latitude=latitude, longitude=longitude,
        )
        user.worker = WorkerRecord(id=user.id, user_id=user.id, name=name, job_types=list(job_types))
        self.users[user.id] = user
        return user

    async def get_by_phone(self, phone):
        return next((u for u in self.users.values() if u.phone == phone), None)

    async def get_by_id(self, user_id):
        return self.users.get(user_id)

    async def _create(self, phone, name, latitude, longitude, user_type):
        if await self.get_by_phone(phone) is not None:
            return None
        user = UserRecord(
            id=self._new_id(), phone=phone, name=name, user_type=user_type,
            latitude=latitude, longitude=longitude,
        )
        self.users[user.id] = user
        return user

    async def create_customer(self, phone, name, latitude, longitude):
        user = await self._create(phone, name, latitude, longitude, UserType.CUSTOMER.value)
        if user is None:
            return ServiceResult.not_actionable("phone already registered")
        return ServiceResult.ok(user)

    async def create_shop_owner(self, phone, name, latitude, longitude, shop):
        user = await self._create(phone, name, latitude, longitude, UserType.SHOP.value)
        if user is None:
            return ServiceResult.not_actionable("phone already registered")
        user.shop = ShopRecord(
            id=self._next_shop_id, owner_id=user.id, name=shop["name"], category=shop["category"],
            latitude=shop.get("latitude"), longitude=shop.get("longitude"),
            notification_frequency=shop.get("notification_frequency", "immediate"), owner_phone=phone,
        )
        self._next_shop_id += 1
        return ServiceResult.ok(user)

    async def create_fish_seller(self, phone, name, latitude, longitude, market_name):
        user = await self._create(phone, name, latitude, longitude, UserType.FISH_SELLER.value)
        if user is None:
            return ServiceResult.not_actionable("phone already registered")
        user.fish_seller = FishSellerRecord(id=user.id, user_id=user.id, market_name=market_name)
        return ServiceResult.ok(user)

    async def register_worker(self, phone, name, latitude, longitude, worker):
        user = await self.get_by_phone(phone)
        if user is None:
            user = await self._create(phone, name, latitude, longitude, UserType.WORKER.value)
        elif user.worker is not None:
            return ServiceResult.not_actionable("already registered as worker", user)
        elif not user.has_location():
            user.latitude, user.longitude = latitude, longitude
        user.worker = WorkerRecord(
            id=user.id, user_id=user.id, name=name,
            vehicle_type=worker.get("vehicle_type", "none"),
            job_types=list(worker.get("job_types", [])),
            availability=worker.get("availability", "flexible"),
            photo_url=worker.get("photo_url"),
        )
        self.registered_workers.append(dict(worker))
        return ServiceResult.ok(user)

    async def update_location(self, user_id, latitude, longitude):
        user = self.users.get(user_id)
        if user is None:
            return ServiceResult.not_found("user not found")
        user.latitude, user.longitude = latitude, longitude
        return ServiceResult.ok(user)

    async def update_notification_frequency(self, user_id, frequency):
        user = self.users.get(user_id)
        if user is None:
            return ServiceResult.not_found("user not found")
        user.notification_frequency = frequency
        return ServiceResult.ok(user)

    async def update_shop(self, user_id, **fields):
        user = self.users.get(user_id)
        if user is None or user.shop is None:
            return ServiceResult.not_found("shop not found")
        user.shop = replace(user.shop, **fields)
        return ServiceResult.ok(user.shop)

    async def set_fish_seller_active(self, user_id, active):
        user = self.users.get(user_id)
        if user is None or user.fish_seller is None:
            return ServiceResult.not_found("fish seller not found")
        user.fish_seller = replace(user.fish_seller, is_active=active)
        return ServiceResult.ok(user.fish_seller)

    async def deactivate(self, user_id):
        if self.users.pop(user_id, None) is None:
            return ServiceResult.not_found("user not found")
        return ServiceResult.ok(None)


# ── Agreements ────────────────────────────────────────────────────────

class FakeAgreementService:
    def __init__(self):
        self.agreements = {}
        self.created_fields = []
        self.pdf_requests = []
        self.fail_create = False

    async def create_agreement(self, user, fields):
        if self.fail_create:
            return ServiceResult.error("database unavailable")
        self.created_fields.append(dict(fields))
        agreement_id = len(self.agreements) + 1
        due = fields.get("due_date")
        agreement = AgreementRecord(
            id=agreement_id,
            agreement_number=f"NB-AG-2026-{agreement_id:04d}",
            creator_id=user.id,
            creator_phone=user.phone,
            creator_name=user.name,
            direction=fields["direction"],
            amount=Decimal(str(fields["amount"])),
            counterparty_name=fields["other_party_name"],
            counterparty_phone=fields["other_party_phone"],
            purpose=fields["purpose"],
            description=fields.get("description"),
            due_date=date.fromisoformat(due) if due else None,
            created_at=datetime.now(timezone.utc),
            expires_at=datetime.now(timezone.utc) + timedelta(hours=72),
        )
        self.agreements[agreement_id] = agreement
        return ServiceResult.ok(agreement)

    async def get_agreement(self, agreement_id):
        agreement = self.agreements.get(agreement_id)
        if agreement is None:
            return ServiceResult.not_found("agreement not found")
        return ServiceResult.ok(agreement)

    async def list_pending_for_phone(self, phone):
        return [
            a for a in self.agreements.values()
            if a.is_pending and phones_match(a.counterparty_phone, phone)
        ]

    async def list_for_user(self, user):
        return [
            a for a in self.agreements.values()
            if a.creator_id == user.id or phones_match(a.counterparty_phone, user.phone)
        ]

    async def _decide(self, agreement_id, phone, status):
        agreement = self.agreements.get(agreement_id)
        if agreement is None:
            return ServiceResult.not_found("agreement not found")
        if not phones_match(agreement.counterparty_phone, phone):
            return ServiceResult.not_actionable("not the counterparty of this agreement")
        if not agreement.is_pending:
            return ServiceResult.not_actionable(f"This agreement is already {agreement.status}.", agreement)
        agreement.status = status.value
        return ServiceResult.ok(agreement)

    async def confirm_by_counterparty(self, agreement_id, phone):
        return await self._decide(agreement_id, phone, AgreementStatus.CONFIRMED)

    async def reject_by_counterparty(self, agreement_id, phone):
        return await self._decide(agreement_id, phone, AgreementStatus.REJECTED)

    async def dispute_by_counterparty(self, agreement_id, phone):
        return await self._decide(agreement_id, phone, AgreementStatus.DISPUTED)

    async def generate_pdf(self, agreement_id):
        self.pdf_requests.append(agreement_id)
        agreement = self.agreements.get(agreement_id)
        if agreement is None:
            return ServiceResult.not_found("agreement not found")
        if agreement.status != AgreementStatus.CONFIRMED.value:
            return ServiceResult.not_actionable("PDF is only available for confirmed agreements")
        agreement.pdf_url = f"https://cdn.test/agreements/{agreement.agreement_number}.pdf"
        return ServiceResult.ok(agreement.pdf_url)


# ── Offers ────────────────────────────────────────────────────────────

class FakeOfferService:
    def __init__(self):
        self.offers = {}
        self.expired = set()

    def add_offer(self, shop_user, caption="20% off", image_url="https://cdn.test/offers/1.jpg"):
        shop = shop_user.shop
        offer = OfferRecord(
            id=max(self.offers, default=0) + 1, shop_id=shop.id, shop_name=shop.name, image_url=image_url,
            caption=caption, category=shop.category, latitude=shop.latitude, longitude=shop.longitude,
            shop_phone=shop.owner_phone,
        )
        self.offers[offer.id] = offer
        return offer

    async def create_offer(self, shop, image_url, caption, validity):
        offer = OfferRecord(
            id=max(self.offers, default=0) + 1, shop_id=shop.id, shop_name=shop.name, image_url=image_url,
            caption=caption, validity=validity, category=shop.category,
            latitude=shop.latitude, longitude=shop.longitude, shop_phone=shop.owner_phone,
        )
        self.offers[offer.id] = offer
        return ServiceResult.ok(offer)

    async def browse(self, latitude, longitude, radius_km, category=None):
        found = []
        for offer in self.offers.values():
            if offer.id in self.expired or (category and offer.category != category):
                continue
            distance = haversine_km(latitude, longitude, offer.latitude, offer.longitude)
            if distance <= radius_km:
                found.append(replace(offer, distance_km=distance))
        return sorted(found, key=lambda o: o.distance_km)

    async def get_offer(self, offer_id, latitude=None, longitude=None):
        offer = self.offers.get(offer_id)
        if offer is None:
            return ServiceResult.not_found("offer not found")
        if offer_id in self.expired:
            return ServiceResult.not_actionable("offer expired")
        return ServiceResult.ok(offer)

    async def list_for_shop(self, shop_id):
        return [o for o in self.offers.values() if o.shop_id == shop_id and o.id not in self.expired]

    async def extend_offer(self, offer_id, shop_id, validity):
        offer = self.offers.get(offer_id)
        if offer is None or offer.shop_id != shop_id:
            return ServiceResult.not_found("offer not found")
        offer.validity = validity
        self.expired.discard(offer_id)
        return ServiceResult.ok(offer)

    async def delete_offer(self, offer_id, shop_id):
        offer = self.offers.get(offer_id)
        if offer is None or offer.shop_id != shop_id:
            return ServiceResult.not_found("offer not found")
        del self.offers[offer_id]
        return ServiceResult.ok(None)


# ── Product requests ──────────────────────────────────────────────────

class FakeProductService:
    def __init__(self, users):
        self._users = users
        self.requests = {}
        self.responses = {}

    async def create_request(self, user, category, description):
        if not user.has_location():
            return ServiceResult.not_actionable("location required")
        request = ProductRequestRecord(
            id=len(self.requests) + 1,
            request_number=f"NB-{len(self.requests) + 1:04d}",
            user_id=user.id,
            customer_phone=user.phone,
            category=category,
            description=description,
            latitude=user.latitude,
            longitude=user.longitude,
        )
        self.requests[request.id] = request
        return ServiceResult.ok(request)

    async def find_eligible_shops(self, request):
        return [
            u.shop for u in self._users.users.values()
            if u.shop is not None and u.shop.category == request.category
        ]

    async def get_request(self, request_id):
        request = self.requests.get(request_id)
        if request is None:
            return ServiceResult.not_found("request not found")
        return ServiceResult.ok(request)

    async def list_for_user(self, user_id):
        return [r for r in self.requests.values() if r.user_id == user_id]

    async def list_open_for_shop(self, shop):
        return [r for r in self.requests.values() if r.is_open and r.category == shop.category]

    async def has_responded(self, request_id, shop_id):
        return any(r.request_id == request_id and r.shop_id == shop_id for r in self.responses.values())

    async def create_response(self, request_id, shop, available, price=None, details=None, photo_url=None):
        if await self.has_responded(request_id, shop.id):
            return ServiceResult.not_actionable("already responded")
        response = ProductResponseRecord(
            id=len(self.responses) + 1, request_id=request_id, shop_id=shop.id, shop_name=shop.name,
            available=available, price=price, details=details, photo_url=photo_url,
            shop_phone=shop.owner_phone, latitude=shop.latitude, longitude=shop.longitude,
        )
        self.responses[response.id] = response
        self.requests[request_id].response_count += 1
        return ServiceResult.ok(response)

    async def list_responses(self, request_id):
        return [r for r in self.responses.values() if r.request_id == request_id]

    async def get_response(self, response_id):
        response = self.responses.get(response_id)
        if response is None:
            return ServiceResult.not_found("response not found")
        return ServiceResult.ok(response)


# ── Fish ──────────────────────────────────────────────────────────────

class FakeFishService:
    def __init__(self, users):
        self._users = users
        self.types = [
            FishTypeRecord("sardine", "Sardine", "Mathi"),
            FishTypeRecord("mackerel", "Mackerel", "Ayala"),
            FishTypeRecord("prawns", "Prawns", "Chemmeen"),
        ]
        self.catches = []
        self.gone = set()

    def _record(self, seller_user, fish_type, quantity_range, price_per_kg, photo_url):
        fish = next((t for t in self.types if t.code == fish_type), None)
        catch = FishCatchRecord(
            id=len(self.catches) + 1, seller_id=seller_user.fish_seller.id, fish_type=fish_type,
            quantity_range=quantity_range, price_per_kg=price_per_kg, photo_url=photo_url,
            fish_name=fish.name if fish else fish_type, seller_name=seller_user.name,
            seller_phone=seller_user.phone, market_name=seller_user.fish_seller.market_name,
            latitude=seller_user.latitude, longitude=seller_user.longitude,
        )
        self.catches.append(catch)
        return catch

    def add_catch(self, seller_user, fish_type="sardine", quantity_range="5-10kg",
                  price_per_kg=Decimal("180"), photo_url="https://cdn.test/fish/1.jpg"):
        return self._record(seller_user, fish_type, quantity_range, price_per_kg, photo_url)

    async def list_fish_types(self):
        return list(self.types)

    async def create_catch(self, seller, fish_type, quantity_range, price_per_kg, photo_url):
        if fish_type not in {t.code for t in self.types}:
            return ServiceResult.not_found("unknown fish type")
        seller_user = self._users.users[seller.user_id]
        return ServiceResult.ok(self._record(seller_user, fish_type, quantity_range, price_per_kg, photo_url))

    async def browse_catches(self, latitude, longitude, radius_km, fish_type=None):
        found = []
        for catch in self.catches:
            if catch.id in self.gone or (fish_type and catch.fish_type != fish_type):
                continue
            distance = haversine_km(latitude, longitude, catch.latitude, catch.longitude)
            if distance <= radius_km:
                found.append(replace(catch, distance_km=distance))
        return sorted(found, key=lambda c: c.distance_km)

    async def get_catch(self, catch_id, latitude=None, longitude=None):
        catch = next((c for c in self.catches if c.id == catch_id), None)
        if catch is None:
            return ServiceResult.not_found("catch not found")
        if catch_id in self.gone:
            return ServiceResult.not_actionable("catch no longer available")
        return ServiceResult.ok(catch)


# ── Media ─────────────────────────────────────────────────────────────

class FakeMediaStore:
    def __init__(self):
        self.downloads = []
        self.fail = False

    async def download_and_store(self, media_id, folder):
        self.downloads.append((media_id, folder))
        if self.fail:
            return MediaResult(success=False, error="download failed")
        return MediaResult(success=True, url=f"https://cdn.test/{folder}/{media_id}.jpg", mime_type="image/jpeg")

    async def store_bytes(self, content, folder, filename, mime_type):
        return MediaResult(success=True, url=f"https://cdn.test/{folder}/{filename}", mime_type=mime_type)


def make_services() -> FlowServices:
    users = FakeUserService()
    return FlowServices(
        users=users,
        agreements=FakeAgreementService(),
        offers=FakeOfferService(),
        products=FakeProductService(users),
        fish=FakeFishService(users),
        media=FakeMediaStore(),
    )
