# nearbuy/domain/models.py
"""
Plain records passed between the flows and the domain services.

The flows only read these; every mutation goes through a service call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Service results
# ---------------------------------------------------------------------------

class ResultKind(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    NOT_ACTIONABLE = "not_actionable"
    ERROR = "error"


@dataclass(frozen=True)
class ServiceResult(Generic[T]):
    kind: ResultKind
    value: Optional[T] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, value: T = None) -> "ServiceResult[T]":
        return cls(ResultKind.OK, value)

    @classmethod
    def not_found(cls, message: str = "not found") -> "ServiceResult[T]":
        return cls(ResultKind.NOT_FOUND, None, message)

    @classmethod
    def not_actionable(cls, message: str, value: T = None) -> "ServiceResult[T]":
        return cls(ResultKind.NOT_ACTIONABLE, value, message)

    @classmethod
    def error(cls, message: str) -> "ServiceResult[T]":
        return cls(ResultKind.ERROR, None, message)

    @property
    def is_ok(self) -> bool:
        return self.kind == ResultKind.OK


@dataclass(frozen=True)
class MediaResult:
    success: bool
    url: Optional[str] = None
    error: Optional[str] = None
    mime_type: Optional[str] = None


# ---------------------------------------------------------------------------
# Users & roles
# ---------------------------------------------------------------------------

class UserType(str, Enum):
    CUSTOMER = "customer"
    SHOP = "shop"
    FISH_SELLER = "fish_seller"
    WORKER = "worker"


@dataclass
class ShopRecord:
    id: int
    owner_id: int
    name: str
    category: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    notification_frequency: str = "immediate"
    owner_phone: str = ""


@dataclass
class FishSellerRecord:
    id: int
    user_id: int
    market_name: str
    is_active: bool = True


@dataclass
class WorkerRecord:
    id: int
    user_id: int
    name: str
    vehicle_type: str = "none"
    job_types: list[str] = field(default_factory=list)
    availability: str = "flexible"
    photo_url: Optional[str] = None
    is_available: bool = True


@dataclass
class UserRecord:
    id: int
    phone: str
    name: str
    user_type: str = UserType.CUSTOMER.value
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    notification_frequency: str = "immediate"
    shop: Optional[ShopRecord] = None
    fish_seller: Optional[FishSellerRecord] = None
    worker: Optional[WorkerRecord] = None

    def is_shop_owner(self) -> bool:
        return self.shop is not None

    def is_fish_seller(self) -> bool:
        return self.fish_seller is not None

    def is_worker(self) -> bool:
        return self.worker is not None

    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


# ---------------------------------------------------------------------------
# Agreements
# ---------------------------------------------------------------------------

class AgreementStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    DISPUTED = "disputed"
    EXPIRED = "expired"


@dataclass
class AgreementRecord:
    id: int
    agreement_number: str
    creator_id: int
    creator_phone: str
    creator_name: str
    direction: str
    amount: Decimal
    counterparty_name: str
    counterparty_phone: str
    purpose: str
    description: Optional[str] = None
    due_date: Optional[date] = None
    status: str = AgreementStatus.PENDING.value
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    pdf_url: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == AgreementStatus.PENDING.value


# ---------------------------------------------------------------------------
# Offers
# ---------------------------------------------------------------------------

@dataclass
class OfferRecord:
    id: int
    shop_id: int
    shop_name: str
    image_url: str
    caption: Optional[str] = None
    validity: str = "today"
    expires_at: Optional[datetime] = None
    category: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    shop_phone: str = ""
    distance_km: Optional[float] = None
    view_count: int = 0


# ---------------------------------------------------------------------------
# Product requests
# ---------------------------------------------------------------------------

class RequestStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    EXPIRED = "expired"


@dataclass
class ProductRequestRecord:
    id: int
    request_number: str
    user_id: int
    customer_phone: str
    category: str
    description: str
    status: str = RequestStatus.OPEN.value
    expires_at: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    response_count: int = 0

    @property
    def is_open(self) -> bool:
        return self.status == RequestStatus.OPEN.value


@dataclass
class ProductResponseRecord:
    id: int
    request_id: int
    shop_id: int
    shop_name: str
    available: bool
    price: Optional[Decimal] = None
    details: Optional[str] = None
    photo_url: Optional[str] = None
    shop_phone: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None


# ---------------------------------------------------------------------------
# Fish catches
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FishTypeRecord:
    code: str
    name: str
    local_name: str = ""


@dataclass
class FishCatchRecord:
    id: int
    seller_id: int
    fish_type: str
    quantity_range: str
    price_per_kg: Decimal
    photo_url: Optional[str] = None
    status: str = "available"
    fish_name: str = ""
    seller_name: str = ""
    seller_phone: str = ""
    market_name: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    distance_km: Optional[float] = None
    expires_at: Optional[datetime] = None
